from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Collection, Dict, List, Tuple

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Largest magnitude a DECIMAL(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")


def to_decimal(value: Any) -> Decimal:
    """Coerce a stored or submitted amount to a cent-quantized Decimal.

    Raises ValueError for non-numeric input, NaN and infinities, and
    amounts too large to store.
    """
    if isinstance(value, bool) or not isinstance(value, (Decimal, int, float, str)):
        raise ValueError("Cannot convert value to Decimal")

    try:
        raw = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        if not raw.is_finite():
            raise ValueError("Amount must be a finite number")
        amount = raw.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError("Cannot convert value to Decimal") from None

    if abs(amount) > MAX_AMOUNT:
        raise ValueError("Amount out of range")
    return amount


def to_json_amount(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def amounts_close(a: Decimal, b: Decimal, tolerance: Decimal = CENT) -> bool:
    return abs(a - b) <= tolerance


def calculate_equal_shares(amount: Decimal, user_ids: List[int]) -> List[Tuple[int, Decimal]]:
    """Split ``amount`` evenly; the last member absorbs the rounding remainder."""
    count = len(user_ids)
    if count == 0:
        raise ValueError("user_ids must not be empty")

    per_person = (amount / count).quantize(CENT, rounding=ROUND_HALF_UP)
    shares: List[Tuple[int, Decimal]] = []
    total_assigned = ZERO

    for user_id in user_ids[:-1]:
        shares.append((user_id, per_person))
        total_assigned += per_person

    last_share = (amount - total_assigned).quantize(CENT, rounding=ROUND_HALF_UP)
    shares.append((user_ids[-1], last_share))

    return shares


def normalize_custom_splits(payload: List[Dict[str, Any]], member_ids: Collection[int]) -> List[Tuple[int, Decimal]]:
    """Validate a ``[{user_id, amount}]`` request body against the group's members.

    Raises ValueError with a short error code as its message.
    """
    if not isinstance(payload, list):
        raise ValueError("invalid_split_payload")

    splits: List[Tuple[int, Decimal]] = []
    seen = set()
    for item in payload:
        try:
            user_id = int(item["user_id"])
            amount = to_decimal(item.get("amount", item.get("share_amount")))
        except (KeyError, TypeError, ValueError, AttributeError):
            raise ValueError("invalid_split_payload") from None

        if amount < ZERO:
            raise ValueError("invalid_split_amount")
        if user_id in seen:
            raise ValueError("duplicate_split_entry")
        if user_id not in member_ids:
            raise ValueError("invalid_split_members")

        seen.add(user_id)
        splits.append((user_id, amount))

    if not splits:
        raise ValueError("missing_splits")
    return splits


def parse_user_ids(values: Any) -> List[int]:
    """Parse a list of user ids from a request body, keeping order and dropping repeats."""
    if not isinstance(values, list):
        raise ValueError("invalid_split_members")
    user_ids: List[int] = []
    for value in values:
        try:
            user_id = int(value)
        except (TypeError, ValueError):
            raise ValueError("invalid_split_members") from None
        if user_id not in user_ids:
            user_ids.append(user_id)
    return user_ids
