"""Group balance computation.

Given a group's members, expenses and settlements this module derives each
member's net balance and a netted pairwise ledger of who owes whom. It is a
pure projection: every call builds fresh structures from its arguments and
performs no I/O.

Stages, always run in this order over the whole input:

1. ``init_ledger``       zeroed totals and ledger[debtor][creditor] for every ordered pair
2. ``accumulate``        fold expense splits and settlements into both
3. ``net_ledger``        collapse each pair to a single direction
4. ``project_balances``  per-member view of the netted ledger
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from .models import Expense, Member, Settlement, UserId
from .money import to_json_amount

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

Totals = Dict[UserId, Decimal]
Ledger = Dict[UserId, Dict[UserId, Decimal]]


class InvalidReference(ValueError):
    """An expense or settlement names a user outside the group."""

    def __init__(self, kind: str, record_id: Any, user_id: UserId):
        self.kind = kind
        self.record_id = record_id
        self.user_id = user_id
        super().__init__(f"{kind} {record_id!r} references user {user_id!r} who is not a group member")


@dataclass
class BalanceRecord:
    member: Member
    total_balance: Decimal
    owes: List[Dict[str, Any]] = field(default_factory=list)
    owed_by: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.member.to_dict(),
            "total_balance": to_json_amount(self.total_balance),
            "owes": [{"to": d["to"], "amount": to_json_amount(d["amount"])} for d in self.owes],
            "owed_by": [{"from": d["from"], "amount": to_json_amount(d["amount"])} for d in self.owed_by],
        }


@dataclass
class BalanceResponse:
    members: List[BalanceRecord]
    totals: Totals

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balances": [record.to_dict() for record in self.members],
            # JSON object keys are strings
            "totals": {str(user_id): to_json_amount(total) for user_id, total in self.totals.items()},
        }


def init_ledger(member_ids: Iterable[UserId]) -> Tuple[Totals, Ledger]:
    ids = list(member_ids)
    totals: Totals = {user_id: ZERO for user_id in ids}
    ledger: Ledger = {a: {b: ZERO for b in ids if b != a} for a in ids}
    return totals, ledger


def accumulate(
    totals: Totals,
    ledger: Ledger,
    expenses: Iterable[Expense],
    settlements: Iterable[Settlement],
) -> None:
    """Fold expenses and settlements into ``totals`` and ``ledger`` in place.

    Entries may go negative here when a settlement exceeds what was owed in
    that direction; ``net_ledger`` resolves the sign.
    """
    for expense in expenses:
        payer = expense.paid_by
        for split in expense.splits:
            if split.user_id == payer or split.paid:
                continue
            debtor = split.user_id
            totals[payer] += split.amount
            totals[debtor] -= split.amount
            ledger[debtor][payer] += split.amount

    for settlement in settlements:
        payer, receiver = settlement.paid_by, settlement.received_by
        if payer == receiver:
            continue
        totals[payer] += settlement.amount
        totals[receiver] -= settlement.amount
        ledger[payer][receiver] -= settlement.amount


def net_ledger(ledger: Ledger, member_ids: Iterable[UserId]) -> None:
    """Leave at most one nonzero direction per pair, holding the difference."""
    ordered = sorted(set(member_ids))
    for i, a in enumerate(ordered):
        for b in ordered[i + 1:]:
            diff = ledger[a][b] - ledger[b][a]
            if diff > ZERO:
                ledger[a][b], ledger[b][a] = diff, ZERO
            elif diff < ZERO:
                ledger[a][b], ledger[b][a] = ZERO, -diff
            else:
                ledger[a][b] = ledger[b][a] = ZERO


def project_balances(members: Sequence[Member], totals: Totals, ledger: Ledger) -> List[BalanceRecord]:
    """Build one record per member from a netted ledger."""
    records: List[BalanceRecord] = []
    seen = set()
    for member in members:
        if member.id in seen:
            continue
        seen.add(member.id)
        counterparts = sorted(ledger[member.id])
        records.append(
            BalanceRecord(
                member=member,
                total_balance=totals[member.id],
                owes=[
                    {"to": other, "amount": ledger[member.id][other]}
                    for other in counterparts
                    if ledger[member.id][other] > ZERO
                ],
                owed_by=[
                    {"from": other, "amount": ledger[other][member.id]}
                    for other in counterparts
                    if ledger[other][member.id] > ZERO
                ],
            )
        )
    return records


def validate_references(
    member_ids: Iterable[UserId],
    expenses: Iterable[Expense],
    settlements: Iterable[Settlement],
) -> None:
    ids = set(member_ids)
    for expense in expenses:
        if expense.paid_by not in ids:
            raise InvalidReference("expense", expense.id, expense.paid_by)
        for split in expense.splits:
            if split.user_id not in ids:
                raise InvalidReference("expense", expense.id, split.user_id)
    for settlement in settlements:
        for user_id in (settlement.paid_by, settlement.received_by):
            if user_id not in ids:
                raise InvalidReference("settlement", settlement.id, user_id)


def compute_balances(
    members: Sequence[Member],
    expenses: Sequence[Expense],
    settlements: Sequence[Settlement],
) -> BalanceResponse:
    member_ids = {member.id for member in members}
    validate_references(member_ids, expenses, settlements)

    logger.debug(
        "Computing balances for %d members, %d expenses, %d settlements",
        len(member_ids),
        len(expenses),
        len(settlements),
    )

    totals, ledger = init_ledger(member_ids)
    accumulate(totals, ledger, expenses, settlements)
    net_ledger(ledger, member_ids)
    return BalanceResponse(members=project_balances(members, totals, ledger), totals=totals)
