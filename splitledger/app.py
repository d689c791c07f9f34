from __future__ import annotations

import logging
from decimal import Decimal
from functools import wraps
from typing import Any, Collection, Dict, List, Optional, Tuple

from flask import Flask, g, jsonify, request, session
from flask_cors import CORS

from . import store
from .balances import BalanceResponse, InvalidReference, compute_balances
from .config import config
from .models import Expense, Member, Settlement
from .money import (
    ZERO,
    amounts_close,
    calculate_equal_shares,
    normalize_custom_splits,
    parse_user_ids,
    to_decimal,
)

logger = logging.getLogger(__name__)


def create_app() -> Flask:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.SECRET_KEY
    app.config["SESSION_COOKIE_NAME"] = config.SESSION_COOKIE_NAME
    app.config["SESSION_COOKIE_HTTPONLY"] = config.SESSION_COOKIE_HTTPONLY
    app.config["SESSION_COOKIE_SAMESITE"] = config.SESSION_COOKIE_SAMESITE

    CORS(
        app,
        supports_credentials=True,
        resources={r"/api/*": {"origins": config.CORS_ORIGINS}},
    )

    register_routes(app)
    return app


def resolve_current_user() -> Optional[int]:
    """User id placed in the session by the login service, if any."""
    return session.get("user_id")


def require_login(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        if resolve_current_user() is None:
            return jsonify({"error": "authentication_required"}), 401
        return func(*args, **kwargs)

    return wrapper


def require_group_member(func):
    """Reject unknown groups with 404 and non-members with 403.

    The group row and its members are loaded once and left on ``g`` for the view.
    """

    @wraps(func)
    def wrapper(group_id: int, *args, **kwargs):
        group = store.fetch_group(group_id)
        if group is None:
            return jsonify({"error": "group_not_found"}), 404

        members = store.fetch_group_members(group_id)
        if resolve_current_user() not in {member.id for member in members}:
            logger.info("User %s denied access to group %s", resolve_current_user(), group_id)
            return jsonify({"error": "not_authorized"}), 403

        g.group = group
        g.members = members
        return func(group_id, *args, **kwargs)

    return wrapper


def register_routes(app: Flask) -> None:
    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok"})

    @app.get("/api/groups")
    @require_login
    def list_groups():
        groups = store.fetch_user_groups(resolve_current_user())
        return jsonify(groups)

    @app.get("/api/groups/<int:group_id>/balances")
    @require_login
    @require_group_member
    def get_group_balances(group_id: int):
        expenses = store.fetch_expenses(group_id)
        settlements = store.fetch_settlements(group_id)

        try:
            result = compute_balances(g.members, expenses, settlements)
        except InvalidReference as exc:
            return _invalid_reference(group_id, exc)

        return jsonify(result.to_dict())

    @app.get("/api/groups/<int:group_id>/expenses")
    @require_login
    @require_group_member
    def get_group_expenses(group_id: int):
        expenses = store.fetch_expenses(group_id)
        settlements = store.fetch_settlements(group_id)

        try:
            result = compute_balances(g.members, expenses, settlements)
        except InvalidReference as exc:
            return _invalid_reference(group_id, exc)

        return jsonify(_group_view(g.group, g.members, expenses, settlements, result))

    @app.post("/api/groups/<int:group_id>/expenses")
    @require_login
    @require_group_member
    def add_expense(group_id: int):
        payload = _json_body()
        description = _text(payload.get("description")) or _text(payload.get("title"))
        amount = payload.get("amount")

        if not description or amount is None:
            return jsonify({"error": "missing_fields"}), 400

        category = payload.get("category")
        if category is not None and not isinstance(category, str):
            return jsonify({"error": "invalid_category"}), 400

        try:
            amount_decimal = to_decimal(amount)
        except ValueError:
            return jsonify({"error": "invalid_amount"}), 400
        if amount_decimal <= ZERO:
            return jsonify({"error": "invalid_amount"}), 400

        member_ids = {member.id for member in g.members}

        paid_by = payload.get("paid_by")
        if paid_by is None:
            paid_by = resolve_current_user()
        try:
            paid_by = int(paid_by)
        except (TypeError, ValueError):
            return jsonify({"error": "payer_not_in_group"}), 400
        if paid_by not in member_ids:
            return jsonify({"error": "payer_not_in_group"}), 400

        try:
            splits = _build_splits(payload, amount_decimal, member_ids)
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

        split_total = sum((share for _, share in splits), ZERO)
        if not amounts_close(split_total, amount_decimal):
            return jsonify({"error": "split_total_mismatch"}), 400

        expense_id = store.create_expense(
            group_id,
            description,
            amount_decimal,
            paid_by,
            splits,
            created_by=resolve_current_user(),
            category=_text(category) or None,
        )
        return jsonify({"id": expense_id}), 201

    @app.delete("/api/groups/<int:group_id>/expenses/<int:expense_id>")
    @require_login
    @require_group_member
    def delete_expense(group_id: int, expense_id: int):
        expense = store.fetch_expense(group_id, expense_id)
        if not expense:
            return jsonify({"error": "expense_not_found"}), 404

        if expense["paid_by"] != resolve_current_user():
            return jsonify({"error": "forbidden_only_payer_can_delete"}), 403

        store.delete_expense(expense_id)
        return jsonify({"status": "deleted"}), 200

    @app.post("/api/groups/<int:group_id>/expenses/<int:expense_id>/splits/<int:user_id>/mark-paid")
    @require_login
    @require_group_member
    def mark_split_paid(group_id: int, expense_id: int, user_id: int):
        expense = store.fetch_expense(group_id, expense_id)
        if not expense:
            return jsonify({"error": "expense_not_found"}), 404

        split = store.fetch_split(expense_id, user_id)
        if not split:
            return jsonify({"error": "split_not_found"}), 404

        # Either side of the debt may mark it settled
        if resolve_current_user() not in (user_id, expense["paid_by"]):
            return jsonify({"error": "forbidden_only_debtor_or_payer"}), 403

        if split["paid"]:
            return jsonify({"error": "split_already_paid"}), 400

        store.mark_split_paid(expense_id, user_id)
        return jsonify({"status": "paid", "expense_id": expense_id, "user_id": user_id})

    @app.get("/api/groups/<int:group_id>/settlements")
    @require_login
    @require_group_member
    def list_settlements(group_id: int):
        return jsonify([settlement.to_dict() for settlement in store.fetch_settlements(group_id)])

    @app.post("/api/groups/<int:group_id>/settlements")
    @require_login
    @require_group_member
    def add_settlement(group_id: int):
        payload = _json_body()
        current_user = resolve_current_user()

        if payload.get("received_by") is None or payload.get("amount") is None:
            return jsonify({"error": "missing_fields"}), 400

        note = payload.get("note")
        if note is not None and not isinstance(note, str):
            return jsonify({"error": "invalid_note"}), 400

        paid_by = payload.get("paid_by")
        if paid_by is None:
            paid_by = current_user
        try:
            paid_by = int(paid_by)
            received_by = int(payload["received_by"])
            amount = to_decimal(payload["amount"])
        except (TypeError, ValueError):
            return jsonify({"error": "invalid_settlement_payload"}), 400

        if amount <= ZERO:
            return jsonify({"error": "invalid_amount"}), 400
        if paid_by == received_by:
            return jsonify({"error": "invalid_settlement_parties"}), 400

        member_ids = {member.id for member in g.members}
        if paid_by not in member_ids or received_by not in member_ids:
            return jsonify({"error": "user_not_in_group"}), 400

        if current_user not in (paid_by, received_by):
            return jsonify({"error": "forbidden_only_party_can_settle"}), 403

        settlement_id = store.create_settlement(
            group_id, paid_by, received_by, amount, created_by=current_user, note=_text(note) or None
        )
        return jsonify({"id": settlement_id}), 201


def _json_body() -> Dict[str, Any]:
    """Request JSON as a dict; anything else reads as an empty body."""
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _build_splits(payload: Dict[str, Any], amount: Decimal, member_ids: Collection[int]) -> List[Tuple[int, Decimal]]:
    if payload.get("splits"):
        return normalize_custom_splits(payload["splits"], member_ids)

    split_among = parse_user_ids(payload.get("split_among") or [])
    if not split_among:
        raise ValueError("missing_fields")
    if not all(user_id in member_ids for user_id in split_among):
        raise ValueError("invalid_split_members")
    return calculate_equal_shares(amount, split_among)


def _invalid_reference(group_id: int, exc: InvalidReference):
    logger.error("Inconsistent data in group %s: %s", group_id, exc)
    return jsonify({"error": "invalid_reference", "detail": str(exc)}), 409


def _group_view(
    group: Dict[str, Any],
    members: List[Member],
    expenses: List[Expense],
    settlements: List[Settlement],
    result: BalanceResponse,
) -> Dict[str, Any]:
    balances = result.to_dict()
    return {
        "group": {
            "id": group["id"],
            "name": group["name"],
            "description": group["description"],
        },
        "members": [member.to_dict() for member in members],
        "expenses": [expense.to_dict() for expense in expenses],
        "settlements": [settlement.to_dict() for settlement in settlements],
        "balances": balances["balances"],
        "totals": balances["totals"],
        "user_lookup": {str(member.id): member.to_dict() for member in members},
    }


app = create_app()


if __name__ == "__main__":
    app.run(debug=config.DEBUG)
