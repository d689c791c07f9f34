"""Data access for groups, expenses and settlements."""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .db import db
from .models import Expense, Member, Settlement, Split
from .money import to_decimal

logger = logging.getLogger(__name__)


def fetch_user_groups(user_id: int) -> List[Dict[str, Any]]:
    """Groups the user belongs to, with their member counts."""
    return db.fetch_all(
        """
        SELECT g.id, g.name, g.description, COUNT(all_members.user_id) AS member_count
        FROM `groups` g
        JOIN group_members gm ON gm.group_id = g.id AND gm.user_id = %s
        JOIN group_members all_members ON all_members.group_id = g.id
        GROUP BY g.id, g.name, g.description
        ORDER BY g.name
        """,
        (user_id,),
    )


def fetch_group(group_id: int) -> Optional[Dict[str, Any]]:
    return db.fetch_one(
        "SELECT id, name, description, created_by FROM `groups` WHERE id=%s",
        (group_id,),
    )


def fetch_group_members(group_id: int) -> List[Member]:
    rows = db.fetch_all(
        """
        SELECT u.id, u.username, u.email, u.image_url, gm.role
        FROM group_members gm
        JOIN users u ON gm.user_id = u.id
        WHERE gm.group_id=%s
        ORDER BY u.username
        """,
        (group_id,),
    )
    return [
        Member(
            id=row["id"],
            profile={
                "username": row["username"],
                "email": row["email"],
                "image_url": row["image_url"],
                "role": row["role"],
            },
        )
        for row in rows
    ]


def fetch_expenses(group_id: int) -> List[Expense]:
    rows = db.fetch_all(
        """
        SELECT id, group_id, description, amount, category, paid_by, created_by, date_added
        FROM expenses
        WHERE group_id=%s
        ORDER BY date_added DESC, id DESC
        """,
        (group_id,),
    )

    splits_map: Dict[int, List[Split]] = {}
    expense_ids = [row["id"] for row in rows]
    if expense_ids:
        placeholders = ", ".join(["%s"] * len(expense_ids))
        split_rows = db.fetch_all(
            f"""
            SELECT expense_id, user_id, amount, paid
            FROM expense_splits
            WHERE expense_id IN ({placeholders})
            ORDER BY id
            """,
            expense_ids,
        )
        for split in split_rows:
            splits_map.setdefault(split["expense_id"], []).append(
                Split(
                    user_id=split["user_id"],
                    amount=to_decimal(split["amount"]),
                    paid=bool(split["paid"]),
                )
            )

    return [
        Expense(
            id=row["id"],
            group_id=row["group_id"],
            description=row["description"],
            amount=to_decimal(row["amount"]),
            category=row["category"],
            paid_by=row["paid_by"],
            created_by=row["created_by"],
            date=row["date_added"],
            splits=splits_map.get(row["id"], []),
        )
        for row in rows
    ]


def fetch_expense(group_id: int, expense_id: int) -> Optional[Dict[str, Any]]:
    return db.fetch_one(
        "SELECT id, paid_by FROM expenses WHERE id=%s AND group_id=%s",
        (expense_id, group_id),
    )


def fetch_split(expense_id: int, user_id: int) -> Optional[Dict[str, Any]]:
    return db.fetch_one(
        "SELECT id, amount, paid FROM expense_splits WHERE expense_id=%s AND user_id=%s",
        (expense_id, user_id),
    )


def fetch_settlements(group_id: int) -> List[Settlement]:
    rows = db.fetch_all(
        """
        SELECT id, group_id, paid_by, received_by, amount, note, created_by, date_added
        FROM settlements
        WHERE group_id=%s
        ORDER BY date_added DESC, id DESC
        """,
        (group_id,),
    )
    return [
        Settlement(
            id=row["id"],
            group_id=row["group_id"],
            paid_by=row["paid_by"],
            received_by=row["received_by"],
            amount=to_decimal(row["amount"]),
            note=row["note"],
            created_by=row["created_by"],
            date=row["date_added"],
        )
        for row in rows
    ]


def create_expense(
    group_id: int,
    description: str,
    amount: Decimal,
    paid_by: int,
    splits: Sequence[Tuple[int, Decimal]],
    created_by: int,
    category: Optional[str] = None,
) -> int:
    """Insert an expense and its splits in one transaction.

    The payer's own split is stored as paid since they never owe themselves.
    """
    with db.cursor() as cursor:
        cursor.execute(
            """
            INSERT INTO expenses (group_id, description, amount, category, paid_by, created_by)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (group_id, description, str(amount), category, paid_by, created_by),
        )
        expense_id = cursor.lastrowid
        cursor.executemany(
            "INSERT INTO expense_splits (expense_id, user_id, amount, paid) VALUES (%s, %s, %s, %s)",
            [(expense_id, user_id, str(share), int(user_id == paid_by)) for user_id, share in splits],
        )

    logger.info("Recorded expense %s in group %s (%s split(s))", expense_id, group_id, len(splits))
    return expense_id


def delete_expense(expense_id: int) -> None:
    with db.cursor() as cursor:
        cursor.execute("DELETE FROM expense_splits WHERE expense_id=%s", (expense_id,))
        cursor.execute("DELETE FROM expenses WHERE id=%s", (expense_id,))
    logger.info("Deleted expense %s", expense_id)


def mark_split_paid(expense_id: int, user_id: int) -> None:
    db.execute(
        "UPDATE expense_splits SET paid=1 WHERE expense_id=%s AND user_id=%s",
        (expense_id, user_id),
    )


def create_settlement(
    group_id: int,
    paid_by: int,
    received_by: int,
    amount: Decimal,
    created_by: int,
    note: Optional[str] = None,
) -> int:
    settlement_id = db.execute(
        """
        INSERT INTO settlements (group_id, paid_by, received_by, amount, note, created_by)
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (group_id, paid_by, received_by, str(amount), note, created_by),
    )
    logger.info("Recorded settlement %s in group %s: %s -> %s", settlement_id, group_id, paid_by, received_by)
    return settlement_id
