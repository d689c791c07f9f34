"""Shared fixtures: member/expense builders and a Flask client over an in-memory store."""

import os
from collections import Counter
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from splitledger import store
from splitledger.models import Expense, Member, Settlement, Split

ALICE, BOB, CAROL, DAVE = 1, 2, 3, 4


def member(user_id: int, username: str) -> Member:
    return Member(id=user_id, profile={"username": username, "email": f"{username}@example.com", "image_url": None, "role": "member"})


def expense(expense_id: int, paid_by: int, *splits, **extra) -> Expense:
    """Build an expense from ``(user_id, amount[, paid])`` tuples."""
    return Expense(
        id=expense_id,
        paid_by=paid_by,
        splits=[Split(user_id=s[0], amount=Decimal(str(s[1])), paid=s[2] if len(s) > 2 else False) for s in splits],
        **extra,
    )


def settlement(settlement_id: int, paid_by: int, received_by: int, amount) -> Settlement:
    return Settlement(id=settlement_id, paid_by=paid_by, received_by=received_by, amount=Decimal(str(amount)))


@pytest.fixture
def trio() -> List[Member]:
    return [member(ALICE, "alice"), member(BOB, "bob"), member(CAROL, "carol")]


class FakeStore:
    """In-memory stand-in for ``splitledger.store``."""

    def __init__(self) -> None:
        self.groups: Dict[int, Dict[str, Any]] = {}
        self.members: Dict[int, List[Member]] = {}
        self.expenses: Dict[int, List[Expense]] = {}
        self.settlements: Dict[int, List[Settlement]] = {}
        self.deleted: List[int] = []
        self.calls: Counter = Counter()
        self._next_id = 1000

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def fetch_group(self, group_id: int) -> Optional[Dict[str, Any]]:
        self.calls["fetch_group"] += 1
        return self.groups.get(group_id)

    def fetch_user_groups(self, user_id: int) -> List[Dict[str, Any]]:
        return [
            {
                "id": group["id"],
                "name": group["name"],
                "description": group["description"],
                "member_count": len(self.members.get(group_id, [])),
            }
            for group_id, group in sorted(self.groups.items(), key=lambda item: item[1]["name"])
            if any(m.id == user_id for m in self.members.get(group_id, []))
        ]

    def fetch_group_members(self, group_id: int) -> List[Member]:
        self.calls["fetch_group_members"] += 1
        return list(self.members.get(group_id, []))

    def fetch_expenses(self, group_id: int) -> List[Expense]:
        return list(self.expenses.get(group_id, []))

    def fetch_settlements(self, group_id: int) -> List[Settlement]:
        return list(self.settlements.get(group_id, []))

    def fetch_expense(self, group_id: int, expense_id: int) -> Optional[Dict[str, Any]]:
        for exp in self.expenses.get(group_id, []):
            if exp.id == expense_id:
                return {"id": exp.id, "paid_by": exp.paid_by}
        return None

    def _find_expense(self, expense_id: int):
        for group_id, expenses in self.expenses.items():
            for index, exp in enumerate(expenses):
                if exp.id == expense_id:
                    return group_id, index, exp
        return None, None, None

    def fetch_split(self, expense_id: int, user_id: int) -> Optional[Dict[str, Any]]:
        _, _, exp = self._find_expense(expense_id)
        if exp is None:
            return None
        for split in exp.splits:
            if split.user_id == user_id:
                return {"id": user_id, "amount": split.amount, "paid": int(split.paid)}
        return None

    def create_expense(self, group_id, description, amount, paid_by, splits, created_by, category=None) -> int:
        expense_id = self._new_id()
        self.expenses.setdefault(group_id, []).append(
            Expense(
                id=expense_id,
                group_id=group_id,
                description=description,
                amount=amount,
                category=category,
                paid_by=paid_by,
                created_by=created_by,
                splits=[Split(user_id=u, amount=a, paid=u == paid_by) for u, a in splits],
            )
        )
        return expense_id

    def delete_expense(self, expense_id: int) -> None:
        group_id, index, _ = self._find_expense(expense_id)
        del self.expenses[group_id][index]
        self.deleted.append(expense_id)

    def mark_split_paid(self, expense_id: int, user_id: int) -> None:
        group_id, index, exp = self._find_expense(expense_id)
        splits = [replace(s, paid=True) if s.user_id == user_id else s for s in exp.splits]
        self.expenses[group_id][index] = replace(exp, splits=splits)

    def create_settlement(self, group_id, paid_by, received_by, amount, created_by, note=None) -> int:
        settlement_id = self._new_id()
        self.settlements.setdefault(group_id, []).append(
            Settlement(
                id=settlement_id,
                group_id=group_id,
                paid_by=paid_by,
                received_by=received_by,
                amount=amount,
                note=note,
                created_by=created_by,
            )
        )
        return settlement_id


STORE_FUNCTIONS = (
    "fetch_group",
    "fetch_user_groups",
    "fetch_group_members",
    "fetch_expenses",
    "fetch_settlements",
    "fetch_expense",
    "fetch_split",
    "create_expense",
    "delete_expense",
    "mark_split_paid",
    "create_settlement",
)


@pytest.fixture
def fake_store(monkeypatch, trio) -> FakeStore:
    """Group 1 "Trip" with alice, bob and carol; group 2 holds only dave.

    Alice paid 30 split three ways (her own share already paid), then bob
    paid alice back 4.
    """
    fake = FakeStore()
    fake.groups[1] = {"id": 1, "name": "Trip", "description": "Weekend away", "created_by": ALICE}
    fake.groups[2] = {"id": 2, "name": "Flat", "description": None, "created_by": DAVE}
    fake.members[1] = trio
    fake.members[2] = [member(DAVE, "dave")]
    fake.expenses[1] = [
        expense(10, ALICE, (ALICE, "10.00", True), (BOB, "10.00"), (CAROL, "10.00"), group_id=1, description="Dinner", amount=Decimal("30.00")),
    ]
    fake.settlements[1] = [settlement(100, BOB, ALICE, "4.00")]

    for name in STORE_FUNCTIONS:
        monkeypatch.setattr(store, name, getattr(fake, name))
    return fake


@pytest.fixture
def client(fake_store):
    from splitledger.app import create_app

    app = create_app()
    app.config["TESTING"] = True
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def login(client):
    def _login(user_id: int) -> None:
        with client.session_transaction() as sess:
            sess["user_id"] = user_id

    return _login
