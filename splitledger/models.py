"""Plain records passed between the store, the balance engine and the routes."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from .money import to_json_amount

UserId = int


def _json_date(value: Optional[Union[date, datetime]]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Member:
    id: UserId
    profile: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.profile}


@dataclass(frozen=True)
class Split:
    user_id: UserId
    amount: Decimal
    paid: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "amount": to_json_amount(self.amount), "paid": self.paid}


@dataclass(frozen=True)
class Expense:
    id: Optional[int]
    paid_by: UserId
    splits: List[Split] = field(default_factory=list)
    group_id: Optional[int] = None
    description: str = ""
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    date: Optional[datetime] = None
    created_by: Optional[UserId] = None

    def to_dict(self) -> Dict[str, Any]:
        amount = self.amount if self.amount is not None else sum((s.amount for s in self.splits), Decimal("0"))
        return {
            "id": self.id,
            "group_id": self.group_id,
            "description": self.description,
            "amount": to_json_amount(amount),
            "category": self.category,
            "date": _json_date(self.date),
            "paid_by": self.paid_by,
            "created_by": self.created_by,
            "splits": [split.to_dict() for split in self.splits],
        }


@dataclass(frozen=True)
class Settlement:
    id: Optional[int]
    paid_by: UserId
    received_by: UserId
    amount: Decimal
    group_id: Optional[int] = None
    note: Optional[str] = None
    date: Optional[datetime] = None
    created_by: Optional[UserId] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "group_id": self.group_id,
            "paid_by": self.paid_by,
            "received_by": self.received_by,
            "amount": to_json_amount(self.amount),
            "note": self.note,
            "date": _json_date(self.date),
            "created_by": self.created_by,
        }
