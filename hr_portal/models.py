"""
Domain types for leave requests and balances.

Rows travel through the store as plain dicts keyed by column name; these
dataclasses are the typed view the workflow works with.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

LEAVE_REQUESTS_TABLE = "leave_requests"
LEAVE_BALANCES_TABLE = "leave_balances"


class LeaveType(str, Enum):
    ANNUAL = "annual"
    SICK = "sick"
    PERSONAL = "personal"
    BEREAVEMENT = "bereavement"
    UNPAID = "unpaid"


class LeaveStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not LeaveStatus.PENDING


class Role(str, Enum):
    ADMIN = "admin"
    EMPLOYEE = "employee"


def inclusive_days(start_date: date, end_date: date) -> int:
    """Number of calendar days covered, counting both endpoints."""
    return (end_date - start_date).days + 1


@dataclass(frozen=True)
class LeaveSubmission:
    """A leave request that passed validation but is not stored yet."""

    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str

    @property
    def days(self) -> int:
        return inclusive_days(self.start_date, self.end_date)


@dataclass(frozen=True)
class LeaveRequest:
    id: str
    requester_id: str
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str
    status: LeaveStatus
    created_at: datetime
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None

    @property
    def days(self) -> int:
        return inclusive_days(self.start_date, self.end_date)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "LeaveRequest":
        return cls(
            id=record["id"],
            requester_id=record["requester_id"],
            leave_type=LeaveType(record["leave_type"]),
            start_date=record["start_date"],
            end_date=record["end_date"],
            reason=record["reason"],
            status=LeaveStatus(record["status"]),
            created_at=record["created_at"],
            reviewed_by=record.get("reviewed_by"),
            reviewed_at=record.get("reviewed_at"),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "requester_id": self.requester_id,
            "leave_type": self.leave_type.value,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "reason": self.reason,
            "status": self.status.value,
            "created_at": self.created_at,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at,
        }


@dataclass(frozen=True)
class LeaveBalance:
    requester_id: str
    leave_type: LeaveType
    year: int
    total_days: float
    used_days: float
    unlimited: bool = False

    @property
    def remaining_days(self) -> float | None:
        if self.unlimited:
            return None
        return self.total_days - self.used_days

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "LeaveBalance":
        return cls(
            requester_id=record["requester_id"],
            leave_type=LeaveType(record["leave_type"]),
            year=int(record["year"]),
            total_days=record["total_days"],
            used_days=record["used_days"],
            unlimited=bool(record.get("unlimited", False)),
        )
