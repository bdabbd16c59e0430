"""
models.py
Domain types: member statuses, status actions, records read from the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from errors import InvalidArgument

# Countdown below this marks a member inactive; between it and 0, expired.
SEVERE_OVERDUE_DAYS = -3


class MemberStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    INACTIVE = "inactive"
    FROZEN = "frozen"
    DORMANT = "dormant"


class StatusAction(str, Enum):
    """Values accepted by a manual status change."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    FROZEN = "frozen"
    PENDING = "pending"
    UNFREEZE = "unfreeze"
    DORMANT = "dormant"

    @classmethod
    def parse(cls, value) -> "StatusAction":
        try:
            return cls(value)
        except ValueError:
            raise InvalidArgument(f"Invalid status: {value!r}") from None


class ExtensionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


SWEEP_STATUSES = (MemberStatus.ACTIVE, MemberStatus.EXPIRED, MemberStatus.FROZEN)
ATTENDANCE_BLOCKED_STATUSES = (
    MemberStatus.FROZEN,
    MemberStatus.INACTIVE,
    MemberStatus.PENDING,
    MemberStatus.DORMANT,
)
FREEZABLE_STATUSES = (MemberStatus.ACTIVE, MemberStatus.EXPIRED)


def _ts(value) -> datetime | None:
    if value is None or value == "":
        return None
    dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class ServicePlan:
    id: int | None
    name: str
    price: float
    period: int  # days the subscription runs from start_date
    max_days: int  # attendance allowance within the period

    @classmethod
    def from_row(cls, row) -> "ServicePlan":
        return cls(
            id=row["id"],
            name=row["name"],
            price=float(row["price"]),
            period=int(row["period"]),
            max_days=int(row["max_days"]),
        )


@dataclass(frozen=True)
class Member:
    id: int | None
    full_name: str
    phone: str
    status: MemberStatus
    start_date: datetime | None
    days_left: int = 0
    freeze_date: datetime | None = None
    freeze_duration: int = 0
    pre_freeze_attendance: int = 0
    pre_freeze_days_count: int = 0
    total_attendance: int = 0
    service_id: int | None = None
    join_date: str | None = None
    last_reconciled_on: str | None = None

    @property
    def is_frozen(self) -> bool:
        return self.status == MemberStatus.FROZEN

    @classmethod
    def from_row(cls, row) -> "Member":
        return cls(
            id=row["id"],
            full_name=row["full_name"],
            phone=row["phone"],
            status=MemberStatus(row["status"]),
            start_date=_ts(row["start_date"]),
            days_left=int(row["days_left"] or 0),
            freeze_date=_ts(row["freeze_date"]),
            freeze_duration=int(row["freeze_duration"] or 0),
            pre_freeze_attendance=int(row["pre_freeze_attendance"] or 0),
            pre_freeze_days_count=int(row["pre_freeze_days_count"] or 0),
            total_attendance=int(row["total_attendance"] or 0),
            service_id=row["service_id"],
            join_date=row["join_date"],
            last_reconciled_on=row["last_reconciled_on"],
        )


@dataclass(frozen=True)
class ExtensionRequest:
    id: int | None
    user_id: int
    service_id: int
    status: ExtensionStatus
    request_date: datetime | None

    @classmethod
    def from_row(cls, row) -> "ExtensionRequest":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            service_id=row["service_id"],
            status=ExtensionStatus(row["status"]),
            request_date=_ts(row["request_date"]),
        )


@dataclass(frozen=True)
class NotificationEvent:
    user_id: int
    name: str
    description: str


@dataclass(frozen=True)
class AttendanceResult:
    member_id: int
    status: MemberStatus
    total_attendance: int
    days_left: int
    message: str
    expired: bool = False


@dataclass(frozen=True)
class ReconcileOutcome:
    """Result of re-evaluating one member: fields to write and notifications to emit."""

    patch: dict = field(default_factory=dict)
    events: tuple[NotificationEvent, ...] = ()


@dataclass
class SweepReport:
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    notifications: int = 0
    failed_ids: list[int] = field(default_factory=list)
