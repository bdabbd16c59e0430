"""
utils.py
Date arithmetic, validation, exports.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

import pandas as pd

from errors import InvalidArgument

# Fixed-width UTC format: stored timestamps compare correctly as strings.
TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

_DAY_US = 86_400_000_000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return as_utc(dt).strftime(TS_FORMAT)


def parse_iso(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value))


def utc_midnight(now: datetime) -> datetime:
    """Start of the UTC calendar day containing `now`."""
    return datetime.combine(as_utc(now).date(), time.min, tzinfo=timezone.utc)


def day_key(now: datetime) -> str:
    return as_utc(now).date().isoformat()


def add_days(dt: datetime, days: int) -> datetime:
    return dt + timedelta(days=days)


def days_between(a: datetime, b: datetime) -> int:
    """
    Whole days from `a` to `b`, rounded up (positive when `b` is later).
    Computed on microseconds so the ceiling is exact.
    """
    us = (b - a) // timedelta(microseconds=1)
    return -(-us // _DAY_US)


def clamp_countdown(expiration_date: datetime, remaining_allowance: int, now: datetime) -> int:
    """
    The countdown is the tighter of the time limit and the attendance limit:
    running out of visits expires a member early, and so does running out of time.
    """
    return min(days_between(now, expiration_date), remaining_allowance)


def parse_start_date(value, now: datetime) -> datetime:
    """
    Accept a datetime, a date, an ISO string or None (meaning `now`).
    """
    if value is None or value == "":
        return now
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    try:
        return parse_iso(str(value))
    except ValueError:
        raise InvalidArgument("Invalid start date") from None


def validate_member_inputs(full_name: str, phone: str, service_id) -> list[str]:
    errors: list[str] = []
    if not full_name.strip():
        errors.append("Full name is required.")
    if not phone.strip():
        errors.append("Phone is required.")
    if service_id is None:
        errors.append("A service plan is required.")
    return errors


def validate_plan_inputs(name: str, price, period, max_days) -> list[str]:
    errors: list[str] = []
    if not name.strip():
        errors.append("Plan name is required.")
    try:
        float(price)
    except (TypeError, ValueError):
        errors.append("Price must be numeric.")
    for label, value in (("Period", period), ("Max days", max_days)):
        try:
            if int(value) <= 0:
                errors.append(f"{label} must be > 0.")
        except (TypeError, ValueError):
            errors.append(f"{label} must be a whole number.")
    return errors


def rows_to_frame(rows, columns: list[str] | None = None) -> pd.DataFrame:
    if not rows:
        return pd.DataFrame(columns=columns or [])
    return pd.DataFrame([dict(r) for r in rows])


def rows_to_csv_bytes(rows) -> bytes:
    return rows_to_frame(rows).to_csv(index=False).encode("utf-8")


def attendance_by_month(rows) -> pd.DataFrame:
    """
    Visits per month from attendance rows (needs a `date` column).
    """
    df = rows_to_frame(rows)
    if df.empty:
        return pd.DataFrame(columns=["month", "visits"])
    df["month"] = df["date"].str.slice(0, 7)
    out = df.groupby("month").size().reset_index(name="visits")
    return out.sort_values("month", ascending=False).reset_index(drop=True)
