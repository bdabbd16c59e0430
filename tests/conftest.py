from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import db
import utils
from models import MemberStatus, ServicePlan

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def database(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "gym.sqlite3")
    db.init_db()
    return db


@pytest.fixture()
def plan(database) -> ServicePlan:
    plan_id = database.create_service_plan("Monthly 12 visits", 300.0, 30, 12)
    return database.get_service_plan(plan_id)


def add_member(
    plan_id: int | None,
    status: MemberStatus = MemberStatus.ACTIVE,
    start: datetime = NOW,
    days_left: int = 0,
    name: str = "Test Member",
    **extra,
) -> int:
    member_id = db.create_member(name, "0100000000", plan_id, join_date=start)
    db.update_member(member_id, {"status": status, "start_date": start, "days_left": days_left, **extra})
    return member_id


def add_visits(member_id: int, days_ago: range) -> None:
    for d in days_ago:
        db.insert_attendance(member_id, utils.utc_midnight(NOW - timedelta(days=d)))
