from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

import utils
from errors import InvalidArgument
from tests.conftest import NOW


def test_days_between_rounds_up_and_is_signed() -> None:
    assert utils.days_between(NOW, NOW + timedelta(days=30)) == 30
    assert utils.days_between(NOW, NOW + timedelta(days=2, seconds=1)) == 3
    assert utils.days_between(NOW, NOW - timedelta(days=10)) == -10
    # ceil of -0.5 day is 0
    assert utils.days_between(NOW, NOW - timedelta(hours=12)) == 0
    assert utils.days_between(NOW, NOW) == 0


@pytest.mark.parametrize(
    ("expires_in", "allowance", "expected"),
    [
        (30, 12, 12),  # attendance allowance binds
        (5, 12, 5),  # time binds
        (-10, 2, -10),  # overdue time binds
        (20, -1, -1),  # allowance exhausted
    ],
)
def test_clamp_countdown_takes_the_tighter_limit(expires_in: int, allowance: int, expected: int) -> None:
    expiration = NOW + timedelta(days=expires_in)
    assert utils.clamp_countdown(expiration, allowance, NOW) == expected


def test_utc_midnight_normalizes_other_timezones() -> None:
    cairo = timezone(timedelta(hours=2))
    local = datetime(2026, 3, 16, 1, 30, tzinfo=cairo)  # 23:30 UTC on the 15th
    assert utils.utc_midnight(local) == datetime(2026, 3, 15, tzinfo=timezone.utc)


def test_stored_timestamps_sort_as_strings() -> None:
    earlier = utils.to_iso(NOW)
    later = utils.to_iso(NOW + timedelta(microseconds=1))
    assert earlier < later
    assert utils.parse_iso(earlier) == NOW


def test_parse_start_date_accepts_common_inputs() -> None:
    assert utils.parse_start_date(None, NOW) == NOW
    assert utils.parse_start_date(date(2026, 1, 2), NOW) == datetime(2026, 1, 2, tzinfo=timezone.utc)
    assert utils.parse_start_date("2026-01-02T08:00:00+00:00", NOW) == datetime(2026, 1, 2, 8, tzinfo=timezone.utc)

    with pytest.raises(InvalidArgument):
        utils.parse_start_date("not-a-date", NOW)


def test_validate_plan_inputs_reports_each_problem() -> None:
    errors = utils.validate_plan_inputs(" ", "abc", 0, "x")
    assert len(errors) == 4
    assert utils.validate_plan_inputs("Monthly", "300", 30, 12) == []


def test_attendance_by_month_counts_visits() -> None:
    rows = [
        {"date": "2026-02-03T00:00:00.000000+00:00"},
        {"date": "2026-03-01T00:00:00.000000+00:00"},
        {"date": "2026-03-02T00:00:00.000000+00:00"},
    ]
    df = utils.attendance_by_month(rows)
    assert df.to_dict("records") == [{"month": "2026-03", "visits": 2}, {"month": "2026-02", "visits": 1}]
    assert list(utils.attendance_by_month([]).columns) == ["month", "visits"]
