"""
attendance.py
Check-in recording: one visit per member per UTC day, countdown updated on
every visit.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import db
import utils
from countdown import countdown_for
from errors import Conflict, InvalidState, NotFound
from logging_config import get_logger
from models import ATTENDANCE_BLOCKED_STATUSES, SEVERE_OVERDUE_DAYS, AttendanceResult, Member, MemberStatus

logger = get_logger(__name__)

BLOCKED_MESSAGES = {
    MemberStatus.FROZEN: "{name} is on Freeze. Please unfreeze them to record attendance.",
    MemberStatus.INACTIVE: "{name} is inactive. Please renew their membership before recording attendance.",
    MemberStatus.PENDING: "{name} is not approved (pending). Please approve their membership before recording attendance.",
    MemberStatus.DORMANT: "{name} is dormant. Please renew their membership before recording attendance.",
}


def blocked_message(member: Member) -> str | None:
    if member.status not in ATTENDANCE_BLOCKED_STATUSES:
        return None
    return BLOCKED_MESSAGES[member.status].format(name=member.full_name)


def record_attendance(member_id: int, now: datetime | None = None) -> AttendanceResult:
    now = now or utils.utc_now()
    today = utils.utc_midnight(now)

    with db.member_lock(member_id):
        if db.attendance_exists(member_id, today):
            raise Conflict("Attendance already recorded for today")

        member = db.get_member(member_id)
        if member is None:
            raise NotFound("Member not found")
        plan = db.get_service_plan(member.service_id)
        if plan is None:
            raise NotFound(f"{member.full_name} is not subscribed to any service")

        message = blocked_message(member)
        if message:
            raise InvalidState(message)

        attended = db.count_attendance(member.id, member.start_date)
        days_left = countdown_for(plan, member.start_date, attended, now)

        status = member.status
        if days_left < SEVERE_OVERDUE_DAYS:
            db.update_member(member.id, {"status": MemberStatus.INACTIVE})
            logger.info("Member %s marked inactive at check-in (days_left=%s)", member.id, days_left)
            raise InvalidState(f"{member.full_name} is inactive!")
        if days_left < 0:
            status = MemberStatus.EXPIRED
            db.update_member(member.id, {"status": status})
            logger.info("Member %s marked expired at check-in (days_left=%s)", member.id, days_left)

        db.insert_attendance(member.id, today)

        days_left_after = countdown_for(plan, member.start_date, attended + 1, now)
        total = db.increment_attendance_total(member.id, days_left_after)

    expired = status == MemberStatus.EXPIRED
    if expired:
        message = (
            f"Attendance recorded but {member.full_name}'s membership has expired. "
            "Please remind them to renew their membership."
        )
    else:
        message = f"Attendance for {member.full_name} recorded successfully"

    logger.info("Attendance recorded for member %s: total=%s days_left=%s", member.id, total, days_left_after)
    return AttendanceResult(
        member_id=member.id,
        status=status,
        total_attendance=total,
        days_left=days_left_after,
        message=message,
        expired=expired,
    )


def attendees_on(day: datetime):
    """Members who checked in on the UTC day containing `day`."""
    start = utils.utc_midnight(day)
    return db.attendees_between(start, start + timedelta(days=1))
