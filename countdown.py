"""
countdown.py
Days-left computation shared by attendance, status changes and the daily sweep.
"""

from __future__ import annotations

from datetime import datetime

import db
import utils
from errors import NotFound
from logging_config import get_logger
from models import SEVERE_OVERDUE_DAYS, Member, MemberStatus, ServicePlan

logger = get_logger(__name__)


def countdown_for(plan: ServicePlan, start_date: datetime, attendance_count: int, now: datetime) -> int:
    expiration_date = utils.add_days(start_date, plan.period)
    remaining_allowance = plan.max_days - attendance_count
    return utils.clamp_countdown(expiration_date, remaining_allowance, now)


def compute_days_left(plan: ServicePlan | None, start_date: datetime, member_id: int, now: datetime | None = None) -> int:
    """
    Countdown for a member: the smaller of the days until the plan period ends
    and the visits left in the allowance since `start_date`.

    Lookup errors propagate; callers decide whether to skip or fail.
    """
    if plan is None:
        raise NotFound("Member is not subscribed to any service")
    now = now or utils.utc_now()
    attended = db.count_attendance(member_id, start_date)
    return countdown_for(plan, start_date, attended, now)


def status_for_countdown(days_left: int, current: MemberStatus) -> MemberStatus:
    if days_left < SEVERE_OVERDUE_DAYS:
        return MemberStatus.INACTIVE
    if days_left < 0:
        return MemberStatus.EXPIRED
    return current


def refresh_member(member_id: int, now: datetime | None = None) -> Member:
    """
    Recompute and store days_left (and the status it implies) for an active or
    expired member. Members in any other status are returned as they are.
    """
    now = now or utils.utc_now()
    with db.member_lock(member_id):
        member = db.get_member(member_id)
        if member is None:
            raise NotFound("User not found")
        plan = db.get_service_plan(member.service_id)
        if plan is None:
            raise NotFound("User is not subscribed to any service")
        if member.status not in (MemberStatus.ACTIVE, MemberStatus.EXPIRED):
            return member

        days_left = compute_days_left(plan, member.start_date, member.id, now)
        patch = {"days_left": days_left}
        new_status = status_for_countdown(days_left, member.status)
        if new_status != member.status:
            patch["status"] = new_status
            logger.info("Member %s status %s -> %s on refresh", member.id, member.status.value, new_status.value)
        db.update_member(member.id, patch)
        return db.get_member(member.id)
