"""
transitions.py
Manual membership status changes (activate, freeze, unfreeze, renew, ...)
and subscription extension requests.

The *_patch functions are pure: they take the member as read and return the
columns to write. The public functions below them load, validate, then write.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import db
import utils
from countdown import compute_days_left
from errors import Conflict, InvalidArgument, InvalidState, NotFound
from logging_config import get_logger
from models import (
    FREEZABLE_STATUSES,
    ExtensionRequest,
    ExtensionStatus,
    Member,
    MemberStatus,
    ServicePlan,
    StatusAction,
)

logger = get_logger(__name__)

CLEARED_FREEZE = {
    "freeze_date": None,
    "freeze_duration": 0,
    "pre_freeze_attendance": 0,
    "pre_freeze_days_count": 0,
}


# ---------- Pure patch builders ----------

def activation_start(member: Member, requested_start: datetime, now: datetime) -> datetime:
    # Overdue days count as already used in the new period.
    if member.days_left < 0:
        return now + timedelta(days=member.days_left)
    return requested_start


def activate_patch(start_date: datetime, days_left: int) -> dict:
    return {"status": MemberStatus.ACTIVE, "start_date": start_date, "days_left": days_left, **CLEARED_FREEZE}


def parse_freeze_duration(value) -> int:
    if value is None or isinstance(value, bool):
        raise InvalidArgument("Freeze duration is required to freeze a member")
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise InvalidArgument("Freeze duration must be a whole number of days") from None
    if days <= 0:
        raise InvalidArgument("Freeze duration must be at least 1 day")
    return days


def freeze_patch(member: Member, freeze_duration: int, attendance_count: int, now: datetime) -> dict:
    if member.status not in FREEZABLE_STATUSES:
        raise InvalidState(f"{member.full_name} is {member.status.value} and cannot be frozen")
    return {
        "status": MemberStatus.FROZEN,
        "freeze_date": now,
        "freeze_duration": freeze_duration,
        "pre_freeze_attendance": attendance_count,
        "pre_freeze_days_count": utils.days_between(member.start_date, now),
    }


def unfreeze_patch(member: Member, now: datetime) -> dict:
    """
    Rewind start_date so only the days used before the freeze count as elapsed.
    """
    if member.freeze_date is None:
        raise InvalidState("User is not currently frozen")
    return {
        "status": MemberStatus.ACTIVE,
        "start_date": now - timedelta(days=member.pre_freeze_days_count),
        "freeze_date": None,
        "freeze_duration": 0,
    }


def renew_patch(now: datetime) -> dict:
    return {
        "status": MemberStatus.PENDING,
        "days_left": 0,
        "start_date": now,
        "freeze_date": None,
        "pre_freeze_attendance": 0,
        "pre_freeze_days_count": 0,
    }


def approval_patch(member: Member, plan: ServicePlan, start_date: datetime) -> dict:
    """
    A member already overdue is charged the overdue days against the new period.
    """
    service_days = plan.period
    if member.days_left < 0:
        start_date = start_date + timedelta(days=member.days_left)
        days_left = service_days + member.days_left
    else:
        days_left = service_days
    return {
        "status": MemberStatus.ACTIVE,
        "start_date": start_date,
        "days_left": days_left,
        "freeze_date": None,
        "pre_freeze_attendance": 0,
        "pre_freeze_days_count": 0,
    }


def plain_status_patch(member: Member, status: MemberStatus) -> dict:
    patch = {"status": status}
    # Leaving a freeze any other way still drops the freeze anchor.
    if member.freeze_date is not None:
        patch.update(freeze_date=None, freeze_duration=0)
    return patch


# ---------- Drivers ----------

def _load_member(member_id: int) -> Member:
    member = db.get_member(member_id)
    if member is None:
        raise NotFound("User not found")
    return member


def change_status(member_id: int, status, start_date=None, freeze_duration=None, now: datetime | None = None) -> Member:
    action = StatusAction.parse(status)
    now = now or utils.utc_now()

    with db.member_lock(member_id):
        member = _load_member(member_id)

        if action is StatusAction.ACTIVE:
            requested = utils.parse_start_date(start_date, now)
            plan = db.get_service_plan(member.service_id)
            new_start = activation_start(member, requested, now)
            days_left = compute_days_left(plan, new_start, member.id, now)
            patch = activate_patch(new_start, days_left)
        elif action is StatusAction.FROZEN:
            days = parse_freeze_duration(freeze_duration)
            attended = db.count_attendance(member.id, member.start_date)
            patch = freeze_patch(member, days, attended, now)
        elif action is StatusAction.UNFREEZE:
            patch = unfreeze_patch(member, now)
        else:
            patch = plain_status_patch(member, MemberStatus(action.value))

        db.update_member(member.id, patch)
        logger.info(
            "Member %s status %s -> %s (%s)",
            member.id,
            member.status.value,
            MemberStatus(patch["status"]).value,
            action.value,
        )
        return db.get_member(member.id)


def renew_member(member_id: int, now: datetime | None = None) -> Member:
    """Put a lapsed member back to pending, awaiting staff approval."""
    now = now or utils.utc_now()
    with db.member_lock(member_id):
        member = _load_member(member_id)
        db.update_member(member.id, renew_patch(now))
        logger.info("Member %s renewed (%s -> pending)", member.id, member.status.value)
        return db.get_member(member.id)


def request_extension(user_id: int, service_id: int | None, now: datetime | None = None) -> ExtensionRequest:
    if service_id is None:
        raise InvalidArgument("Service ID is required.")
    now = now or utils.utc_now()

    if db.get_member(user_id) is None:
        raise NotFound("User not found.")
    if db.get_service_plan(service_id) is None:
        raise NotFound("Service not found.")
    if db.find_pending_extension(user_id, service_id) is not None:
        raise Conflict("You already have a pending request for this service.")

    request_id = db.create_extension_request(user_id, service_id, now)
    logger.info("Extension request %s created for member %s (service %s)", request_id, user_id, service_id)
    return db.get_extension_request(request_id)


def _load_pending_request(request_id: int) -> ExtensionRequest:
    request = db.get_extension_request(request_id)
    if request is None:
        raise NotFound("Subscription request not found.")
    if request.status is not ExtensionStatus.PENDING:
        raise InvalidState(f"Subscription request is already {request.status.value}.")
    return request


def resolve_extension(request_id: int, decision, start_date=None, now: datetime | None = None) -> ExtensionRequest:
    try:
        decision = ExtensionStatus(decision)
    except ValueError:
        raise InvalidArgument("Invalid status.") from None
    if decision is ExtensionStatus.PENDING:
        raise InvalidArgument("Invalid status.")
    now = now or utils.utc_now()

    request = _load_pending_request(request_id)

    with db.member_lock(request.user_id):
        # Another resolution may have landed while waiting for the lock.
        request = _load_pending_request(request_id)
        member = _load_member(request.user_id)

        patch = None
        if decision is ExtensionStatus.APPROVED:
            requested = utils.parse_start_date(start_date, now)
            plan = db.get_service_plan(request.service_id)
            if plan is None:
                raise NotFound("Service not found.")
            patch = approval_patch(member, plan, requested)

        db.update_extension_request(request.id, decision, member.id, patch)
        if patch is not None:
            logger.info(
                "Extension %s approved: member %s active, days_left=%s", request.id, member.id, patch["days_left"]
            )
        else:
            logger.info("Extension %s rejected for member %s", request.id, member.id)

    return db.get_extension_request(request.id)


def latest_extension_status(user_id: int) -> ExtensionRequest | None:
    return db.latest_extension_request(user_id)
