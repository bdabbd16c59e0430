"""
sweep.py
Daily reconciliation of member statuses.

`reconcile_member` decides what happens to one member given the clock;
`run_daily_reconciliation` loads members, applies those decisions and stores
the notifications. A failure on one member is logged and the sweep moves on.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import db
import utils
from countdown import countdown_for, status_for_countdown
from logging_config import get_logger
from models import (
    SWEEP_STATUSES,
    Member,
    MemberStatus,
    NotificationEvent,
    ReconcileOutcome,
    ServicePlan,
    SweepReport,
)
from transitions import unfreeze_patch

logger = get_logger(__name__)

NOTIFY_STATUSES = (MemberStatus.EXPIRED, MemberStatus.INACTIVE)


def freeze_ended(member: Member, now: datetime) -> bool:
    return now >= member.freeze_date + timedelta(days=member.freeze_duration)


def reconcile_member(member: Member, plan: ServicePlan, attendance_count: int | None, now: datetime) -> ReconcileOutcome:
    """
    Frozen members are only checked for the end of their freeze; their
    countdown is left as it is until the next cycle. Everyone else gets a
    fresh countdown and the status it implies.
    """
    if member.is_frozen:
        if member.freeze_date is not None and freeze_ended(member, now):
            return ReconcileOutcome(patch=unfreeze_patch(member, now))
        return ReconcileOutcome()

    days_left = countdown_for(plan, member.start_date, attendance_count or 0, now)
    new_status = status_for_countdown(days_left, member.status)
    patch = {"days_left": days_left, "status": new_status}

    events = ()
    if new_status != member.status and new_status in NOTIFY_STATUSES:
        events = (
            NotificationEvent(
                user_id=member.id,
                name="Membership Status Update",
                description=f"{member.full_name}'s membership has been marked as {new_status.value}.",
            ),
        )
    return ReconcileOutcome(patch=patch, events=events)


def _reconcile_one(member_id: int, now: datetime, today: str, report: SweepReport) -> None:
    with db.member_lock(member_id):
        # Re-read under the lock; attendance may have changed it since the listing.
        member = db.get_member(member_id)
        if member is None or member.status not in SWEEP_STATUSES:
            report.skipped += 1
            return
        if member.last_reconciled_on == today:
            report.skipped += 1
            return

        plan = db.get_service_plan(member.service_id)
        if plan is None:
            logger.warning("Member %s has no active service. Skipping.", member.id)
            report.skipped += 1
            return

        attended = None if member.is_frozen else db.count_attendance(member.id, member.start_date)
        outcome = reconcile_member(member, plan, attended, now)

        db.apply_reconciliation(member.id, {**outcome.patch, "last_reconciled_on": today}, outcome.events)

        report.processed += 1
        if outcome.patch:
            report.updated += 1
        report.notifications += len(outcome.events)

        new_status = MemberStatus(outcome.patch.get("status", member.status))
        if new_status != member.status:
            logger.info("Member %s status %s -> %s", member.id, member.status.value, new_status.value)
        logger.debug("Member %s reconciled: days_left=%s", member.id, outcome.patch.get("days_left", member.days_left))


def run_daily_reconciliation(now: datetime | None = None) -> SweepReport:
    """
    Re-evaluate every active, expired and frozen member. Safe to run more than
    once a day: members already reconciled on this UTC day are skipped.
    """
    now = now or utils.utc_now()
    today = utils.day_key(now)
    report = SweepReport()

    logger.info("Starting member status reconciliation for %s", today)
    members = db.list_members_by_status(SWEEP_STATUSES)

    for member in members:
        try:
            _reconcile_one(member.id, now, today, report)
        except Exception:
            logger.exception("Reconciliation failed for member %s", member.id)
            report.failed += 1
            report.failed_ids.append(member.id)

    logger.info(
        "Reconciliation done: processed=%s updated=%s skipped=%s failed=%s notifications=%s",
        report.processed,
        report.updated,
        report.skipped,
        report.failed,
        report.notifications,
    )
    return report
