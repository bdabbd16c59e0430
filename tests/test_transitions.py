from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

import db
import transitions
from errors import Conflict, InvalidArgument, InvalidState, NotFound
from models import ExtensionStatus, MemberStatus
from tests.conftest import NOW, add_member, add_visits


def test_unknown_status_is_rejected(plan) -> None:
    member_id = add_member(plan.id)
    with pytest.raises(InvalidArgument):
        transitions.change_status(member_id, "paused", now=NOW)


def test_unknown_member_is_not_found(plan) -> None:
    with pytest.raises(NotFound):
        transitions.change_status(999, "active", now=NOW)


def test_fresh_activation_starts_now(plan) -> None:
    member_id = add_member(plan.id, status=MemberStatus.PENDING, start=NOW - timedelta(days=3))

    member = transitions.change_status(member_id, "active", now=NOW)

    assert member.status is MemberStatus.ACTIVE
    assert member.start_date == NOW
    assert member.days_left == plan.max_days
    assert member.freeze_date is None


def test_activation_uses_explicit_start_date(plan) -> None:
    member_id = add_member(plan.id, status=MemberStatus.PENDING)

    member = transitions.change_status(member_id, "active", start_date="2026-03-10T00:00:00+00:00", now=NOW)

    assert member.start_date == NOW.replace(day=10, hour=0)


def test_activation_of_overdue_member_keeps_overdue_days_elapsed(plan) -> None:
    member_id = add_member(plan.id, status=MemberStatus.EXPIRED, start=NOW - timedelta(days=35), days_left=-5)

    member = transitions.change_status(member_id, "active", now=NOW)

    assert member.start_date == NOW - timedelta(days=5)
    assert member.days_left == min(25, plan.max_days)


def test_activation_with_bad_date_writes_nothing(plan) -> None:
    member_id = add_member(plan.id, status=MemberStatus.PENDING)
    with pytest.raises(InvalidArgument):
        transitions.change_status(member_id, "active", start_date="tomorrow-ish", now=NOW)
    assert db.get_member(member_id).status is MemberStatus.PENDING


def test_freeze_then_unfreeze_preserves_elapsed_days(plan) -> None:
    start = NOW - timedelta(days=10)
    member_id = add_member(plan.id, start=start)
    add_visits(member_id, range(1, 4))

    frozen = transitions.change_status(member_id, "frozen", freeze_duration=7, now=NOW)
    assert frozen.status is MemberStatus.FROZEN
    assert frozen.freeze_date == NOW
    assert frozen.freeze_duration == 7
    assert frozen.pre_freeze_days_count == 10
    assert frozen.pre_freeze_attendance == 3

    later = NOW + timedelta(days=4)
    thawed = transitions.change_status(member_id, "unfreeze", now=later)
    assert thawed.status is MemberStatus.ACTIVE
    assert thawed.start_date == later - timedelta(days=10)
    assert thawed.freeze_date is None
    assert thawed.freeze_duration == 0


def test_freeze_needs_a_duration(plan) -> None:
    member_id = add_member(plan.id)
    with pytest.raises(InvalidArgument):
        transitions.change_status(member_id, "frozen", now=NOW)
    with pytest.raises(InvalidArgument):
        transitions.change_status(member_id, "frozen", freeze_duration=0, now=NOW)


def test_only_active_or_expired_members_can_be_frozen(plan) -> None:
    member_id = add_member(plan.id, status=MemberStatus.PENDING)
    with pytest.raises(InvalidState):
        transitions.change_status(member_id, "frozen", freeze_duration=5, now=NOW)


def test_unfreeze_without_freeze_is_invalid(plan) -> None:
    member_id = add_member(plan.id)
    with pytest.raises(InvalidState, match="not currently frozen"):
        transitions.change_status(member_id, "unfreeze", now=NOW)


def test_plain_status_change_drops_freeze(plan) -> None:
    member_id = add_member(plan.id, status=MemberStatus.FROZEN, freeze_date=NOW, freeze_duration=5)

    member = transitions.change_status(member_id, "dormant", now=NOW)

    assert member.status is MemberStatus.DORMANT
    assert member.freeze_date is None


def test_renew_resets_to_pending(plan) -> None:
    member_id = add_member(plan.id, status=MemberStatus.INACTIVE, start=NOW - timedelta(days=50), days_left=-20,
                           pre_freeze_days_count=4, pre_freeze_attendance=2)

    member = transitions.renew_member(member_id, now=NOW)

    assert member.status is MemberStatus.PENDING
    assert member.days_left == 0
    assert member.start_date == NOW
    assert member.pre_freeze_days_count == 0
    assert member.pre_freeze_attendance == 0


def test_duplicate_pending_extension_conflicts(plan) -> None:
    member_id = add_member(plan.id)
    transitions.request_extension(member_id, plan.id, now=NOW)

    with pytest.raises(Conflict):
        transitions.request_extension(member_id, plan.id, now=NOW)


def test_extension_request_validation(plan) -> None:
    member_id = add_member(plan.id)
    with pytest.raises(InvalidArgument):
        transitions.request_extension(member_id, None, now=NOW)
    with pytest.raises(NotFound):
        transitions.request_extension(999, plan.id, now=NOW)
    with pytest.raises(NotFound):
        transitions.request_extension(member_id, 999, now=NOW)


def test_approving_extension_charges_overdue_days(plan) -> None:
    member_id = add_member(plan.id, status=MemberStatus.EXPIRED, start=NOW - timedelta(days=35), days_left=-5)
    request = transitions.request_extension(member_id, plan.id, now=NOW)

    resolved = transitions.resolve_extension(request.id, "approved", start_date=NOW, now=NOW)

    member = db.get_member(member_id)
    assert resolved.status is ExtensionStatus.APPROVED
    assert member.status is MemberStatus.ACTIVE
    assert member.days_left == 25
    assert member.start_date == NOW - timedelta(days=5)


def test_approving_extension_for_member_in_good_standing(plan) -> None:
    member_id = add_member(plan.id, days_left=3)
    request = transitions.request_extension(member_id, plan.id, now=NOW)

    transitions.resolve_extension(request.id, "approved", now=NOW)

    member = db.get_member(member_id)
    assert member.days_left == plan.period
    assert member.start_date == NOW


def test_rejecting_extension_leaves_member_untouched(plan) -> None:
    member_id = add_member(plan.id, status=MemberStatus.EXPIRED, days_left=-2)
    request = transitions.request_extension(member_id, plan.id, now=NOW)

    resolved = transitions.resolve_extension(request.id, "rejected", now=NOW)

    member = db.get_member(member_id)
    assert resolved.status is ExtensionStatus.REJECTED
    assert member.status is MemberStatus.EXPIRED
    assert member.days_left == -2
    # a new request is allowed once the previous one is resolved
    transitions.request_extension(member_id, plan.id, now=NOW)
    assert transitions.latest_extension_status(member_id).status is ExtensionStatus.PENDING


def test_extension_can_only_be_resolved_once(plan) -> None:
    member_id = add_member(plan.id)
    request = transitions.request_extension(member_id, plan.id, now=NOW)
    transitions.resolve_extension(request.id, "rejected", now=NOW)

    with pytest.raises(InvalidState):
        transitions.resolve_extension(request.id, "approved", now=NOW)


def test_resolve_extension_validation(plan) -> None:
    with pytest.raises(InvalidArgument):
        transitions.resolve_extension(1, "maybe", now=NOW)
    with pytest.raises(InvalidArgument):
        transitions.resolve_extension(1, "pending", now=NOW)
    with pytest.raises(NotFound):
        transitions.resolve_extension(999, "approved", now=NOW)


def test_concurrent_approvals_apply_once(plan, monkeypatch) -> None:
    member_id = add_member(plan.id, status=MemberStatus.EXPIRED, start=NOW - timedelta(days=35), days_left=-5)
    request = transitions.request_extension(member_id, plan.id, now=NOW)

    real_get_member = db.get_member

    def slow_get_member(member_id):
        time.sleep(0.2)
        return real_get_member(member_id)

    monkeypatch.setattr(db, "get_member", slow_get_member)

    resolved, errors = [], []

    def approve():
        try:
            resolved.append(transitions.resolve_extension(request.id, "approved", start_date=NOW, now=NOW))
        except InvalidState as e:
            errors.append(e)

    threads = [threading.Thread(target=approve) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(resolved) == 1
    assert len(errors) == 1
    member = real_get_member(member_id)
    assert member.days_left == 25
    assert member.start_date == NOW - timedelta(days=5)


def test_resolved_request_cannot_be_updated_again(plan) -> None:
    member_id = add_member(plan.id, days_left=3)
    request = transitions.request_extension(member_id, plan.id, now=NOW)
    db.update_extension_request(request.id, ExtensionStatus.REJECTED)

    with pytest.raises(InvalidState):
        db.update_extension_request(request.id, ExtensionStatus.APPROVED, member_id, {"days_left": 99})

    assert db.get_extension_request(request.id).status is ExtensionStatus.REJECTED
    assert db.get_member(member_id).days_left == 3
