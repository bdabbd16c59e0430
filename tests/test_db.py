from __future__ import annotations

import db
from tests.conftest import add_member


def test_member_lock_pool_does_not_grow() -> None:
    for member_id in range(1, 1000):
        with db.member_lock(member_id):
            pass

    assert len(db._member_locks) == db.MEMBER_LOCK_STRIPES


def test_member_lock_is_stable_per_member() -> None:
    with db.member_lock(7):
        assert db._member_locks[7 % db.MEMBER_LOCK_STRIPES].locked()
    assert not db._member_locks[7 % db.MEMBER_LOCK_STRIPES].locked()


def test_notifications_are_listed_and_marked_read(plan) -> None:
    member_id = add_member(plan.id)
    db.create_notification(member_id, "Membership Expired", "Test Member's membership has expired.")

    assert len(db.list_notifications(unread_only=True)) == 1
    db.mark_notifications_read()
    assert db.list_notifications(unread_only=True) == []
    assert len(db.list_notifications()) == 1
