from datetime import datetime, timedelta, timezone

from qrstudio import db
from qrstudio.quota import (
    DenyReason,
    Plan,
    QuotaTracker,
    check_create,
    check_edit,
    count_events_in_window,
)

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def days(n: float) -> timedelta:
    return timedelta(days=n)


def test_window_bounds_are_inclusive():
    now = T0 + days(7)
    stamps = [T0, T0 + days(1), now, now + timedelta(seconds=1)]
    assert count_events_in_window(stamps, now, days(7)) == 3
    assert count_events_in_window(stamps, now, None) == 3
    assert count_events_in_window([T0 - timedelta(seconds=1)], now, days(7)) == 0


def test_lifetime_plan_allows_exactly_one():
    assert check_create([], Plan.LIFETIME_ONE, T0).allowed
    decision = check_create([T0], Plan.LIFETIME_ONE, T0 + days(400))
    assert not decision.allowed
    assert decision.reasons == (DenyReason.LIFETIME_LIMIT,)
    assert decision.unlock_at is None


def test_rolling_week_blocks_sixth_and_unlocks_seven_days_after_oldest():
    stamps = [T0 + days(i) for i in range(5)]
    now = T0 + days(4) + timedelta(hours=1)
    decision = check_create(stamps, Plan.ROLLING, now)
    assert not decision.allowed
    assert decision.reasons == (DenyReason.WEEKLY_LIMIT,)
    assert decision.unlock_at == T0 + days(7)
    assert decision.counts["weekly_limit"] == 5


def test_rolling_week_reopens_once_oldest_ages_out():
    stamps = [T0 + days(i) for i in range(5)]
    assert check_create(stamps, Plan.ROLLING, T0 + days(7) + timedelta(seconds=1)).allowed


def test_old_events_do_not_count():
    stamps = [T0 - days(8)] * 5
    assert check_create(stamps, Plan.ROLLING, T0).allowed


def test_unlock_is_latest_over_all_violated_windows():
    stamps = [T0 + days(i) for i in range(20)]
    now = T0 + days(19) + timedelta(hours=1)
    decision = check_create(stamps, Plan.ROLLING, now)
    assert set(decision.reasons) == {DenyReason.WEEKLY_LIMIT, DenyReason.MONTHLY_LIMIT}
    # weekly alone would reopen at day 22; the monthly window holds until day 30
    assert decision.unlock_at == T0 + days(30)


def test_edit_lock():
    assert check_edit(0).allowed
    locked = check_edit(1)
    assert not locked.allowed
    assert locked.reasons == (DenyReason.EDIT_LOCKED,)


def test_decision_to_dict():
    data = check_create([T0], Plan.LIFETIME_ONE, T0).to_dict()
    assert data == {
        "allowed": False,
        "reasons": ["onetime_limit_reached"],
        "unlock_at": None,
        "counts": {"lifetime_limit": 1},
    }


def test_tracker_reads_the_event_log(sessions):
    tracker = QuotaTracker(sessions, clock=lambda: T0 + days(4) + timedelta(hours=1))
    with sessions.begin() as session:
        for i in range(5):
            tracker.record(session, "u-1", db.EVENT_CREATE, f"p-{i}", at=T0 + days(i))
        tracker.record(session, "u-2", db.EVENT_CREATE, "other", at=T0)

    decision = tracker.authorize_create("u-1", Plan.ROLLING)
    assert not decision.allowed
    assert decision.unlock_at == T0 + days(7)
    assert tracker.authorize_create("u-1", Plan.ROLLING, now=T0 + days(8)).allowed
    assert tracker.authorize_create("u-3", Plan.LIFETIME_ONE).allowed
    assert not tracker.authorize_create("u-2", Plan.LIFETIME_ONE).allowed


def test_tracker_edit_lock_is_per_project(sessions):
    tracker = QuotaTracker(sessions)
    with sessions.begin() as session:
        tracker.record(session, "u-1", db.EVENT_EDIT, "p-1")
    assert not tracker.authorize_edit("u-1", "p-1").allowed
    assert tracker.authorize_edit("u-1", "p-2").allowed
