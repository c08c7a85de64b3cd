"""Quota & Edit-Lock Tracker, derived entirely from the usage-event log.

Policies are data: each plan is a tuple of ``Window`` rows, and every window
is evaluated by the same pure ``count_events_in_window``. Windows age out on
their own; there is no reset logic and no counters table.

    lifetime plan : 1 create, ever
    rolling plan  : 5 creates / 7 days  AND  20 creates / 30 days
    edits         : 1 per project, ever
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.orm import Session, sessionmaker

from qrstudio import db
from qrstudio.logging import audit, get_logger, trace

log = get_logger("quota")


class Plan(Enum):
    LIFETIME_ONE = "onetime"
    ROLLING = "rolling"


class DenyReason(Enum):
    LIFETIME_LIMIT = "onetime_limit_reached"
    WEEKLY_LIMIT = "weekly_limit_reached"
    MONTHLY_LIMIT = "monthly_limit_reached"
    EDIT_LOCKED = "edit_locked"


@dataclass(frozen=True)
class Window:
    reason: DenyReason
    limit: int
    length: timedelta | None  # None = lifetime


PLAN_WINDOWS: dict[Plan, tuple[Window, ...]] = {
    Plan.LIFETIME_ONE: (
        Window(DenyReason.LIFETIME_LIMIT, limit=1, length=None),
    ),
    Plan.ROLLING: (
        Window(DenyReason.WEEKLY_LIMIT, limit=5, length=timedelta(days=7)),
        Window(DenyReason.MONTHLY_LIMIT, limit=20, length=timedelta(days=30)),
    ),
}

EDITS_PER_PROJECT = 1


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reasons: tuple[DenyReason, ...] = ()
    unlock_at: datetime | None = None
    counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reasons": [r.value for r in self.reasons],
            "unlock_at": self.unlock_at.isoformat() if self.unlock_at else None,
            "counts": dict(self.counts),
        }


# ---------------------------------------------------------------------------
# Pure read model
# ---------------------------------------------------------------------------

def events_in_window(timestamps: Sequence[datetime], now: datetime, length: timedelta | None) -> list[datetime]:
    """Ascending timestamps inside ``[now - length, now]`` (all up to now for lifetime)."""
    start = None if length is None else now - length
    return sorted(t for t in timestamps if t <= now and (start is None or t >= start))


def count_events_in_window(timestamps: Sequence[datetime], now: datetime, length: timedelta | None) -> int:
    return len(events_in_window(timestamps, now, length))


def window_unlock_at(inside: Sequence[datetime], window: Window) -> datetime | None:
    """When enough events age out for one more action to fit.

    With exactly ``limit`` events inside, that is the oldest one plus the
    window length. Lifetime windows never unlock.
    """
    if window.length is None:
        return None
    must_age_out = inside[len(inside) - window.limit]
    return must_age_out + window.length


def check_create(timestamps: Sequence[datetime], plan: Plan, now: datetime) -> Decision:
    """Evaluate every window of the plan; unlock is the latest over violated windows."""
    reasons: list[DenyReason] = []
    unlocks: list[datetime | None] = []
    counts: dict[str, int] = {}

    for window in PLAN_WINDOWS[plan]:
        inside = events_in_window(timestamps, now, window.length)
        counts[window.reason.name.lower()] = len(inside)
        if len(inside) >= window.limit:
            reasons.append(window.reason)
            unlocks.append(window_unlock_at(inside, window))

    if not reasons:
        return Decision(allowed=True, counts=counts)
    unlock_at = None if any(u is None for u in unlocks) else max(unlocks)
    return Decision(allowed=False, reasons=tuple(reasons), unlock_at=unlock_at, counts=counts)


def check_edit(edit_count: int) -> Decision:
    if edit_count >= EDITS_PER_PROJECT:
        return Decision(allowed=False, reasons=(DenyReason.EDIT_LOCKED,), counts={"edits": edit_count})
    return Decision(allowed=True, counts={"edits": edit_count})


# ---------------------------------------------------------------------------
# Event-log backed tracker
# ---------------------------------------------------------------------------

class QuotaTracker:
    """Reads the usage-event log at request time; appends after a successful action."""

    def __init__(self, sessions: sessionmaker[Session], clock: Callable[[], datetime] = db.utcnow):
        self.sessions = sessions
        self.clock = clock

    def _lookback(self, plan: Plan, now: datetime) -> datetime | None:
        lengths = [w.length for w in PLAN_WINDOWS[plan]]
        if any(length is None for length in lengths):
            return None
        return now - max(lengths)

    def create_decision(self, session: Session, owner_id: str, plan: Plan, now: datetime | None = None) -> Decision:
        now = db.as_utc(now or self.clock())
        times = db.event_times(session, owner_id, db.EVENT_CREATE, since=self._lookback(plan, now))
        decision = check_create(times, plan, now)
        audit("quota.create_checked", logger=log, owner=owner_id, plan=plan.value,
              allowed=decision.allowed, counts=decision.counts,
              unlock_at=decision.unlock_at.isoformat() if decision.unlock_at else None)
        return decision

    def edit_decision(self, session: Session, owner_id: str, project_id: str) -> Decision:
        edits = db.count_events(session, owner_id, db.EVENT_EDIT, project_id=project_id)
        decision = check_edit(edits)
        audit("quota.edit_checked", logger=log, owner=owner_id, project=project_id, allowed=decision.allowed)
        return decision

    @trace
    def authorize_create(self, owner_id: str, plan: Plan, now: datetime | None = None) -> Decision:
        with self.sessions() as session:
            return self.create_decision(session, owner_id, plan, now)

    @trace
    def authorize_edit(self, owner_id: str, project_id: str) -> Decision:
        with self.sessions() as session:
            return self.edit_decision(session, owner_id, project_id)

    def record(self, session: Session, owner_id: str, kind: str, project_id: str | None,
               at: datetime | None = None) -> None:
        db.append_event(session, owner_id, kind, project_id, at=at or self.clock())
        audit("quota.event_recorded", logger=log, owner=owner_id, kind=kind, project=project_id)
