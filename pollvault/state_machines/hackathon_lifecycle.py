"""
Event lifecycle state machine.

DRAFT -> LIVE -> CLOSED -> FINALIZED, FINALIZED terminal.

Everything in this module is pure: no database access and no clock reads.
Callers pass `now` explicitly, which keeps every guard independently
testable.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pollvault.orm.hackathon import HackathonStatus


# Guard names surfaced in StatusTransitionDenied responses
GUARD_FINALIZED_TERMINAL = "finalized_terminal"
GUARD_VOTING_CLOSED = "voting_closed"
GUARD_EVENT_ENDED = "event_ended"
# Status changed between read and write
GUARD_STATUS_CHANGED = "status_changed"

STATUS_ORDER = {
    HackathonStatus.DRAFT: 0,
    HackathonStatus.LIVE: 1,
    HackathonStatus.CLOSED: 2,
    HackathonStatus.FINALIZED: 3,
}

# Statuses the reconciliation sweep looks at
RECONCILABLE_STATUSES = (HackathonStatus.LIVE, HackathonStatus.CLOSED)

# Statuses in which ballots are no longer accepted
BALLOTS_CLOSED_STATUSES = (HackathonStatus.CLOSED, HackathonStatus.FINALIZED)


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    guard: Optional[str] = None
    reason: str = ""


def can_change_status(
    current: HackathonStatus,
    requested: HackathonStatus,
    now: datetime,
    voting_closes_at: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> TransitionDecision:
    """
    Decide whether a manual status change is legal.

    Guards are checked in order; the first one that fails names the
    rejection. Manual moves backwards (e.g. CLOSED -> LIVE before voting
    closes) are an administrative override and are allowed.
    """
    current = HackathonStatus(current)
    requested = HackathonStatus(requested)

    if current == HackathonStatus.FINALIZED:
        return TransitionDecision(
            False,
            GUARD_FINALIZED_TERMINAL,
            "Cannot change status from finalized. The event has ended.",
        )

    if voting_closes_at is not None and now >= voting_closes_at:
        if requested in (HackathonStatus.LIVE, HackathonStatus.DRAFT):
            return TransitionDecision(
                False,
                GUARD_VOTING_CLOSED,
                f"Cannot change to '{requested.value}' because voting closed at "
                f"{voting_closes_at.isoformat()}. Status must be 'closed' or 'finalized'.",
            )

    if end_date is not None and now >= end_date:
        if requested != HackathonStatus.FINALIZED:
            return TransitionDecision(
                False,
                GUARD_EVENT_ENDED,
                f"Cannot change to '{requested.value}' because the event ended at "
                f"{end_date.isoformat()}. Status must be 'finalized'.",
            )

    return TransitionDecision(True)


def auto_target_status(
    current: HackathonStatus,
    now: datetime,
    voting_closes_at: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Optional[HackathonStatus]:
    """
    Date-driven target for the reconciliation sweep, or None if nothing to do.

    Only LIVE and CLOSED events are moved, and only forwards.
    """
    current = HackathonStatus(current)
    if current not in RECONCILABLE_STATUSES:
        return None

    if end_date is not None and now >= end_date:
        return HackathonStatus.FINALIZED

    if voting_closes_at is not None and now >= voting_closes_at and current == HackathonStatus.LIVE:
        return HackathonStatus.CLOSED

    return None


def is_forward(current: HackathonStatus, target: HackathonStatus) -> bool:
    return STATUS_ORDER[HackathonStatus(target)] > STATUS_ORDER[HackathonStatus(current)]
