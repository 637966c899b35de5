"""Rest session state machine: Idle <-> Resting.

Starting a rest spends the whole positive balance, or borrows a fixed
amount when there is nothing to spend. Ending it settles the difference:
unused time is refunded rounded up, overtime is charged rounded down
(a partial overtime minute costs a full minute).
"""

from __future__ import annotations

from dataclasses import replace

from .models import RestAdjustment, RestSession, RestState
from .tracker import elapsed_delta_seconds

BORROW_MINUTES = 5


def seconds_remaining(session: RestSession, now_ms: int) -> int:
    if not session.is_resting:
        return 0
    return session.seconds_at_start - elapsed_delta_seconds(session.started_ms, now_ms)


def use_rest(balance: int, now_ms: int) -> tuple[RestSession, int, bool]:
    """Open a session. Returns (session, new_balance, borrowed)."""
    if balance > 0:
        session = RestSession(state=RestState.RESTING, seconds_at_start=balance * 60, started_ms=now_ms)
        return session, 0, False
    session = RestSession(state=RestState.RESTING, seconds_at_start=BORROW_MINUTES * 60, started_ms=now_ms)
    return session, balance - BORROW_MINUTES, True


def settlement_minutes(remaining_seconds: int) -> int:
    """Balance change for ending with ``remaining_seconds`` left.

    >>> settlement_minutes(30), settlement_minutes(0), settlement_minutes(-75)
    (1, 0, -2)
    """
    if remaining_seconds > 0:
        return -(-remaining_seconds // 60)
    return remaining_seconds // 60


def end_rest(session: RestSession, balance: int, now_ms: int) -> tuple[RestSession, int, RestAdjustment | None]:
    """Close a session and settle the balance. Idle sessions pass through untouched."""
    if not session.is_resting:
        return session, balance, None

    minutes = settlement_minutes(seconds_remaining(session, now_ms))
    adjustment = None
    if minutes != 0:
        adjustment = RestAdjustment(minutes=minutes, message=adjustment_message(minutes))
    return RestSession(), balance + minutes, adjustment


def mark_finished(session: RestSession, now_ms: int) -> tuple[RestSession, bool]:
    """Flag the first reconciliation at which the session runs out."""
    if not session.is_resting or session.finish_signalled:
        return session, False
    if seconds_remaining(session, now_ms) > 0:
        return session, False
    return replace(session, finish_signalled=True), True


def adjustment_message(minutes: int) -> str:
    if minutes > 0:
        return f"{minutes} minute(s) of rest returned to your balance."
    return f"{abs(minutes)} minute(s) borrowed from your balance."
