"""Elapsed focus time and cycle counting: pure functions, no I/O.

Elapsed time is always derived from the committed checkpoint plus the
wall-clock delta, never from the number of ticks delivered, so a tab that
was suspended for an hour reconciles to the same value as one that ticked
every second.
"""

from __future__ import annotations

from .models import EngineSnapshot


def elapsed_delta_seconds(start_ms: int | None, now_ms: int) -> int:
    """Whole seconds between a start stamp and now. Clock rollback clamps to 0."""
    if start_ms is None:
        return 0
    return max(0, (now_ms - start_ms) // 1000)


def compute_elapsed_seconds(snapshot: EngineSnapshot, now_ms: int) -> int:
    if not snapshot.is_running:
        return max(0, snapshot.accumulated_focus_seconds)
    return max(0, snapshot.accumulated_focus_seconds + elapsed_delta_seconds(snapshot.focus_start_ms, now_ms))


# ---- Checkpoints ----

def start_checkpoint(snapshot: EngineSnapshot, now_ms: int) -> EngineSnapshot:
    """Stamp a fresh start time. A running snapshot is returned unchanged."""
    if snapshot.is_running:
        return snapshot
    return snapshot.with_changes(is_running=True, focus_start_ms=now_ms)


def pause_checkpoint(snapshot: EngineSnapshot, now_ms: int) -> EngineSnapshot:
    """Commit the live elapsed value and clear the start stamp."""
    if not snapshot.is_running:
        return snapshot
    return snapshot.with_changes(
        accumulated_focus_seconds=compute_elapsed_seconds(snapshot, now_ms),
        focus_start_ms=None,
        is_running=False,
    )


def rebase_elapsed(snapshot: EngineSnapshot, elapsed_seconds: int, now_ms: int) -> EngineSnapshot:
    """Commit a new elapsed value, re-anchoring the start stamp when running."""
    elapsed_seconds = max(0, elapsed_seconds)
    if snapshot.is_running:
        return snapshot.with_changes(accumulated_focus_seconds=elapsed_seconds, focus_start_ms=now_ms)
    return snapshot.with_changes(accumulated_focus_seconds=elapsed_seconds)


# ---- Cycle counting ----

def derive_cycle_count(elapsed_seconds: int, cycle_length_seconds: int) -> int:
    return max(0, elapsed_seconds) // cycle_length_seconds


def reconcile_cycles(current_cycles: int, elapsed_seconds: int, cycle_length_seconds: int) -> int:
    """Raise the stored count to the derived one; never lower it."""
    return max(current_cycles, derive_cycle_count(elapsed_seconds, cycle_length_seconds))


def seed_cycles(stored_cycles: int, elapsed_seconds: int, cycle_length_seconds: int) -> int:
    """Initial count on load.

    Same arithmetic as ``reconcile_cycles``; kept separate because the
    caller must not treat the difference as a live increase.
    """
    return max(stored_cycles, derive_cycle_count(elapsed_seconds, cycle_length_seconds))


# ---- Display ----

def cycle_progress_percent(elapsed_seconds: int, cycle_length_seconds: int) -> float:
    return (elapsed_seconds % cycle_length_seconds) / cycle_length_seconds * 100


def seconds_left_in_cycle(elapsed_seconds: int, cycle_length_seconds: int) -> int:
    """Seconds until the next cycle completes; a full cycle on an exact boundary."""
    into_cycle = elapsed_seconds % cycle_length_seconds
    if into_cycle == 0:
        return cycle_length_seconds
    return cycle_length_seconds - into_cycle
