"""Focus engine: the single writer of the persisted checkpoint.

Every operator command, tick and visibility resume goes through
``FocusEngine``; each call runs to completion, persists what changed and
returns a ``TransitionResult`` describing the events it produced. Time is
injected as wall-clock milliseconds (``now_ms``) so the whole engine is
deterministic under test; when omitted the engine reads its clock.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from . import rest, store as snapshot_store
from .ledger import apply_cycle_delta
from .models import (
    CycleSettings,
    EngineEvent,
    EngineSnapshot,
    InvalidSettingsError,
    RestAdjustment,
    RestSession,
    TransitionResult,
)
from .store import SnapshotStore
from .tracker import (
    compute_elapsed_seconds,
    cycle_progress_percent,
    pause_checkpoint,
    rebase_elapsed,
    reconcile_cycles,
    seconds_left_in_cycle,
    seed_cycles,
    start_checkpoint,
)

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def format_clock(seconds: int) -> str:
    """Format seconds as MM:SS, or HH:MM:SS from one hour up. Negative gets a leading '-'."""
    sign = "-" if seconds < 0 else ""
    total = abs(int(seconds))
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    if hours > 0:
        return f"{sign}{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{sign}{minutes:02d}:{secs:02d}"


def _noop(reason: str) -> TransitionResult:
    return TransitionResult(reason=reason)


class FocusEngine:
    """Reconciles focus time, cycles, rewards and rest sessions against a store.

    Opening an engine claims the store: while it is open, any other engine
    on the same store raises ``StoreOwnedError``. Call ``close`` to release.

    ``seed_on_load`` controls how cycles finished since the last commit are
    treated. A process picking up a ledger after a crash or restart seeds
    them silently. A short-lived caller that continues the same session
    (one CLI command after another) passes False, and the next
    reconciliation credits them like live time.
    """

    def __init__(
        self,
        store: SnapshotStore,
        now_ms: int | None = None,
        clock: Callable[[], int] = wall_clock_ms,
        seed_on_load: bool = True,
        owner_url: str | None = None,
    ):
        self._owner_token = uuid.uuid4().hex
        snapshot_store.claim_owner(store, self._owner_token, owner_url)
        self._store = store
        self._seed_on_load = seed_on_load
        self._clock = clock
        self._pending_manual: int = 0
        self._settings: CycleSettings = snapshot_store.load_settings(store)
        self._snapshot: EngineSnapshot = EngineSnapshot()
        self._rest: RestSession = RestSession()
        self._load(self._now(now_ms))

    def close(self) -> None:
        """Give up ownership of the store. The store itself stays open."""
        snapshot_store.release_owner(self._store, self._owner_token)

    # ---- Read-only properties ----

    @property
    def snapshot(self) -> EngineSnapshot:
        return self._snapshot

    @property
    def settings(self) -> CycleSettings:
        return self._settings

    @property
    def rest_session(self) -> RestSession:
        return self._rest

    @property
    def pending_manual_adjustments(self) -> int:
        return self._pending_manual

    def elapsed_seconds(self, now_ms: int | None = None) -> int:
        return compute_elapsed_seconds(self._snapshot, self._now(now_ms))

    def rest_seconds_remaining(self, now_ms: int | None = None) -> int:
        return rest.seconds_remaining(self._rest, self._now(now_ms))

    # ---- Reconciliation ----

    def tick(self, now_ms: int | None = None) -> TransitionResult:
        """Advance whichever session is active. Tick count never matters, only the clock."""
        now_ms = self._now(now_ms)
        result = TransitionResult()
        snapshot, session = self._snapshot, self._rest

        if session.is_resting:
            session, finished = rest.mark_finished(session, now_ms)
            if finished:
                result.events.append(EngineEvent.REST_FINISHED)
                result.notice = "Rest finished! Time to get back to focus."
                logger.info("Rest session ran out")
        elif snapshot.is_running:
            snapshot = self._reconcile(snapshot, now_ms, result)

        self._commit(snapshot, session)
        return result

    def resume_from_background(self, now_ms: int | None = None) -> TransitionResult:
        """Re-read the committed checkpoint and reconcile against the clock.

        Time that passed while the host was not scheduled is credited like
        any other live time; only a fresh load seeds silently.
        """
        now_ms = self._now(now_ms)
        stored = snapshot_store.load_snapshot(self._store)
        if stored.is_running:
            self._snapshot = self._snapshot.with_changes(
                accumulated_focus_seconds=stored.accumulated_focus_seconds,
                focus_start_ms=stored.focus_start_ms,
                is_running=True,
            )
        logger.debug("Resume from background at %d", now_ms)
        return self.tick(now_ms)

    # ---- Focus timer commands ----

    def start(self, now_ms: int | None = None) -> TransitionResult:
        now_ms = self._now(now_ms)
        if self._rest.is_resting:
            return _noop("rest session in progress")
        if self._snapshot.is_running:
            return _noop("timer already running")

        result = TransitionResult(events=[EngineEvent.TIMER_STARTED])
        self._commit(start_checkpoint(self._snapshot, now_ms), self._rest)
        logger.info("Focus timer started at %ds", self._snapshot.accumulated_focus_seconds)
        return result

    def pause(self, now_ms: int | None = None) -> TransitionResult:
        now_ms = self._now(now_ms)
        if not self._snapshot.is_running:
            return _noop("timer not running")

        result = TransitionResult()
        self._commit(self._pause(self._snapshot, now_ms, result), self._rest)
        return result

    def reset_elapsed(self, now_ms: int | None = None) -> TransitionResult:
        now_ms = self._now(now_ms)
        result = TransitionResult()
        snapshot = self._reconcile(self._snapshot, now_ms, result)
        snapshot = rebase_elapsed(snapshot, 0, now_ms)

        result.events.append(EngineEvent.ELAPSED_RESET)
        result.notice = "Timer progress has been reset."
        self._commit(snapshot, self._rest)
        return result

    # ---- Cycle commands ----

    def add_cycle(self, now_ms: int | None = None) -> TransitionResult:
        """Credit one cycle by hand. Manual cycles never earn a reward."""
        now_ms = self._now(now_ms)
        result = TransitionResult()
        snapshot = self._reconcile(self._snapshot, now_ms, result)
        elapsed = compute_elapsed_seconds(snapshot, now_ms)

        self._pending_manual += 1
        snapshot = rebase_elapsed(snapshot, elapsed + self._settings.cycle_length_seconds, now_ms)
        snapshot = self._apply_cycles(snapshot, snapshot.completed_cycles + 1, result)
        snapshot = self._reconcile(snapshot, now_ms, result)

        result.events.append(EngineEvent.CYCLE_ADDED)
        result.notice = "1 cycle added."
        self._commit(snapshot, self._rest)
        return result

    def remove_cycle(self, now_ms: int | None = None) -> TransitionResult:
        now_ms = self._now(now_ms)
        result = TransitionResult()
        snapshot = self._reconcile(self._snapshot, now_ms, result)
        if snapshot.completed_cycles <= 0:
            self._commit(snapshot, self._rest)
            result.reason = "no completed cycles"
            return result

        elapsed = compute_elapsed_seconds(snapshot, now_ms)
        snapshot = rebase_elapsed(snapshot, elapsed - self._settings.cycle_length_seconds, now_ms)
        snapshot = snapshot.with_changes(completed_cycles=snapshot.completed_cycles - 1)

        result.events.append(EngineEvent.CYCLE_REMOVED)
        result.notice = "1 cycle removed."
        self._commit(snapshot, self._rest)
        return result

    def reset_cycles(self, now_ms: int | None = None) -> TransitionResult:
        """Zero the cycle count, keeping only the progress into the current cycle."""
        now_ms = self._now(now_ms)
        result = TransitionResult()
        snapshot = self._reconcile(self._snapshot, now_ms, result)
        elapsed = compute_elapsed_seconds(snapshot, now_ms)

        snapshot = rebase_elapsed(snapshot, elapsed % self._settings.cycle_length_seconds, now_ms)
        snapshot = snapshot.with_changes(completed_cycles=0)
        self._pending_manual = 0

        result.events.append(EngineEvent.CYCLES_RESET)
        result.notice = "Completed cycles have been reset."
        self._commit(snapshot, self._rest)
        return result

    # ---- Rest commands ----

    def use_rest(self, now_ms: int | None = None) -> TransitionResult:
        now_ms = self._now(now_ms)
        if self._rest.is_resting:
            return _noop("rest session already active")

        result = TransitionResult()
        snapshot = self._snapshot
        if snapshot.is_running:
            snapshot = self._pause(snapshot, now_ms, result)

        session, balance, borrowed = rest.use_rest(snapshot.rest_minute_balance, now_ms)
        snapshot = snapshot.with_changes(rest_minute_balance=balance)

        result.events.append(EngineEvent.REST_STARTED)
        if borrowed:
            result.events.append(EngineEvent.REST_BORROWED)
            result.notice = (
                f"You've borrowed {rest.BORROW_MINUTES} minutes. Earn cycles to pay it back!"
            )
            logger.info("Rest borrowed: %d min, balance now %d", rest.BORROW_MINUTES, balance)
        else:
            result.notice = f"Enjoy {session.seconds_at_start // 60} minutes of rest."
            logger.info("Rest started: %ds", session.seconds_at_start)
        self._commit(snapshot, session)
        return result

    def end_rest(self, now_ms: int | None = None) -> TransitionResult:
        now_ms = self._now(now_ms)
        if not self._rest.is_resting:
            return _noop("no rest session active")

        remaining = rest.seconds_remaining(self._rest, now_ms)
        session, balance, adjustment = rest.end_rest(self._rest, self._snapshot.rest_minute_balance, now_ms)
        result = TransitionResult(events=[EngineEvent.REST_ENDED])
        if adjustment is not None:
            result.events.append(EngineEvent.REST_BALANCE_ADJUSTED)
            result.rest_adjustment = adjustment
            result.notice = adjustment.message
        logger.info("Rest ended with %ds left, balance %d -> %d", remaining, self._snapshot.rest_minute_balance, balance)
        self._commit(self._snapshot.with_changes(rest_minute_balance=balance), session)
        return result

    def add_rest_minutes(self, minutes: int, now_ms: int | None = None) -> TransitionResult:
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            return TransitionResult.rejected("minutes must be a positive whole number")
        balance = self._snapshot.rest_minute_balance + minutes
        result = self._adjust_balance(minutes, balance)
        result.notice = f"{minutes} minute(s) added to your balance."
        return result

    def remove_rest_minutes(self, minutes: int, now_ms: int | None = None) -> TransitionResult:
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            return TransitionResult.rejected("minutes must be a positive whole number")
        previous = self._snapshot.rest_minute_balance
        result = self._adjust_balance(-minutes, previous - minutes)
        if previous >= minutes:
            result.notice = f"{minutes} minute(s) removed from your balance."
        return result

    def reset_rest_minutes(self, now_ms: int | None = None) -> TransitionResult:
        result = TransitionResult(events=[EngineEvent.REST_BALANCE_ADJUSTED])
        result.notice = "Rest balance has been reset."
        self._commit(self._snapshot.with_changes(rest_minute_balance=0), self._rest)
        return result

    # ---- Settings / lifecycle ----

    def update_settings(
        self,
        cycle_minutes,
        normal_reward_minutes,
        bonus_reward_minutes,
        bonus_every_nth=None,
        now_ms: int | None = None,
    ) -> TransitionResult:
        """Replace the settings. Any invalid value rejects the whole update.

        Cycles finished under the old length are reconciled and rewarded
        first. A shorter new length then raises the count to
        ``elapsed // new_length`` and those extra cycles are never
        rewarded: a configuration change does not mint rest minutes for
        focus time already on the books. A longer length never lowers it.
        """
        now_ms = self._now(now_ms)
        if bonus_every_nth is None:
            bonus_every_nth = self._settings.bonus_every_nth
        try:
            settings = CycleSettings.from_input(
                cycle_minutes, normal_reward_minutes, bonus_reward_minutes, bonus_every_nth
            )
        except InvalidSettingsError as exc:
            logger.warning("Settings rejected: %s", exc)
            return TransitionResult.rejected(str(exc))

        result = TransitionResult()
        snapshot = self._reconcile(self._snapshot, now_ms, result)
        if settings.cycle_length_seconds != self._settings.cycle_length_seconds:
            elapsed = compute_elapsed_seconds(snapshot, now_ms)
            snapshot = snapshot.with_changes(
                completed_cycles=seed_cycles(snapshot.completed_cycles, elapsed, settings.cycle_length_seconds)
            )

        self._settings = settings
        snapshot_store.save_settings(self._store, settings)
        result.events.append(EngineEvent.SETTINGS_CHANGED)
        result.notice = "Settings saved."
        logger.info("Settings saved: %s", settings.to_dict())
        self._commit(snapshot, self._rest)
        return result

    def reboot(self, now_ms: int | None = None) -> TransitionResult:
        """Clear every persisted engine field and return to defaults. Settings survive."""
        snapshot_store.clear_snapshot(self._store)
        self._snapshot = EngineSnapshot()
        self._rest = RestSession()
        self._pending_manual = 0
        logger.info("Engine rebooted")
        return TransitionResult(events=[EngineEvent.REBOOTED], notice="All progress cleared.")

    # ---- Export ----

    def to_export_dict(self, now_ms: int | None = None) -> dict:
        """CamelCase view for the API and CLI."""
        now_ms = self._now(now_ms)
        elapsed = compute_elapsed_seconds(self._snapshot, now_ms)
        cycle_length = self._settings.cycle_length_seconds
        remaining = rest.seconds_remaining(self._rest, now_ms)
        return {
            "elapsedSeconds": elapsed,
            "isRunning": self._snapshot.is_running,
            "completedCycles": self._snapshot.completed_cycles,
            "restMinuteBalance": self._snapshot.rest_minute_balance,
            "restState": self._rest.state.value,
            "restSecondsRemaining": remaining,
            "isOvertime": self._rest.is_resting and remaining < 0,
            "cycleProgressPercent": round(cycle_progress_percent(elapsed, cycle_length), 2),
            "secondsLeftInCycle": seconds_left_in_cycle(elapsed, cycle_length),
            "pendingManualAdjustments": self._pending_manual,
            "settings": {
                "cycleMinutes": self._settings.cycle_minutes,
                "normalRewardMinutes": self._settings.normal_reward_minutes,
                "bonusRewardMinutes": self._settings.bonus_reward_minutes,
                "bonusEveryNth": self._settings.bonus_every_nth,
            },
        }

    # ---- Internal ----

    def _now(self, now_ms: int | None) -> int:
        return self._clock() if now_ms is None else now_ms

    def _load(self, now_ms: int) -> None:
        """Adopt the stored checkpoint. When seeding, a jump in cycles here is history, not a live increase."""
        stored = snapshot_store.load_snapshot(self._store)
        seeded = stored.completed_cycles
        if self._seed_on_load:
            elapsed = compute_elapsed_seconds(stored, now_ms)
            seeded = seed_cycles(stored.completed_cycles, elapsed, self._settings.cycle_length_seconds)
        snapshot = stored.with_changes(completed_cycles=seeded)

        session = snapshot_store.load_rest_session(self._store)
        session, _ = rest.mark_finished(session, now_ms)
        if session.is_resting and snapshot.is_running:
            logger.warning("Focus timer and rest session both active on load; pausing focus")
            snapshot = pause_checkpoint(snapshot, now_ms)

        self._snapshot = stored
        self._commit(snapshot, session)
        if seeded != stored.completed_cycles:
            logger.info("Seeded completed cycles %d -> %d on load", stored.completed_cycles, seeded)

    def _reconcile(self, snapshot: EngineSnapshot, now_ms: int, result: TransitionResult) -> EngineSnapshot:
        elapsed = compute_elapsed_seconds(snapshot, now_ms)
        target = reconcile_cycles(snapshot.completed_cycles, elapsed, self._settings.cycle_length_seconds)
        return self._apply_cycles(snapshot, target, result)

    def _apply_cycles(self, snapshot: EngineSnapshot, new_cycles: int, result: TransitionResult) -> EngineSnapshot:
        previous = snapshot.completed_cycles
        if new_cycles <= previous:
            return snapshot

        outcome = apply_cycle_delta(previous, new_cycles, self._pending_manual, self._settings)
        self._pending_manual = outcome.pending_remaining
        snapshot = snapshot.with_changes(
            completed_cycles=new_cycles,
            rest_minute_balance=snapshot.rest_minute_balance + outcome.rest_minutes_credited,
        )

        reward = outcome.reward
        if reward is not None:
            result.reward = reward
            result.events.append(EngineEvent.CYCLE_COMPLETED)
            result.events.append(EngineEvent.REWARD_GRANTED)
            logger.info(
                "Reward: +%d min (%d bonus, %d normal) for cycles %d -> %d, balance %d",
                reward.minutes_credited,
                reward.bonus_count,
                reward.normal_count,
                previous,
                new_cycles,
                snapshot.rest_minute_balance,
            )
        return snapshot

    def _pause(self, snapshot: EngineSnapshot, now_ms: int, result: TransitionResult) -> EngineSnapshot:
        snapshot = self._reconcile(snapshot, now_ms, result)
        snapshot = pause_checkpoint(snapshot, now_ms)
        result.events.append(EngineEvent.TIMER_PAUSED)
        logger.info("Focus timer paused at %ds", snapshot.accumulated_focus_seconds)
        return snapshot

    def _adjust_balance(self, minutes: int, balance: int) -> TransitionResult:
        adjustment = RestAdjustment(minutes=minutes, message=rest.adjustment_message(minutes))
        result = TransitionResult(events=[EngineEvent.REST_BALANCE_ADJUSTED], rest_adjustment=adjustment)
        self._commit(self._snapshot.with_changes(rest_minute_balance=balance), self._rest)
        return result

    def _commit(self, snapshot: EngineSnapshot, session: RestSession) -> None:
        """Persist whatever changed in one write, then adopt the new state."""
        values = {}
        if snapshot != self._snapshot:
            values.update(snapshot_store.snapshot_values(snapshot))
        if session.is_resting != self._rest.is_resting or session.started_ms != self._rest.started_ms:
            values.update(snapshot_store.rest_session_values(session))
        if values:
            self._store.set_many(values)
        self._snapshot = snapshot
        self._rest = session
