"""Value types shared by the tracker, ledger, rest controller and engine.

Every time value is either whole seconds or wall-clock milliseconds; the
``_ms`` suffix marks the latter. Snapshots are immutable and replaced
wholesale on each transition.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum

DEFAULT_CYCLE_MINUTES = 25
DEFAULT_NORMAL_REWARD_MINUTES = 5
DEFAULT_BONUS_REWARD_MINUTES = 15
DEFAULT_BONUS_EVERY_NTH = 4
MIN_CYCLE_LENGTH_SECONDS = 60


class InvalidSettingsError(ValueError):
    """Raised when a settings update carries a missing or non-positive value."""


class RestState(str, Enum):
    IDLE = "idle"
    RESTING = "resting"


class RewardKind(str, Enum):
    NORMAL = "normal"
    BONUS = "bonus"


class EngineEvent(Enum):
    TIMER_STARTED = "timer_started"
    TIMER_PAUSED = "timer_paused"
    CYCLE_COMPLETED = "cycle_completed"
    REWARD_GRANTED = "reward_granted"
    CYCLE_ADDED = "cycle_added"
    CYCLE_REMOVED = "cycle_removed"
    CYCLES_RESET = "cycles_reset"
    ELAPSED_RESET = "elapsed_reset"
    REST_STARTED = "rest_started"
    REST_BORROWED = "rest_borrowed"
    REST_FINISHED = "rest_finished"
    REST_ENDED = "rest_ended"
    REST_BALANCE_ADJUSTED = "rest_balance_adjusted"
    SETTINGS_CHANGED = "settings_changed"
    REBOOTED = "rebooted"


# ---- State ----

@dataclass(frozen=True)
class EngineSnapshot:
    """Last committed checkpoint of the focus timer and reward balance.

    ``accumulated_focus_seconds`` only moves at checkpoints (start, pause,
    manual adjustment); the live elapsed value is derived from it plus the
    wall-clock delta since ``focus_start_ms``.
    """

    accumulated_focus_seconds: int = 0
    focus_start_ms: int | None = None
    is_running: bool = False
    completed_cycles: int = 0
    rest_minute_balance: int = 0

    def with_changes(self, **changes) -> EngineSnapshot:
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CycleSettings:
    cycle_length_seconds: int = DEFAULT_CYCLE_MINUTES * 60
    normal_reward_minutes: int = DEFAULT_NORMAL_REWARD_MINUTES
    bonus_reward_minutes: int = DEFAULT_BONUS_REWARD_MINUTES
    bonus_every_nth: int = DEFAULT_BONUS_EVERY_NTH

    @property
    def cycle_minutes(self) -> int:
        return self.cycle_length_seconds // 60

    @classmethod
    def from_input(
        cls,
        cycle_minutes,
        normal_reward_minutes,
        bonus_reward_minutes,
        bonus_every_nth=DEFAULT_BONUS_EVERY_NTH,
    ) -> CycleSettings:
        """Validate operator input. All values must parse as positive integers."""
        values = {}
        for name, raw in (
            ("cycle_minutes", cycle_minutes),
            ("normal_reward_minutes", normal_reward_minutes),
            ("bonus_reward_minutes", bonus_reward_minutes),
            ("bonus_every_nth", bonus_every_nth),
        ):
            try:
                value = int(raw)
            except (TypeError, ValueError):
                raise InvalidSettingsError(f"{name} must be a whole number, got {raw!r}") from None
            if isinstance(raw, float) and raw != value:
                raise InvalidSettingsError(f"{name} must be a whole number, got {raw!r}")
            if value <= 0:
                raise InvalidSettingsError(f"{name} must be positive, got {value}")
            values[name] = value

        return cls(
            cycle_length_seconds=max(MIN_CYCLE_LENGTH_SECONDS, values["cycle_minutes"] * 60),
            normal_reward_minutes=values["normal_reward_minutes"],
            bonus_reward_minutes=values["bonus_reward_minutes"],
            bonus_every_nth=values["bonus_every_nth"],
        )

    def to_dict(self) -> dict:
        return {
            "cycle_minutes": self.cycle_minutes,
            "normal_reward_minutes": self.normal_reward_minutes,
            "bonus_reward_minutes": self.bonus_reward_minutes,
            "bonus_every_nth": self.bonus_every_nth,
        }


@dataclass(frozen=True)
class RestSession:
    """An active or idle rest session.

    While resting, remaining seconds are derived from ``seconds_at_start``
    and the wall-clock delta since ``started_ms``; they go negative once
    the session runs into overtime.
    """

    state: RestState = RestState.IDLE
    seconds_at_start: int = 0
    started_ms: int | None = None
    finish_signalled: bool = False

    @property
    def is_resting(self) -> bool:
        return self.state == RestState.RESTING


# ---- Emitted values ----

@dataclass(frozen=True)
class Reward:
    minutes_credited: int
    kind: RewardKind
    bonus_count: int
    normal_count: int
    message: str

    def to_dict(self) -> dict:
        return {
            "minutes_credited": self.minutes_credited,
            "classification": self.kind.value,
            "bonus_count": self.bonus_count,
            "normal_count": self.normal_count,
            "message": self.message,
        }


@dataclass(frozen=True)
class RestAdjustment:
    """Signed change to the rest-minute balance made when a rest session ends."""

    minutes: int
    message: str

    @property
    def sign(self) -> str:
        return "+" if self.minutes > 0 else "-"

    def to_dict(self) -> dict:
        return {"minutes": abs(self.minutes), "sign": self.sign, "message": self.message}


@dataclass
class TransitionResult:
    events: list[EngineEvent] = field(default_factory=list)
    reward: Reward | None = None
    rest_adjustment: RestAdjustment | None = None
    notice: str | None = None
    accepted: bool = True
    reason: str | None = None

    @property
    def cycle_completed(self) -> bool:
        return EngineEvent.CYCLE_COMPLETED in self.events

    @classmethod
    def rejected(cls, reason: str) -> TransitionResult:
        return cls(accepted=False, reason=reason)

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "reason": self.reason,
            "events": [event.value for event in self.events],
            "cycle_completed": self.cycle_completed,
            "reward": self.reward.to_dict() if self.reward else None,
            "rest_adjustment": self.rest_adjustment.to_dict() if self.rest_adjustment else None,
            "notice": self.notice,
        }
