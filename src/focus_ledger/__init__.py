"""Focus time reconciliation and rest-minute reward ledger."""

from .engine import FocusEngine, format_clock
from .ledger import LedgerOutcome, apply_cycle_delta
from .models import (
    CycleSettings,
    EngineEvent,
    EngineSnapshot,
    InvalidSettingsError,
    RestAdjustment,
    RestSession,
    RestState,
    Reward,
    RewardKind,
    TransitionResult,
)
from .store import MemoryStore, SnapshotStore, SqliteStore, StoreOwnedError

__all__ = [
    "CycleSettings",
    "EngineEvent",
    "EngineSnapshot",
    "FocusEngine",
    "InvalidSettingsError",
    "LedgerOutcome",
    "MemoryStore",
    "RestAdjustment",
    "RestSession",
    "RestState",
    "Reward",
    "RewardKind",
    "SnapshotStore",
    "SqliteStore",
    "StoreOwnedError",
    "TransitionResult",
    "apply_cycle_delta",
    "format_clock",
]
