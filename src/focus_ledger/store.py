"""Durable snapshot store: string-keyed persistence of the engine checkpoint.

Values are stored as strings, one key per field, so each field can be
written on its own. Reading is forgiving: a missing or malformed value is
replaced with its documented default and never raises.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from datetime import datetime
from pathlib import Path

from .models import (
    DEFAULT_BONUS_EVERY_NTH,
    DEFAULT_BONUS_REWARD_MINUTES,
    DEFAULT_CYCLE_MINUTES,
    DEFAULT_NORMAL_REWARD_MINUTES,
    CycleSettings,
    EngineSnapshot,
    InvalidSettingsError,
    RestSession,
    RestState,
)

logger = logging.getLogger(__name__)

KEY_ACCUMULATED = "accumulated_focus_seconds"
KEY_START_MS = "focus_start_ms"
KEY_RUNNING = "is_running"
KEY_CYCLES = "completed_cycles"
KEY_BALANCE = "rest_minute_balance"
KEY_SETTINGS = "cycle_settings"
KEY_REST_START_MS = "rest_start_ms"
KEY_REST_SECONDS = "rest_seconds_at_start"
KEY_OWNER = "ledger_owner"

SNAPSHOT_KEYS = (KEY_ACCUMULATED, KEY_START_MS, KEY_RUNNING, KEY_CYCLES, KEY_BALANCE)
REST_KEYS = (KEY_REST_START_MS, KEY_REST_SECONDS)

# Keys written by the browser version of the timer, mapped to current keys.
LEGACY_KEYS = {
    "pomodoroAccumulatedSeconds": KEY_ACCUMULATED,
    "pomodoroStartTime": KEY_START_MS,
    "pomodoroIsRunning": KEY_RUNNING,
    "pomodorosCompleted": KEY_CYCLES,
    "availableRestMinutes": KEY_BALANCE,
}
LEGACY_SETTINGS_KEY = "pomodoroSettings"


class SnapshotStore:
    """Narrow get/set interface over string keys."""

    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> list[str]:
        raise NotImplementedError

    def set_many(self, values: dict[str, str | None]) -> None:
        """Write several keys at once. A ``None`` value deletes the key."""
        for key, value in values.items():
            if value is None:
                self.delete(key)
            else:
                self.set(key, value)

    def close(self) -> None:
        pass


class StoreOwnedError(RuntimeError):
    """Raised when another live process already owns the ledger."""

    def __init__(self, owner: dict):
        self.owner = owner
        super().__init__(f"ledger is owned by process {owner.get('pid')}")


class MemoryStore(SnapshotStore):
    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class SqliteStore(SnapshotStore):
    """Key/value table in a local SQLite file (WAL mode, shared with the event log)."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        # WAL lets the event log connection write beside this one
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def get(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        self._conn.execute(
            """INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
            (key, str(value), datetime.now().isoformat()),
        )
        self._conn.commit()

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        self._conn.commit()

    def keys(self) -> list[str]:
        return [row[0] for row in self._conn.execute("SELECT key FROM kv_store ORDER BY key")]

    def set_many(self, values: dict[str, str | None]) -> None:
        """All-or-nothing write of several keys in one transaction."""
        updated_at = datetime.now().isoformat()
        with self._conn:
            for key, value in values.items():
                if value is None:
                    self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                else:
                    self._conn.execute(
                        """INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                           ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
                        (key, str(value), updated_at),
                    )

    def close(self) -> None:
        self._conn.close()


# ---- Parsing helpers ----

def _read_int(store: SnapshotStore, key: str, default: int | None) -> int | None:
    raw = store.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(float(raw))
    except (TypeError, ValueError, OverflowError):
        logger.warning("Malformed value for %s: %r, using %r", key, raw, default)
        return default


def _read_bool(store: SnapshotStore, key: str) -> bool:
    raw = store.get(key)
    if raw is None:
        return False
    value = raw.strip().lower()
    if value in ("true", "1"):
        return True
    if value not in ("false", "0", ""):
        logger.warning("Malformed value for %s: %r, using False", key, raw)
    return False


# ---- Snapshot ----

def load_snapshot(store: SnapshotStore) -> EngineSnapshot:
    migrate_legacy_keys(store)

    accumulated = _read_int(store, KEY_ACCUMULATED, 0)
    if accumulated < 0:
        logger.warning("Negative accumulated focus seconds %d clamped to 0", accumulated)
        accumulated = 0
    cycles = _read_int(store, KEY_CYCLES, 0)
    if cycles < 0:
        logger.warning("Negative completed cycles %d clamped to 0", cycles)
        cycles = 0
    start_ms = _read_int(store, KEY_START_MS, None)
    if start_ms is not None and start_ms <= 0:
        start_ms = None
    is_running = _read_bool(store, KEY_RUNNING)
    if is_running and start_ms is None:
        logger.warning("Running flag set without a start time; treating timer as paused")
        is_running = False
    if not is_running:
        start_ms = None

    return EngineSnapshot(
        accumulated_focus_seconds=accumulated,
        focus_start_ms=start_ms,
        is_running=is_running,
        completed_cycles=cycles,
        rest_minute_balance=_read_int(store, KEY_BALANCE, 0),
    )


def snapshot_values(snapshot: EngineSnapshot) -> dict[str, str | None]:
    return {
        KEY_ACCUMULATED: str(snapshot.accumulated_focus_seconds),
        KEY_START_MS: None if snapshot.focus_start_ms is None else str(snapshot.focus_start_ms),
        KEY_RUNNING: "true" if snapshot.is_running else "false",
        KEY_CYCLES: str(snapshot.completed_cycles),
        KEY_BALANCE: str(snapshot.rest_minute_balance),
    }


def save_snapshot(store: SnapshotStore, snapshot: EngineSnapshot) -> None:
    store.set_many(snapshot_values(snapshot))


def clear_snapshot(store: SnapshotStore) -> None:
    """Remove every persisted engine field. Settings are kept."""
    store.set_many({key: None for key in SNAPSHOT_KEYS + REST_KEYS})


# ---- Rest session ----

def load_rest_session(store: SnapshotStore) -> RestSession:
    started_ms = _read_int(store, KEY_REST_START_MS, None)
    seconds = _read_int(store, KEY_REST_SECONDS, None)
    if started_ms is None or seconds is None:
        return RestSession()
    return RestSession(state=RestState.RESTING, seconds_at_start=seconds, started_ms=started_ms)


def rest_session_values(session: RestSession) -> dict[str, str | None]:
    if not session.is_resting:
        return {key: None for key in REST_KEYS}
    return {
        KEY_REST_START_MS: str(session.started_ms),
        KEY_REST_SECONDS: str(session.seconds_at_start),
    }


def save_rest_session(store: SnapshotStore, session: RestSession) -> None:
    store.set_many(rest_session_values(session))


# ---- Settings ----

def load_settings(store: SnapshotStore) -> CycleSettings:
    raw = store.get(KEY_SETTINGS)
    if not raw:
        return CycleSettings()
    try:
        data = json.loads(raw)
        return CycleSettings.from_input(
            data.get("cycle_minutes", DEFAULT_CYCLE_MINUTES),
            data.get("normal_reward_minutes", DEFAULT_NORMAL_REWARD_MINUTES),
            data.get("bonus_reward_minutes", DEFAULT_BONUS_REWARD_MINUTES),
            data.get("bonus_every_nth", DEFAULT_BONUS_EVERY_NTH),
        )
    except (json.JSONDecodeError, AttributeError, InvalidSettingsError) as exc:
        logger.warning("Stored settings unusable (%s), using defaults", exc)
        return CycleSettings()


def save_settings(store: SnapshotStore, settings: CycleSettings) -> None:
    store.set(KEY_SETTINGS, json.dumps(settings.to_dict()))


# ---- Migration ----

def migrate_legacy_keys(store: SnapshotStore) -> bool:
    """Carry browser-era keys over to current keys. Returns True if anything moved."""
    present = [key for key in LEGACY_KEYS if store.get(key) is not None]
    has_legacy_settings = store.get(LEGACY_SETTINGS_KEY) is not None
    if not present and not has_legacy_settings:
        return False

    for legacy_key in present:
        target = LEGACY_KEYS[legacy_key]
        if store.get(target) is None:
            store.set(target, store.get(legacy_key))
        store.delete(legacy_key)

    if has_legacy_settings:
        raw = store.get(LEGACY_SETTINGS_KEY)
        if store.get(KEY_SETTINGS) is None:
            try:
                legacy = json.loads(raw)
                settings = CycleSettings.from_input(
                    legacy.get("pomodoroDuration") or DEFAULT_CYCLE_MINUTES,
                    legacy.get("shortRestReward") or DEFAULT_NORMAL_REWARD_MINUTES,
                    legacy.get("longRestReward") or DEFAULT_BONUS_REWARD_MINUTES,
                )
                save_settings(store, settings)
            except (json.JSONDecodeError, AttributeError, InvalidSettingsError) as exc:
                logger.warning("Legacy settings unusable (%s), using defaults", exc)
        store.delete(LEGACY_SETTINGS_KEY)

    logger.info("Migrated legacy keys: %s", ", ".join(present + ([LEGACY_SETTINGS_KEY] if has_legacy_settings else [])))
    return True


# ---- Ownership ----

def _process_alive(pid) -> bool:
    try:
        pid = int(pid)
        if pid <= 0:
            return False
        os.kill(pid, 0)
    except (TypeError, ValueError, ProcessLookupError):
        return False
    except PermissionError:
        return True
    return True


def read_owner(store: SnapshotStore) -> dict | None:
    """The live owner record, or None when the ledger is free or its owner died."""
    raw = store.get(KEY_OWNER)
    if not raw:
        return None
    try:
        owner = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Malformed owner record %r, ignoring", raw)
        return None
    if not isinstance(owner, dict) or not _process_alive(owner.get("pid")):
        return None
    return owner


def claim_owner(store: SnapshotStore, token: str, url: str | None = None) -> None:
    """Make the caller the single writer. Raises StoreOwnedError if someone else is live."""
    owner = read_owner(store)
    if owner is not None and owner.get("token") != token:
        raise StoreOwnedError(owner)
    store.set(KEY_OWNER, json.dumps({"token": token, "pid": os.getpid(), "url": url}))


def release_owner(store: SnapshotStore, token: str) -> None:
    raw = store.get(KEY_OWNER)
    if not raw:
        return
    try:
        owner = json.loads(raw)
    except json.JSONDecodeError:
        owner = {}
    if isinstance(owner, dict) and owner.get("token") == token:
        store.delete(KEY_OWNER)
