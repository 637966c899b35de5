"""Snapshot store: forgiving reads, legacy migration, SQLite persistence."""

import json

import pytest

from focus_ledger.models import CycleSettings, EngineSnapshot, RestSession, RestState
from focus_ledger.store import (
    KEY_OWNER,
    KEY_ACCUMULATED,
    KEY_BALANCE,
    KEY_CYCLES,
    KEY_REST_SECONDS,
    KEY_REST_START_MS,
    KEY_RUNNING,
    KEY_SETTINGS,
    KEY_START_MS,
    LEGACY_SETTINGS_KEY,
    MemoryStore,
    SqliteStore,
    StoreOwnedError,
    claim_owner,
    clear_snapshot,
    load_rest_session,
    load_settings,
    load_snapshot,
    migrate_legacy_keys,
    read_owner,
    release_owner,
    save_rest_session,
    save_settings,
    save_snapshot,
)

T0 = 1_700_000_000_000


@pytest.fixture(params=["memory", "sqlite"])
def kv(request, tmp_path):
    if request.param == "memory":
        yield MemoryStore()
        return
    store = SqliteStore(tmp_path / "ledger.db")
    yield store
    store.close()


class TestSnapshotRoundTrip:
    def test_empty_store_gives_defaults(self, kv):
        assert load_snapshot(kv) == EngineSnapshot()

    def test_save_then_load(self, kv):
        snapshot = EngineSnapshot(
            accumulated_focus_seconds=900,
            focus_start_ms=T0,
            is_running=True,
            completed_cycles=3,
            rest_minute_balance=-4,
        )
        save_snapshot(kv, snapshot)
        assert load_snapshot(kv) == snapshot

    def test_paused_save_drops_start_key(self, kv):
        save_snapshot(kv, EngineSnapshot(focus_start_ms=T0, is_running=True))
        save_snapshot(kv, EngineSnapshot(accumulated_focus_seconds=5))
        assert kv.get(KEY_START_MS) is None
        assert kv.get(KEY_RUNNING) == "false"


class TestForgivingReads:
    def test_malformed_numbers_fall_back(self):
        store = MemoryStore({KEY_ACCUMULATED: "abc", KEY_CYCLES: "", KEY_BALANCE: "nan?"})
        snapshot = load_snapshot(store)
        assert snapshot.accumulated_focus_seconds == 0
        assert snapshot.completed_cycles == 0
        assert snapshot.rest_minute_balance == 0

    def test_float_strings_truncate(self):
        store = MemoryStore({KEY_ACCUMULATED: "61.9", KEY_BALANCE: "-3.0"})
        snapshot = load_snapshot(store)
        assert snapshot.accumulated_focus_seconds == 61
        assert snapshot.rest_minute_balance == -3

    def test_negative_counters_clamped(self):
        store = MemoryStore({KEY_ACCUMULATED: "-20", KEY_CYCLES: "-1", KEY_BALANCE: "-9"})
        snapshot = load_snapshot(store)
        assert snapshot.accumulated_focus_seconds == 0
        assert snapshot.completed_cycles == 0
        assert snapshot.rest_minute_balance == -9

    @pytest.mark.parametrize("raw", ["yes", "TRUE ", "1", "false", "0", "maybe"])
    def test_running_flag(self, raw):
        store = MemoryStore({KEY_RUNNING: raw, KEY_START_MS: str(T0)})
        expected = raw.strip().lower() in ("true", "1")
        assert load_snapshot(store).is_running is expected

    def test_running_without_start_loads_paused(self):
        store = MemoryStore({KEY_RUNNING: "true", KEY_ACCUMULATED: "300"})
        snapshot = load_snapshot(store)
        assert not snapshot.is_running
        assert snapshot.focus_start_ms is None
        assert snapshot.accumulated_focus_seconds == 300

    def test_start_ignored_when_paused(self):
        store = MemoryStore({KEY_RUNNING: "false", KEY_START_MS: str(T0)})
        assert load_snapshot(store).focus_start_ms is None


class TestRestSession:
    def test_round_trip(self, kv):
        session = RestSession(state=RestState.RESTING, seconds_at_start=600, started_ms=T0)
        save_rest_session(kv, session)
        assert load_rest_session(kv) == session

    def test_idle_clears_keys(self, kv):
        save_rest_session(kv, RestSession(state=RestState.RESTING, seconds_at_start=600, started_ms=T0))
        save_rest_session(kv, RestSession())
        assert kv.get(KEY_REST_START_MS) is None
        assert kv.get(KEY_REST_SECONDS) is None
        assert load_rest_session(kv) == RestSession()

    def test_half_written_session_is_idle(self):
        assert load_rest_session(MemoryStore({KEY_REST_START_MS: str(T0)})) == RestSession()


class TestSettings:
    def test_defaults(self, kv):
        assert load_settings(kv) == CycleSettings()

    def test_round_trip(self, kv):
        settings = CycleSettings.from_input(50, 10, 30, 3)
        save_settings(kv, settings)
        assert load_settings(kv) == settings

    def test_bad_json_falls_back(self):
        assert load_settings(MemoryStore({KEY_SETTINGS: "{not json"})) == CycleSettings()

    def test_invalid_values_fall_back(self):
        raw = json.dumps({"cycle_minutes": 0, "normal_reward_minutes": 5, "bonus_reward_minutes": 15})
        assert load_settings(MemoryStore({KEY_SETTINGS: raw})) == CycleSettings()

    def test_non_object_falls_back(self):
        assert load_settings(MemoryStore({KEY_SETTINGS: "[1, 2]"})) == CycleSettings()


class TestClear:
    def test_keeps_settings(self, kv):
        save_settings(kv, CycleSettings.from_input(30, 5, 15))
        save_snapshot(kv, EngineSnapshot(accumulated_focus_seconds=10, completed_cycles=2))
        save_rest_session(kv, RestSession(state=RestState.RESTING, seconds_at_start=60, started_ms=T0))

        clear_snapshot(kv)
        assert kv.keys() == [KEY_SETTINGS]
        assert load_snapshot(kv) == EngineSnapshot()

    def test_idempotent(self, kv):
        clear_snapshot(kv)
        clear_snapshot(kv)
        assert kv.keys() == []


class TestLegacyMigration:
    def legacy_store(self):
        return MemoryStore({
            "pomodoroAccumulatedSeconds": "300",
            "pomodoroStartTime": str(T0),
            "pomodoroIsRunning": "true",
            "pomodorosCompleted": "2",
            "availableRestMinutes": "-5",
            LEGACY_SETTINGS_KEY: json.dumps({
                "pomodoroDuration": 50,
                "shortRestReward": 10,
                "longRestReward": 30,
            }),
        })

    def test_moves_values(self):
        store = self.legacy_store()
        assert migrate_legacy_keys(store)
        snapshot = load_snapshot(store)
        assert snapshot == EngineSnapshot(
            accumulated_focus_seconds=300,
            focus_start_ms=T0,
            is_running=True,
            completed_cycles=2,
            rest_minute_balance=-5,
        )
        assert load_settings(store) == CycleSettings.from_input(50, 10, 30)

    def test_removes_legacy_keys(self):
        store = self.legacy_store()
        migrate_legacy_keys(store)
        assert not any(key.startswith("pomodoro") or key == "availableRestMinutes" for key in store.keys())

    def test_current_keys_win(self):
        store = self.legacy_store()
        store.set(KEY_CYCLES, "7")
        migrate_legacy_keys(store)
        assert store.get(KEY_CYCLES) == "7"

    def test_nothing_to_migrate(self):
        assert not migrate_legacy_keys(MemoryStore({KEY_CYCLES: "1"}))

    def test_bad_legacy_settings_dropped(self):
        store = MemoryStore({LEGACY_SETTINGS_KEY: "oops"})
        assert migrate_legacy_keys(store)
        assert store.get(LEGACY_SETTINGS_KEY) is None
        assert load_settings(store) == CycleSettings()


class TestSqliteStore:
    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "nested" / "ledger.db"
        store = SqliteStore(path)
        save_snapshot(store, EngineSnapshot(accumulated_focus_seconds=77, completed_cycles=1))
        store.close()

        reopened = SqliteStore(path)
        try:
            assert load_snapshot(reopened).accumulated_focus_seconds == 77
        finally:
            reopened.close()

    def test_upsert(self, tmp_path):
        store = SqliteStore(tmp_path / "ledger.db")
        store.set("k", "1")
        store.set("k", "2")
        assert store.get("k") == "2"
        assert store.keys() == ["k"]
        store.close()


class Unprintable:
    def __str__(self):
        raise RuntimeError("cannot encode")


class TestSetMany:
    def test_writes_and_deletes(self, kv):
        kv.set("gone", "x")
        kv.set_many({"a": "1", "b": "2", "gone": None})
        assert kv.get("a") == "1"
        assert kv.get("b") == "2"
        assert kv.get("gone") is None

    def test_sqlite_write_is_all_or_nothing(self, tmp_path):
        store = SqliteStore(tmp_path / "ledger.db")
        save_snapshot(store, EngineSnapshot(completed_cycles=1, rest_minute_balance=5))
        with pytest.raises(RuntimeError):
            store.set_many({KEY_CYCLES: "2", KEY_BALANCE: Unprintable()})
        snapshot = load_snapshot(store)
        assert snapshot.completed_cycles == 1
        assert snapshot.rest_minute_balance == 5
        store.close()


class TestOwnerRecord:
    def test_claim_and_release(self, kv):
        claim_owner(kv, "abc", "http://127.0.0.1:7788")
        owner = read_owner(kv)
        assert owner["token"] == "abc"
        assert owner["url"] == "http://127.0.0.1:7788"
        release_owner(kv, "abc")
        assert read_owner(kv) is None

    def test_reclaim_by_same_token(self, kv):
        claim_owner(kv, "abc")
        claim_owner(kv, "abc")
        assert read_owner(kv)["token"] == "abc"

    def test_other_token_refused(self, kv):
        claim_owner(kv, "abc")
        with pytest.raises(StoreOwnedError) as excinfo:
            claim_owner(kv, "xyz")
        assert excinfo.value.owner["token"] == "abc"

    @pytest.mark.parametrize("raw", ["not json", "[1]", '{"token": "t", "pid": 0}', '{"token": "t"}'])
    def test_unusable_records_are_free(self, raw):
        store = MemoryStore({KEY_OWNER: raw})
        assert read_owner(store) is None
        claim_owner(store, "mine")
        assert read_owner(store)["token"] == "mine"

    def test_release_ignores_other_token(self, kv):
        claim_owner(kv, "abc")
        release_owner(kv, "xyz")
        assert read_owner(kv)["token"] == "abc"
