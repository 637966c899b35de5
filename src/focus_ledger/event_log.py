"""Audit trail of emitted engine events in the ledger database."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import aiosqlite

from .models import TransitionResult


class EventLog:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    async def init_tables(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout=5000")
            await db.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    source TEXT NOT NULL,
                    details TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            await db.execute("CREATE INDEX IF NOT EXISTS idx_events_created ON events(created_at DESC)")
            await db.commit()

    async def record(self, result: TransitionResult, source: str) -> None:
        """Write one row per event. Reward and rest adjustment details ride along."""
        if not result.events:
            return
        details = {}
        if result.reward is not None:
            details["reward"] = result.reward.to_dict()
        if result.rest_adjustment is not None:
            details["rest_adjustment"] = result.rest_adjustment.to_dict()
        if result.notice:
            details["notice"] = result.notice
        payload = json.dumps(details) if details else None
        created_at = datetime.now().isoformat()

        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                "INSERT INTO events (event_type, source, details, created_at) VALUES (?, ?, ?, ?)",
                [(event.value, source, payload, created_at) for event in result.events],
            )
            await db.commit()

    async def recent(self, limit: int = 50) -> list[dict]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT id, event_type, source, details, created_at FROM events ORDER BY id DESC LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()
        return [
            {
                "id": row["id"],
                "event_type": row["event_type"],
                "source": row["source"],
                "details": json.loads(row["details"]) if row["details"] else None,
                "created_at": row["created_at"],
            }
            for row in rows
        ]
