"""
Focus Ledger API: local FastAPI server around the focus engine.

This server provides:
- Operator commands (start, pause, cycle and rest adjustments, settings, reboot)
- A 1 Hz tick source that keeps rewards and rest timers current
- A visibility-resume endpoint for clients returning from the background
- An audit trail of emitted events and a buffer of recent log lines
"""

import logging
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Deque, List, Optional

import uvicorn
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from .config import LedgerConfig, get_config
from .engine import FocusEngine
from .event_log import EventLog
from .models import TransitionResult
from .store import SqliteStore, StoreOwnedError
from .ticker import TickSource

logger = logging.getLogger("focus_ledger")
logger.setLevel(logging.INFO)

# ============ Server-side Log Buffer ============

log_buffer: Deque[dict] = deque(maxlen=100)


class LogBufferHandler(logging.Handler):
    """Captures log records into the circular buffer served by /api/logs/recent."""

    def emit(self, record: logging.LogRecord):
        try:
            log_buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


buffer_handler = LogBufferHandler()
buffer_handler.setLevel(logging.DEBUG)
buffer_handler.setFormatter(logging.Formatter("%(message)s"))
logger.addHandler(buffer_handler)
logging.getLogger("uvicorn").addHandler(buffer_handler)


# ============ Pydantic Models ============

class SettingsRequest(BaseModel):
    cycle_minutes: int = Field(..., description="Focus cycle length in minutes")
    normal_reward_minutes: int = Field(..., description="Rest minutes credited per normal cycle")
    bonus_reward_minutes: int = Field(..., description="Rest minutes credited per bonus cycle")
    bonus_every_nth: Optional[int] = Field(default=None, description="Every Nth cycle is a bonus cycle")


class RestMinutesRequest(BaseModel):
    minutes: int = Field(..., description="Whole minutes to add or remove")


class TransitionResponse(BaseModel):
    accepted: bool
    reason: Optional[str]
    events: List[str]
    cycle_completed: bool
    reward: Optional[dict]
    rest_adjustment: Optional[dict]
    notice: Optional[str]
    state: dict


class LogsResponse(BaseModel):
    logs: List[dict]
    count: int


router = APIRouter()


async def _respond(request: Request, command: str, result: TransitionResult) -> dict:
    """Log emitted events and shape the response. Rejected commands become 400s."""
    if not result.accepted:
        raise HTTPException(status_code=400, detail=result.reason)
    if result.notice:
        logger.info(f"{command}: {result.notice}")
    await request.app.state.event_log.record(result, source=command)
    return {**result.to_dict(), "state": request.app.state.engine.to_export_dict()}


def _engine(request: Request) -> FocusEngine:
    return request.app.state.engine


# ============ Timer Endpoints ============

@router.get("/api/timer")
async def get_timer(request: Request):
    """Current reconciled state (read-only; does not advance cycles)."""
    return _engine(request).to_export_dict()


@router.post("/api/timer/start", response_model=TransitionResponse)
async def start_timer(request: Request):
    return await _respond(request, "start", _engine(request).start())


@router.post("/api/timer/pause", response_model=TransitionResponse)
async def pause_timer(request: Request):
    return await _respond(request, "pause", _engine(request).pause())


@router.post("/api/timer/resume", response_model=TransitionResponse)
async def resume_from_background(request: Request):
    """Called by clients when they become visible again."""
    return await _respond(request, "resume", _engine(request).resume_from_background())


@router.post("/api/timer/tick", response_model=TransitionResponse)
async def manual_tick(request: Request):
    return await _respond(request, "tick", _engine(request).tick())


@router.post("/api/timer/reset-elapsed", response_model=TransitionResponse)
async def reset_elapsed(request: Request):
    return await _respond(request, "reset-elapsed", _engine(request).reset_elapsed())


# ============ Cycle Endpoints ============

@router.post("/api/cycles/add", response_model=TransitionResponse)
async def add_cycle(request: Request):
    return await _respond(request, "add-cycle", _engine(request).add_cycle())


@router.post("/api/cycles/remove", response_model=TransitionResponse)
async def remove_cycle(request: Request):
    return await _respond(request, "remove-cycle", _engine(request).remove_cycle())


@router.post("/api/cycles/reset", response_model=TransitionResponse)
async def reset_cycles(request: Request):
    return await _respond(request, "reset-cycles", _engine(request).reset_cycles())


# ============ Rest Endpoints ============

@router.post("/api/rest/use", response_model=TransitionResponse)
async def use_rest(request: Request):
    return await _respond(request, "use-rest", _engine(request).use_rest())


@router.post("/api/rest/end", response_model=TransitionResponse)
async def end_rest(request: Request):
    return await _respond(request, "end-rest", _engine(request).end_rest())


@router.post("/api/rest/add", response_model=TransitionResponse)
async def add_rest_minutes(body: RestMinutesRequest, request: Request):
    return await _respond(request, "add-rest", _engine(request).add_rest_minutes(body.minutes))


@router.post("/api/rest/remove", response_model=TransitionResponse)
async def remove_rest_minutes(body: RestMinutesRequest, request: Request):
    return await _respond(request, "remove-rest", _engine(request).remove_rest_minutes(body.minutes))


@router.post("/api/rest/reset", response_model=TransitionResponse)
async def reset_rest_minutes(request: Request):
    return await _respond(request, "reset-rest", _engine(request).reset_rest_minutes())


# ============ Settings / Lifecycle ============

@router.get("/api/settings")
async def get_settings(request: Request):
    return _engine(request).settings.to_dict()


@router.put("/api/settings", response_model=TransitionResponse)
async def update_settings(body: SettingsRequest, request: Request):
    result = _engine(request).update_settings(
        body.cycle_minutes,
        body.normal_reward_minutes,
        body.bonus_reward_minutes,
        body.bonus_every_nth,
    )
    return await _respond(request, "settings", result)


@router.post("/api/reboot", response_model=TransitionResponse)
async def reboot(request: Request):
    """Clear all persisted progress. Settings are kept."""
    return await _respond(request, "reboot", _engine(request).reboot())


@router.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@router.get("/api/logs/recent", response_model=LogsResponse)
async def get_recent_logs(limit: int = 50):
    """Most recent server log lines (max 100)."""
    limit = max(0, min(limit, 100))
    recent_logs = list(log_buffer)[-limit:] if limit else []
    return {"logs": recent_logs, "count": len(recent_logs)}


@router.get("/api/events/recent")
async def get_recent_events(request: Request, limit: int = 50):
    limit = max(1, min(limit, 500))
    return {"events": await request.app.state.event_log.recent(limit)}


# ============ App Factory ============

def create_app(
    engine: Optional[FocusEngine] = None,
    config: Optional[LedgerConfig] = None,
    enable_ticker: bool = True,
) -> FastAPI:
    """Build the API. Without an engine, one is opened on the configured SQLite file at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config or get_config()
        owned_store = None
        if engine is None:
            owned_store = SqliteStore(cfg.db_path)
            try:
                app.state.engine = FocusEngine(owned_store, owner_url=cfg.base_url)
            except StoreOwnedError as e:
                owned_store.close()
                logger.error(f"Cannot start: {e} ({e.owner.get('url') or 'no server url'})")
                raise
        else:
            app.state.engine = engine
        app.state.event_log = EventLog(cfg.db_path)
        await app.state.event_log.init_tables()

        async def scheduled_tick():
            result = app.state.engine.tick()
            if result.events:
                if result.notice:
                    logger.info(f"tick: {result.notice}")
                await app.state.event_log.record(result, source="tick")

        ticker = TickSource(AsyncIOScheduler(), scheduled_tick, cfg.tick_seconds)
        app.state.ticker = ticker
        if enable_ticker:
            ticker.start()
        logger.info(f"Focus ledger ready (db={cfg.db_path})")
        yield

        ticker.stop()
        if owned_store is not None:
            app.state.engine.close()
            owned_store.close()
        logger.info("Focus ledger stopped")

    app = FastAPI(
        title="Focus-Ledger",
        description="Focus time reconciliation and rest-minute reward ledger",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    cfg = get_config()
    uvicorn.run(app, host=cfg.host, port=cfg.port)


if __name__ == "__main__":
    main()
