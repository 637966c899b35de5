"""Periodic tick source backed by APScheduler.

Ticks are best-effort: the engine reconciles from the wall clock, so a
late, coalesced or skipped tick only delays when a change is observed.
"""

from __future__ import annotations

import logging
from typing import Callable

from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

TICK_JOB_ID = "focus-ledger-tick"


class TickSource:
    """Registers one interval job on a scheduler. start/stop are idempotent."""

    def __init__(self, scheduler, callback: Callable, interval_seconds: float = 1.0):
        self.scheduler = scheduler
        self.callback = callback
        self.interval_seconds = interval_seconds
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def start(self) -> None:
        if self._started:
            return
        self.scheduler.add_job(
            self.callback,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=TICK_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        self._started = True
        logger.info("Tick source started (every %ss)", self.interval_seconds)

    def stop(self) -> None:
        if not self._started:
            return
        if self.scheduler.get_job(TICK_JOB_ID) is not None:
            self.scheduler.remove_job(TICK_JOB_ID)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self._started = False
        logger.info("Tick source stopped")
