from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from roster_monitor.schedule_windows import REMINDER_DISPATCH, window_contains
from roster_monitor.services.recompute import recompute_all
from roster_monitor.services.reminders import NotificationGateway, check_upcoming_reminders, send_due_reminders
from roster_monitor.services.status_engine import local_today, roster_timezone
from roster_monitor.services.workers import CachedWorkerDirectory, SqlWorkerDirectory, TtlCache

logger = logging.getLogger("roster_monitor.worker")

MIN_INTERVAL_SECONDS = 15


class PeriodicTask:
    """Runs ``callback(now_utc)`` in a worker thread every ``interval_seconds``.

    A failing tick is logged and the loop keeps going. ``stop()`` sets the
    stop event and cancels the task.
    """

    def __init__(self, name: str, interval_seconds: float, callback: Callable[[datetime], Any]) -> None:
        self.name = name
        self.interval_seconds = max(MIN_INTERVAL_SECONDS, float(interval_seconds))
        self.callback = callback
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                result = await asyncio.to_thread(self.callback, datetime.now(timezone.utc))
            except Exception:
                logger.exception("periodic_task_tick_failed", extra={"task": self.name})
            else:
                if result:
                    logger.info("periodic_task_tick", extra={"task": self.name, "result": result})

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event))
        logger.info("periodic_task_started", extra={"task": self.name, "interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._stop_event = None
        self._task = None
        logger.info("periodic_task_stopped", extra={"task": self.name})


class RecomputeRunner:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def __call__(self, now_utc: datetime) -> dict[str, int]:
        db = self.session_factory()
        try:
            return recompute_all(db, today=local_today(now_utc)).to_dict()
        finally:
            db.close()


class ReminderRunner:
    """Dispatches reminders once per local day inside the dispatch window."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        gateway: NotificationGateway,
        worker_cache: TtlCache,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.worker_cache = worker_cache
        self.last_dispatch_day: date | None = None

    def should_dispatch(self, now_utc: datetime) -> bool:
        local_now = now_utc.astimezone(roster_timezone())
        if self.last_dispatch_day == local_now.date():
            return False
        return window_contains(REMINDER_DISPATCH, local_now.time())

    def __call__(self, now_utc: datetime) -> dict[str, int] | None:
        if not self.should_dispatch(now_utc):
            return None

        today = local_today(now_utc)
        db = self.session_factory()
        try:
            directory = CachedWorkerDirectory(SqlWorkerDirectory(db), self.worker_cache)
            upcoming = check_upcoming_reminders(db, today=today, worker_directory=directory)
            logger.info("leave_reminder_upcoming", extra={"today": today, "pending": len(upcoming)})
            summary = send_due_reminders(db, self.gateway, today=today, worker_directory=directory)
        finally:
            db.close()
        self.last_dispatch_day = today
        return summary.to_dict()
