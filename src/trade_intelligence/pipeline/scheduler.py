"""Periodic refresh of the derived snapshot.

Runs the recompute pipeline on a fixed interval (nightly by default).
The recompute itself is CPU-bound, so it is offloaded via
``asyncio.to_thread()`` and the event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable

from trade_intelligence.core.config import SchedulerConfig
from trade_intelligence.core.errors import RecomputeFailure

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Background loop calling ``refresh`` every ``interval_hours``.

    Usage::

        scheduler = RefreshScheduler(config, service.refresh)
        await scheduler.start()
        # ... runs in background ...
        await scheduler.stop()
    """

    def __init__(
        self,
        config: SchedulerConfig,
        refresh: Callable[[threading.Event], Any],
    ) -> None:
        self._config = config
        self._refresh = refresh
        self._interval = config.interval_hours * 3600
        self._task: asyncio.Task | None = None
        self._abort = threading.Event()
        self._running = False
        self._run_count = 0
        self._error_count = 0
        self._last_run_at: datetime | None = None
        self._last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def run_count(self) -> int:
        return self._run_count

    @property
    def error_count(self) -> int:
        return self._error_count

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logger.warning("RefreshScheduler is already running")
            return
        if self._interval <= 0:
            raise ValueError("scheduler.interval_hours must be > 0")
        self._running = True
        self._abort.clear()
        self._task = asyncio.create_task(self._loop(), name="refresh-scheduler")
        logger.info(
            "RefreshScheduler started (interval=%.1fh, initial_delay=%.1fm)",
            self._config.interval_hours,
            self._config.initial_delay_minutes,
        )

    async def stop(self) -> None:
        """Stop the loop; an in-flight recompute is aborted, not published."""
        self._running = False
        self._abort.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("RefreshScheduler stopped (ran %d times)", self._run_count)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run_once(self) -> Any:
        result = await asyncio.to_thread(self._refresh, self._abort)
        self._run_count += 1
        self._last_run_at = datetime.now(timezone.utc)
        return result

    async def _loop(self) -> None:
        """Internal scheduler loop with initial delay."""
        delay_secs = self._config.initial_delay_minutes * 60
        if delay_secs > 0:
            logger.info("RefreshScheduler waiting %.0fs before first run", delay_secs)
            await asyncio.sleep(delay_secs)

        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except RecomputeFailure as exc:
                self._error_count += 1
                self._last_error = exc.kind
                logger.error(
                    "Scheduled refresh failed (errors=%d): %s",
                    self._error_count,
                    exc,
                )
            await asyncio.sleep(self._interval)

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "interval_hours": self._config.interval_hours,
            "run_count": self._run_count,
            "error_count": self._error_count,
            "last_run_at": (
                self._last_run_at.isoformat() if self._last_run_at else None
            ),
            "last_error": self._last_error,
        }
