"""Per-session inactivity timers.

Each key owns at most one pending job. Resetting replaces it, cancelling
removes it, and a job that fires clears its own slot before running.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Protocol

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, job: Job) -> TimerHandle: ...


class AsyncioScheduler:
    """Runs each job in its own task after sleeping `delay` seconds."""

    def call_later(self, delay: float, job: Job) -> asyncio.Task:
        async def _sleep_then_run():
            await asyncio.sleep(delay)
            await job()

        return asyncio.get_running_loop().create_task(_sleep_then_run())


class InactivityTimers:
    def __init__(self, delay: float, scheduler: Scheduler = None):
        self.delay = delay
        self.scheduler = scheduler or AsyncioScheduler()
        self._handles: Dict[str, TimerHandle] = {}
        self._tokens: Dict[str, object] = {}

    def reset(self, key: str, job: Job) -> None:
        """(Re)arm the timer for `key`; any previously pending job is cancelled."""
        self.cancel(key)

        token = object()

        async def _fire():
            if self._tokens.get(key) is not token:
                return
            self._handles.pop(key, None)
            self._tokens.pop(key, None)
            logger.info("Inactivity timer fired for %s", key)
            try:
                await job()
            except Exception:
                logger.exception("Inactivity job failed for %s", key)

        self._tokens[key] = token
        self._handles[key] = self.scheduler.call_later(self.delay, _fire)
        logger.debug("Inactivity timer reset for %s (%.0fs)", key, self.delay)

    def cancel(self, key: str) -> bool:
        handle = self._handles.pop(key, None)
        self._tokens.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug("Inactivity timer cancelled for %s", key)
        return True

    def pending(self, key: str) -> bool:
        return key in self._handles

    def cancel_all(self) -> None:
        for key in list(self._handles):
            self.cancel(key)

