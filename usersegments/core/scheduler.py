"""Background task that expires time-bounded memberships.

An ``asyncio.Task`` triggers a sweep every *interval* seconds. The sweep itself
is blocking database work and runs in a worker thread. A non-blocking lock
makes sweeps non-reentrant: a trigger that fires while a sweep is still
running is skipped, never queued behind it.

A failed sweep is logged and the loop waits for the next tick; there is no
retry.
"""

import asyncio
import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session

from usersegments.core.durations import Clock, utcnow
from usersegments.services.expiration_service import ExpirationService

logger = logging.getLogger(__name__)


class ExpirationScheduler:
    """Periodically run :meth:`ExpirationService.sweep`.

    Args:
        session_factory: Callable returning a new Session; one per sweep.
        interval: Seconds between sweeps (default 60.0).
        clock: Time source handed to the sweeper.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        interval: float = 60.0,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._interval = interval
        self._clock = clock
        self._lock = threading.Lock()
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Create the background sweeping task."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def run_once(self) -> Optional[int]:
        """
        Run one sweep unless another is in progress.

        Returns the number of removed memberships, or None if skipped.
        Exceptions from the sweep propagate.
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Previous sweep still running, skipping this tick")
            return None
        try:
            db = self._session_factory()
            try:
                return ExpirationService(db, clock=self._clock).sweep()
            finally:
                db.close()
        finally:
            self._lock.release()

    async def _loop(self) -> None:
        """Sweep on each tick, then sleep for the interval."""
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("Expired membership sweep failed")
            await asyncio.sleep(self._interval)
