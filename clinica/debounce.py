"""Input debouncing and response sequencing.

Debouncer: cancel-and-restart timer. Every trigger() cancels the pending
call and schedules a new one; only the last call of a quiet window runs.

RequestSequencer: monotonically increasing tickets. A response is applied
only if its ticket is still the latest one issued, so a slow, superseded
list request can never overwrite fresher state.
"""
import asyncio
import itertools
from typing import Any, Awaitable, Callable, Optional

from clinica.logging_config import get_logger

logger = get_logger(__name__)


class Debouncer:
    """Run an async callback after `delay` seconds of inactivity."""

    def __init__(self, delay: float, callback: Callable[..., Awaitable[Any]]):
        self.delay = delay
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, *args, **kwargs) -> None:
        """(Re)start the quiet window with the latest arguments."""
        self.cancel()
        self._task = asyncio.create_task(self._fire(*args, **kwargs))

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()

    async def _fire(self, *args, **kwargs) -> None:
        await asyncio.sleep(self.delay)
        await self.callback(*args, **kwargs)

    async def wait(self) -> None:
        """Block until no call is scheduled or running."""
        while self.pending:
            task = self._task
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()


class RequestSequencer:
    """Issue tickets and tell whether a ticket is still the latest."""

    def __init__(self):
        self._counter = itertools.count(1)
        self.latest = 0

    def next(self) -> int:
        self.latest = next(self._counter)
        return self.latest

    def is_current(self, ticket: int) -> bool:
        if ticket != self.latest:
            logger.debug("stale_response_discarded", ticket=ticket, latest=self.latest)
            return False
        return True
