"""
Update Bus
==========
Single-consumer channel between background tasks and the interactive loop.

Background sessions (page loads, run polling) never touch presentation state
directly. They ``post`` a callable tagged with their CancelToken; the one
consumer applies posted updates strictly in FIFO order and drops any update
whose token was canceled after it was queued. That drop is what keeps a
superseded session from painting over the view that replaced it.
"""
import asyncio
import logging
from typing import Any, Callable, NamedTuple, Optional

from pipewatch.core.cancellation import CancelToken

logger = logging.getLogger(__name__)


class _Update(NamedTuple):
    token: Optional[CancelToken]
    fn: Callable[..., Any]
    args: tuple


class UpdateBus:
    """
    FIFO of pending presentation updates.

    ``run()`` is the long-lived consumer used by the UI. ``drain()`` applies
    whatever is queued right now and is what tests call after awaiting a
    session.
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[_Update]" = asyncio.Queue()
        self.applied = 0
        self.dropped = 0

    def post(self, token: Optional[CancelToken], fn: Callable[..., Any], *args: Any) -> None:
        """Queue ``fn(*args)`` on behalf of the session owning ``token``."""
        if token is not None and token.cancelled:
            self.dropped += 1
            return
        self._queue.put_nowait(_Update(token, fn, args))

    def pending(self) -> int:
        return self._queue.qsize()

    def _apply(self, update: _Update) -> None:
        if update.token is not None and update.token.cancelled:
            self.dropped += 1
            logger.debug("Dropped stale update %s from %r", getattr(update.fn, "__name__", update.fn), update.token)
            return
        try:
            update.fn(*update.args)
        except Exception:
            # Handler failures are logged; the consumer keeps running
            logger.exception("Update handler %r failed", update.fn)
        self.applied += 1

    def drain(self) -> int:
        """Apply every queued update and return how many were taken off the queue."""
        count = 0
        while True:
            try:
                update = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return count
            self._apply(update)
            self._queue.task_done()
            count += 1

    async def run(self) -> None:
        """Consume updates forever; cancel the task running this to stop."""
        logger.debug("Update bus consumer started")
        while True:
            update = await self._queue.get()
            self._apply(update)
            self._queue.task_done()
