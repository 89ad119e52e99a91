"""
Cancellation
============
Cooperative cancellation shared between a background session and whoever
owns it.

A CancelToken is checked before each unit of work and raced against every
timed wait, so a session that is told to stop never begins another fetch
and never sleeps through the signal.
"""
import asyncio


class CancelToken:
    """
    One-shot cancellation signal backed by an ``asyncio.Event``.

    Usage:
        token = CancelToken()
        if await token.sleep(5.0):
            return          # canceled during the wait
        token.cancel()      # idempotent
    """

    def __init__(self, label: str = "") -> None:
        self.label = label
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """
        Wait up to ``seconds``, returning early when the token is canceled.

        Returns
        -------
        bool
            True if the token was canceled before or during the wait,
            False if the full delay elapsed.
        """
        if self._event.is_set():
            return True
        if seconds <= 0:
            # Still yield so a pending cancel() gets a chance to run
            await asyncio.sleep(0)
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "live"
        return f"<CancelToken {self.label or id(self)} {state}>"

