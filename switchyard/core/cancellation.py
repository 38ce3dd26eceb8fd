import asyncio

from switchyard.core.exceptions import JobCancelledError

# Token reasons set by the worker
CANCELLED = "cancelled"
SHUTDOWN = "shutdown"
TIMEOUT = "timeout"
RECLAIMED = "reclaimed"


class CancellationToken:
    """
    Cooperative cancellation signal passed to every job handler.

    Handlers poll `cancelled` or call `raise_if_cancelled()` between units
    of work. The worker only cancels the handler task outright when it
    ignores a timeout signal for longer than the grace period.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = CANCELLED) -> None:
        """Request cancellation. The first reason wins."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError(self.reason or CANCELLED)

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait until cancelled; returns False if the timeout elapsed first."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except TimeoutError:
            return False
        return True
