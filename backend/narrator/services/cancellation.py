"""
Per-job cancellation token.

Checked before dispatching a unit, before each retry attempt, during
backoff sleeps and while waiting for a concurrency permit.
"""

import asyncio

from narrator.errors import JobCancelledError


class CancellationToken:
    """
    Cooperative cancellation flag backed by an asyncio.Event.

    Example:
        token = CancellationToken()
        token.raise_if_cancelled()   # no-op
        token.cancel()
        await token.wait()           # returns immediately
        token.raise_if_cancelled()   # raises JobCancelledError
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        """True once cancel() has been called."""
        return self._event.is_set()

    async def wait(self) -> None:
        """Suspend until cancellation is requested."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        """
        Raise JobCancelledError if cancellation was requested.

        Raises:
            JobCancelledError: If the token is cancelled
        """
        if self._event.is_set():
            raise JobCancelledError("cancellation requested")
