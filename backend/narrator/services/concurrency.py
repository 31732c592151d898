"""
Concurrency limiter for external calls.

One bounded pool per resource class (one per collaborator or rate-limit
domain), shared by all jobs. Waiters are served FIFO and a released
permit is handed directly to the oldest live waiter.
"""

import asyncio
import itertools
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from narrator.errors import JobCancelledError
from narrator.models.pipelines import PipelinesConfig
from narrator.services.cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Permit:
    """
    Right to make one in-flight call in a resource class.

    Attributes:
        resource_class: Pool the permit belongs to
        permit_id: Unique identifier (for logs)
        released: Set once the permit is returned
    """

    resource_class: str
    permit_id: int
    released: bool = False


class _Pool:
    """Bounded pool state for one resource class."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        self.in_use = 0
        self.peak = 0
        self.granted = 0
        self.waiters: deque[asyncio.Future] = deque()

    def mark_granted(self) -> None:
        self.granted += 1
        self.peak = max(self.peak, self.in_use)


class ConcurrencyLimiter:
    """
    Bounds simultaneously in-flight calls per resource class.

    Example:
        limiter = ConcurrencyLimiter({"vision": 6, "speech": 3})

        async with limiter.slot("vision", cancel_token=token):
            text = await vision.analyze(unit, prompt)

        # Or explicitly
        permit = await limiter.acquire("speech")
        try:
            audio = await speech.synthesize(text, voice)
        finally:
            limiter.release(permit)
    """

    def __init__(self, limits: dict[str, int]):
        """
        Initialize pools.

        Args:
            limits: Resource class -> max concurrent permits

        Raises:
            ValueError: If any limit is below 1
        """
        for name, capacity in limits.items():
            if capacity < 1:
                raise ValueError(f"Resource class '{name}' capacity must be >= 1")
        self._pools: dict[str, _Pool] = {
            name: _Pool(capacity) for name, capacity in limits.items()
        }
        self._ids = itertools.count(1)

    @classmethod
    def from_config(cls, config: PipelinesConfig) -> "ConcurrencyLimiter":
        """Create limiter from the pipeline configuration's resource limits."""
        return cls(dict(config.resource_limits))

    def _get_pool(self, resource_class: str) -> _Pool:
        pool = self._pools.get(resource_class)
        if pool is None:
            raise ValueError(
                f"Unknown resource class '{resource_class}'. "
                f"Available: {list(self._pools.keys())}"
            )
        return pool

    async def acquire(
        self,
        resource_class: str,
        cancel_token: CancellationToken | None = None,
    ) -> Permit:
        """
        Acquire a permit, waiting FIFO if the pool is exhausted.

        Args:
            resource_class: Pool to acquire from
            cancel_token: Aborts the wait when cancelled

        Returns:
            Granted Permit

        Raises:
            ValueError: If the resource class is unknown
            JobCancelledError: If cancelled before or while waiting
        """
        pool = self._get_pool(resource_class)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        if pool.in_use < pool.capacity and not pool.waiters:
            pool.in_use += 1
            pool.mark_granted()
            return self._new_permit(resource_class)

        waiter = asyncio.get_running_loop().create_future()
        pool.waiters.append(waiter)
        logger.debug(
            f"Waiting for '{resource_class}' permit "
            f"({pool.in_use}/{pool.capacity} in use, {len(pool.waiters)} waiting)"
        )

        try:
            if cancel_token is None:
                await waiter
            else:
                cancel_wait = asyncio.ensure_future(cancel_token.wait())
                try:
                    await asyncio.wait(
                        {waiter, cancel_wait},
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                finally:
                    cancel_wait.cancel()
                if cancel_token.is_cancelled:
                    raise JobCancelledError(
                        f"cancelled while waiting for '{resource_class}' permit"
                    )
        except BaseException:
            if waiter.done() and not waiter.cancelled():
                # Granted in the same instant: hand it on
                self._hand_off(pool)
            else:
                waiter.cancel()
                if waiter in pool.waiters:
                    pool.waiters.remove(waiter)
            raise

        pool.mark_granted()
        return self._new_permit(resource_class)

    def release(self, permit: Permit) -> None:
        """
        Return a permit to its pool.

        Raises:
            RuntimeError: If the permit was already released
        """
        if permit.released:
            raise RuntimeError(
                f"Permit {permit.permit_id} for '{permit.resource_class}' already released"
            )
        permit.released = True
        self._hand_off(self._get_pool(permit.resource_class))

    def _hand_off(self, pool: _Pool) -> None:
        """Give a freed slot to the oldest live waiter, or return it to the pool."""
        while pool.waiters:
            waiter = pool.waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        pool.in_use -= 1

    def _new_permit(self, resource_class: str) -> Permit:
        return Permit(resource_class=resource_class, permit_id=next(self._ids))

    @asynccontextmanager
    async def slot(
        self,
        resource_class: str,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[Permit]:
        """Acquire a permit for the duration of the block."""
        permit = await self.acquire(resource_class, cancel_token)
        try:
            yield permit
        finally:
            self.release(permit)

    def __contains__(self, resource_class: str) -> bool:
        return resource_class in self._pools

    def in_use(self, resource_class: str) -> int:
        """Number of permits currently held in a pool."""
        return self._get_pool(resource_class).in_use

    def stats(self) -> dict[str, dict[str, int]]:
        """
        Pool usage for health reporting.

        Returns:
            Resource class -> {capacity, in_use, waiting, peak, granted}
        """
        return {
            name: {
                "capacity": pool.capacity,
                "in_use": pool.in_use,
                "waiting": sum(1 for w in pool.waiters if not w.done()),
                "peak": pool.peak,
                "granted": pool.granted,
            }
            for name, pool in self._pools.items()
        }
