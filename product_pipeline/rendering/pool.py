# product_pipeline/rendering/pool.py

"""Bounded pool of heavyweight render resources (headless browsers).

At most ``max_resources`` resources are live at once.  Callers beyond
that wait in FIFO order; a released resource is handed straight to the
oldest waiter instead of going back to the idle set first.

All bookkeeping happens synchronously on the event loop between
awaits, so no lock is held while a browser launches or renders.
"""

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, Generic, TypeVar

from product_pipeline.config.settings import Settings
from product_pipeline.models.errors import (
    PoolClosedError,
    ResourceExhaustedError,
)

logger = logging.getLogger("product_pipeline.pool")

R = TypeVar("R")

# Handed to a waiter when a slot frees up without a resource to pass on
_HEADROOM = object()


class RenderPool(Generic[R]):
    """Bounded, FIFO-fair pool with scoped acquisition."""

    def __init__(
        self,
        factory: Callable[[], Awaitable[R]],
        closer: Callable[[R], Awaitable[None]] | None = None,
        max_resources: int | None = None,
    ) -> None:
        size = (
            max_resources
            if max_resources is not None
            else Settings.MAX_RENDER_RESOURCES
        )
        if size < 1:
            msg = "max_resources must be >= 1"
            raise ValueError(msg)
        self.max_resources = size
        self._factory = factory
        self._closer = closer
        self._live: list[R] = []
        self._idle: list[R] = []
        self._creating = 0
        # Slots promised to woken waiters that have not resumed yet
        self._reserved = 0
        self._waiters: deque[asyncio.Future[Any]] = deque()
        self._closed = False

    # ── Introspection ────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    def stats(self) -> dict[str, int]:
        """Current pool occupancy."""
        return {
            "max_resources": self.max_resources,
            "live": len(self._live),
            "idle": len(self._idle),
            "in_use": len(self._live) - len(self._idle),
            "creating": self._creating,
            "reserved": self._reserved,
            "waiting": self._pending_waiters(),
        }

    def _pending_waiters(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    def _has_headroom(self) -> bool:
        occupied = len(self._live) + self._creating + self._reserved
        return occupied < self.max_resources

    # ── Acquire ──────────────────────────────────────────

    async def acquire(self, timeout: float | None = None) -> R:
        """Obtain exclusive use of a resource.

        Raises:
            ResourceExhaustedError: nothing freed up within *timeout*.
            PoolClosedError: the pool was (or got) shut down.
        """
        if timeout is None:
            return await self._acquire()
        try:
            return await asyncio.wait_for(self._acquire(), timeout)
        except TimeoutError as exc:
            msg = (
                f"No render resource available within {timeout:.1f}s "
                f"({self.max_resources} in use)"
            )
            raise ResourceExhaustedError(msg) from exc

    async def _acquire(self) -> R:
        if self._closed:
            msg = "Render pool is closed"
            raise PoolClosedError(msg)

        if self._idle:
            return self._idle.pop()

        # Queued callers get freed slots first
        if self._has_headroom() and not self._pending_waiters():
            return await self._create()

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[Any] = loop.create_future()
        self._waiters.append(waiter)
        logger.debug(
            "Render pool full (%d live), queued waiter #%d",
            len(self._live),
            len(self._waiters),
        )
        try:
            handed = await waiter
        except asyncio.CancelledError:
            self._abandon(waiter)
            raise

        if handed is _HEADROOM:
            # Convert the reservation into a creation slot in one step
            self._reserved -= 1
            if self._closed:
                msg = "Render pool is closed"
                raise PoolClosedError(msg)
            return await self._create()
        resource: R = handed
        return resource

    def _abandon(self, waiter: asyncio.Future[Any]) -> None:
        """Clean up after a waiter cancelled or timed out."""
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass
        if not waiter.done() or waiter.cancelled():
            return
        if waiter.exception() is not None:
            return
        # Handed off just as we were cancelled: pass it on
        handed = waiter.result()
        if handed is _HEADROOM:
            self._reserved -= 1
            if not self._closed:
                self._wake_for_headroom()
        else:
            self.release(handed)

    async def _create(self) -> R:
        self._creating += 1
        try:
            resource = await self._factory()
        except BaseException:
            self._creating -= 1
            self._wake_for_headroom()
            raise
        self._creating -= 1
        if self._closed:
            await self._close_resource(resource)
            msg = "Render pool closed while launching a resource"
            raise PoolClosedError(msg)
        self._live.append(resource)
        logger.info(
            "Launched render resource (%d/%d live)",
            len(self._live),
            self.max_resources,
        )
        return resource

    def _next_waiter(self) -> asyncio.Future[Any] | None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                return waiter
        return None

    def _wake_for_headroom(self) -> None:
        if not self._has_headroom():
            return
        waiter = self._next_waiter()
        if waiter is not None:
            self._reserved += 1
            waiter.set_result(_HEADROOM)

    # ── Release / discard ────────────────────────────────

    def release(self, resource: R) -> None:
        """Return *resource*; hand it to the oldest waiter if any."""
        if resource not in self._live:
            logger.debug(
                "Ignoring release of a resource the pool no longer owns"
            )
            return
        if self._closed:
            return
        if resource in self._idle:
            msg = "Resource released twice"
            raise ValueError(msg)

        waiter = self._next_waiter()
        if waiter is not None:
            waiter.set_result(resource)
            return
        self._idle.append(resource)

    async def discard(self, resource: R) -> None:
        """Tear down a broken resource and free its slot."""
        if resource not in self._live:
            return
        self._live.remove(resource)
        if resource in self._idle:
            self._idle.remove(resource)
        await self._close_resource(resource)
        if not self._closed:
            self._wake_for_headroom()

    @asynccontextmanager
    async def session(
        self, timeout: float | None = None
    ) -> AsyncIterator[R]:
        """Scoped acquisition: the resource is released on every exit path."""
        resource = await self.acquire(timeout)
        try:
            yield resource
        finally:
            self.release(resource)

    # ── Shutdown ─────────────────────────────────────────

    async def _close_resource(self, resource: R) -> None:
        if self._closer is None:
            return
        try:
            await self._closer(resource)
        except Exception as exc:
            logger.warning(
                "Error closing render resource: %s", exc, exc_info=True
            )

    async def close(self) -> None:
        """Fail pending waiters and tear down every live resource once."""
        if self._closed:
            return
        self._closed = True

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(
                    PoolClosedError("Render pool is shutting down")
                )

        live = list(self._live)
        self._live.clear()
        self._idle.clear()
        await asyncio.gather(
            *(self._close_resource(r) for r in live)
        )
        logger.info("Render pool closed (%d resources torn down)", len(live))
