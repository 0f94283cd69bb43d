# tests/test_render_pool.py

"""Tests for the bounded render-resource pool."""

import asyncio
import unittest

from product_pipeline.models.errors import (
    PoolClosedError,
    ResourceExhaustedError,
)
from product_pipeline.rendering.pool import RenderPool


class _Resource:
    """Stand-in for a browser handle."""

    def __init__(self, ident: int) -> None:
        self.ident = ident
        self.closed = 0

    def __repr__(self) -> str:
        return f"<_Resource {self.ident}>"


class _Factory:
    """Async factory/closer pair that records what it did."""

    def __init__(self, fail: bool = False) -> None:
        self.created: list[_Resource] = []
        self.fail = fail

    async def create(self) -> _Resource:
        await asyncio.sleep(0)
        if self.fail:
            msg = "browser failed to launch"
            raise RuntimeError(msg)
        resource = _Resource(len(self.created) + 1)
        self.created.append(resource)
        return resource

    async def close(self, resource: _Resource) -> None:
        resource.closed += 1


async def _settle(rounds: int = 20) -> None:
    """Let queued callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def _pool(factory: _Factory, size: int = 2) -> RenderPool[_Resource]:
    return RenderPool(factory.create, factory.close, max_resources=size)


class TestPoolBounds(unittest.IsolatedAsyncioTestCase):
    """Never more than max_resources live; extra callers queue."""

    async def test_n_plus_five_callers(self) -> None:
        factory = _Factory()
        pool = _pool(factory, size=2)
        gate = asyncio.Event()
        holding = 0
        peak = 0

        async def worker() -> None:
            nonlocal holding, peak
            async with pool.session():
                holding += 1
                peak = max(peak, holding)
                await gate.wait()
                holding -= 1

        tasks = [asyncio.create_task(worker()) for _ in range(7)]
        await _settle()

        stats = pool.stats()
        self.assertEqual(stats["live"], 2)
        self.assertEqual(stats["in_use"], 2)
        self.assertEqual(stats["waiting"], 5)

        gate.set()
        await asyncio.gather(*tasks)
        self.assertEqual(peak, 2)
        self.assertEqual(len(factory.created), 2)
        self.assertEqual(pool.stats()["idle"], 2)
        self.assertEqual(pool.stats()["waiting"], 0)
        await pool.close()

    async def test_idle_resource_is_reused(self) -> None:
        factory = _Factory()
        pool = _pool(factory)
        first = await pool.acquire()
        pool.release(first)
        second = await pool.acquire()
        self.assertIs(first, second)
        self.assertEqual(len(factory.created), 1)
        await pool.close()

    async def test_zero_size_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            _pool(_Factory(), size=0)


class TestHandoff(unittest.IsolatedAsyncioTestCase):
    """Released resources go to waiters in FIFO order."""

    async def test_fifo_handoff(self) -> None:
        factory = _Factory()
        pool = _pool(factory, size=1)
        held = await pool.acquire()
        order: list[str] = []

        async def waiter(label: str) -> None:
            resource = await pool.acquire()
            order.append(label)
            self.assertIs(resource, held)
            pool.release(resource)

        a = asyncio.create_task(waiter("a"))
        await _settle()
        b = asyncio.create_task(waiter("b"))
        await _settle()

        pool.release(held)
        # Handed off directly: never observed as idle in between
        self.assertEqual(pool.stats()["idle"], 0)
        await asyncio.gather(a, b)
        self.assertEqual(order, ["a", "b"])
        await pool.close()

    async def test_double_release_rejected(self) -> None:
        pool = _pool(_Factory())
        resource = await pool.acquire()
        pool.release(resource)
        with self.assertRaises(ValueError):
            pool.release(resource)
        await pool.close()

    async def test_session_releases_on_error(self) -> None:
        pool = _pool(_Factory(), size=1)
        with self.assertRaises(RuntimeError):
            async with pool.session():
                raise RuntimeError("render crashed")
        self.assertEqual(pool.stats()["idle"], 1)
        await pool.close()


class TestCancellationAndTimeout(unittest.IsolatedAsyncioTestCase):
    """Abandoned waits never leak a slot."""

    async def test_cancel_while_waiting(self) -> None:
        factory = _Factory()
        pool = _pool(factory, size=1)
        held = await pool.acquire()

        task = asyncio.create_task(pool.acquire())
        await _settle()
        self.assertEqual(pool.stats()["waiting"], 1)

        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertEqual(pool.stats()["waiting"], 0)

        pool.release(held)
        self.assertEqual(pool.stats()["idle"], 1)
        again = await asyncio.wait_for(pool.acquire(), timeout=1)
        self.assertIs(again, held)
        await pool.close()

    async def test_cancel_after_handoff_passes_resource_on(self) -> None:
        factory = _Factory()
        pool = _pool(factory, size=1)
        held = await pool.acquire()

        task = asyncio.create_task(pool.acquire())
        await _settle()
        pool.release(held)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        stats = pool.stats()
        self.assertEqual(stats["idle"], 1)
        self.assertEqual(stats["live"], 1)
        await pool.close()

    async def test_cancel_during_session_releases(self) -> None:
        pool = _pool(_Factory(), size=1)
        started = asyncio.Event()

        async def render() -> None:
            async with pool.session():
                started.set()
                await asyncio.sleep(60)

        task = asyncio.create_task(render())
        await started.wait()
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertEqual(pool.stats()["in_use"], 0)
        await pool.close()

    async def test_acquire_timeout(self) -> None:
        pool = _pool(_Factory(), size=1)
        await pool.acquire()
        with self.assertRaises(ResourceExhaustedError):
            await pool.acquire(timeout=0.05)
        self.assertEqual(pool.stats()["waiting"], 0)
        await pool.close()


class TestDiscardAndFailures(unittest.IsolatedAsyncioTestCase):
    """Broken resources free their slot."""

    async def test_discard_wakes_waiter_for_replacement(self) -> None:
        factory = _Factory()
        pool = _pool(factory, size=1)
        broken = await pool.acquire()

        task = asyncio.create_task(pool.acquire())
        await _settle()
        await pool.discard(broken)
        replacement = await asyncio.wait_for(task, timeout=1)

        self.assertIsNot(replacement, broken)
        self.assertEqual(broken.closed, 1)
        self.assertEqual(len(factory.created), 2)
        # The session's release of a discarded resource is a no-op
        pool.release(broken)
        await pool.close()

    async def test_freed_slot_is_reserved_for_waiter(self) -> None:
        factory = _Factory()
        pool = _pool(factory, size=1)
        broken = await pool.acquire()

        waiter = asyncio.create_task(pool.acquire())
        await _settle()
        await pool.discard(broken)
        # A newcomer arriving before the woken waiter resumes must queue
        newcomer = asyncio.create_task(pool.acquire())
        replacement = await asyncio.wait_for(waiter, timeout=1)
        await _settle()

        self.assertFalse(newcomer.done())
        self.assertEqual(pool.stats()["live"], 1)
        self.assertEqual(pool.stats()["reserved"], 0)

        pool.release(replacement)
        self.assertIs(await asyncio.wait_for(newcomer, timeout=1), replacement)
        self.assertEqual(len(factory.created), 2)
        await pool.close()

    async def test_cancelled_reservation_passes_to_next_waiter(self) -> None:
        factory = _Factory()
        pool = _pool(factory, size=1)
        broken = await pool.acquire()

        first = asyncio.create_task(pool.acquire())
        second = asyncio.create_task(pool.acquire())
        await _settle()
        await pool.discard(broken)
        first.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await first

        resource = await asyncio.wait_for(second, timeout=1)
        self.assertIsNot(resource, broken)
        stats = pool.stats()
        self.assertEqual(stats["live"], 1)
        self.assertEqual(stats["reserved"], 0)
        await pool.close()

    async def test_factory_failure_frees_slot(self) -> None:
        factory = _Factory(fail=True)
        pool = _pool(factory, size=1)
        with self.assertRaises(RuntimeError):
            await pool.acquire()
        stats = pool.stats()
        self.assertEqual(stats["live"], 0)
        self.assertEqual(stats["creating"], 0)

        factory.fail = False
        resource = await pool.acquire()
        self.assertEqual(resource.ident, 1)
        await pool.close()


class TestClose(unittest.IsolatedAsyncioTestCase):
    """Shutdown fails waiters and closes everything exactly once."""

    async def test_close_fails_waiters_and_closes_resources(self) -> None:
        factory = _Factory()
        pool = _pool(factory, size=1)
        held = await pool.acquire()

        task = asyncio.create_task(pool.acquire())
        await _settle()
        await pool.close()

        with self.assertRaises(PoolClosedError):
            await task
        self.assertEqual(held.closed, 1)

        # Late release and a second close are harmless
        pool.release(held)
        await pool.close()
        self.assertEqual(held.closed, 1)

    async def test_acquire_after_close(self) -> None:
        pool = _pool(_Factory())
        await pool.close()
        self.assertTrue(pool.closed)
        with self.assertRaises(PoolClosedError):
            await pool.acquire()

    async def test_close_error_is_logged(self) -> None:
        async def bad_close(resource: _Resource) -> None:
            raise RuntimeError("already gone")

        factory = _Factory()
        pool = RenderPool(factory.create, bad_close, max_resources=1)
        await pool.acquire()
        with self.assertLogs("product_pipeline.pool", level="WARNING"):
            await pool.close()


if __name__ == "__main__":
    unittest.main()
