"""Tests for app.services.audit_pipeline.concurrency."""

import asyncio

import pytest

from app.services.audit_pipeline.concurrency import ConcurrencyLimiter


def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        ConcurrencyLimiter(0)


@pytest.mark.asyncio
class TestConcurrencyLimiter:
    async def test_never_exceeds_limit(self):
        limiter = ConcurrencyLimiter(3)
        running = 0
        observed = 0

        async def _task() -> None:
            nonlocal running, observed
            running += 1
            observed = max(observed, running)
            for _ in range(3):
                await asyncio.sleep(0)
            running -= 1

        await asyncio.gather(*(limiter.add(_task) for _ in range(10)))

        assert observed == 3
        assert limiter.peak == 3
        assert limiter.running == 0
        assert limiter.pending == 0

    async def test_starts_in_submission_order(self):
        limiter = ConcurrencyLimiter(2)
        started: list[int] = []

        def _make(n: int):
            async def _task() -> int:
                started.append(n)
                await asyncio.sleep(0)
                return n

            return _task

        results = await asyncio.gather(*(limiter.add(_make(n)) for n in range(6)))

        assert started == list(range(6))
        assert results == list(range(6))

    async def test_exception_reaches_only_its_future(self):
        limiter = ConcurrencyLimiter(2)

        async def _ok() -> str:
            return "ok"

        async def _boom() -> str:
            raise RuntimeError("boom")

        first = limiter.add(_ok)
        failing = limiter.add(_boom)
        last = limiter.add(_ok)

        assert await first == "ok"
        with pytest.raises(RuntimeError, match="boom"):
            await failing
        assert await last == "ok"

    async def test_pending_count_while_saturated(self):
        limiter = ConcurrencyLimiter(1)
        gate = asyncio.Event()

        async def _blocked() -> None:
            await gate.wait()

        futures = [limiter.add(_blocked) for _ in range(3)]
        await asyncio.sleep(0)

        assert limiter.running == 1
        assert limiter.pending == 2

        gate.set()
        await asyncio.gather(*futures)
        assert limiter.running == 0
