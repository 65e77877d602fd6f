"""Tests for RequestDeduplicator — single flight, shared outcomes, cancellation."""

from __future__ import annotations

import asyncio

import pytest

from alltime.errors import ReentrantRequestError
from alltime.freshness.dedup import RequestDeduplicator, producer_of


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self, dedup: RequestDeduplicator) -> None:
        calls = 0
        gate = asyncio.Event()
        payload = {"events": [1, 2, 3]}

        async def producer():
            nonlocal calls
            calls += 1
            await gate.wait()
            return payload

        tasks = [asyncio.create_task(dedup.run("events", producer)) for _ in range(5)]
        await _settle()
        assert dedup.subscriber_count("events") == 5
        assert dedup.in_flight_count == 1

        gate.set()
        results = await asyncio.gather(*tasks)
        assert calls == 1
        assert all(r is payload for r in results)

    @pytest.mark.asyncio
    async def test_failure_is_the_same_exception_instance(
        self, dedup: RequestDeduplicator
    ) -> None:
        gate = asyncio.Event()

        async def producer():
            await gate.wait()
            raise ValueError("backend down")

        tasks = [asyncio.create_task(dedup.run("events", producer)) for _ in range(3)]
        await _settle()
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, ValueError) for r in results)
        assert results[0] is results[1] is results[2]

    @pytest.mark.asyncio
    async def test_failure_is_not_replayed(self, dedup: RequestDeduplicator) -> None:
        calls = 0

        async def producer():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("offline")
            return "ok"

        with pytest.raises(ConnectionError):
            await dedup.run("events", producer)
        assert await dedup.run("events", producer) == "ok"
        assert calls == 2

    @pytest.mark.asyncio
    async def test_entry_removed_once_settled(self, dedup: RequestDeduplicator) -> None:
        calls = 0

        async def producer():
            nonlocal calls
            calls += 1
            return calls

        assert await dedup.run("events", producer) == 1
        assert not dedup.is_in_flight("events")
        assert await dedup.run("events", producer) == 2

    @pytest.mark.asyncio
    async def test_different_keys_run_independently(self, dedup: RequestDeduplicator) -> None:
        async def fetch(value):
            await asyncio.sleep(0)
            return value

        a, b = await asyncio.gather(
            dedup.run("a", producer_of(fetch, "A")),
            dedup.run("b", producer_of(fetch, "B")),
        )
        assert (a, b) == ("A", "B")


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelling_one_caller_keeps_the_request(
        self, dedup: RequestDeduplicator
    ) -> None:
        gate = asyncio.Event()
        producer_cancelled = False

        async def producer():
            nonlocal producer_cancelled
            try:
                await gate.wait()
            except asyncio.CancelledError:
                producer_cancelled = True
                raise
            return "summary"

        first = asyncio.create_task(dedup.run("summary", producer))
        second = asyncio.create_task(dedup.run("summary", producer))
        await _settle()

        first.cancel()
        await _settle()
        assert dedup.is_in_flight("summary")
        assert dedup.subscriber_count("summary") == 1

        gate.set()
        assert await second == "summary"
        assert not producer_cancelled
        with pytest.raises(asyncio.CancelledError):
            await first

    @pytest.mark.asyncio
    async def test_last_caller_cancelling_cancels_the_request(
        self, dedup: RequestDeduplicator
    ) -> None:
        started = asyncio.Event()
        producer_cancelled = False

        async def producer():
            nonlocal producer_cancelled
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                producer_cancelled = True
                raise

        caller = asyncio.create_task(dedup.run("summary", producer))
        await started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        await _settle()

        assert producer_cancelled
        assert not dedup.is_in_flight("summary")

    @pytest.mark.asyncio
    async def test_cancel_all(self, dedup: RequestDeduplicator) -> None:
        async def producer():
            await asyncio.Event().wait()

        tasks = [
            asyncio.create_task(dedup.run(key, producer)) for key in ("a", "b", "a")
        ]
        await _settle()
        assert dedup.cancel_all() == 2
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, asyncio.CancelledError) for r in results)
        assert dedup.in_flight_count == 0


class TestReentrancy:
    @pytest.mark.asyncio
    async def test_producer_requesting_its_own_key_fails_fast(
        self, dedup: RequestDeduplicator
    ) -> None:
        async def producer():
            return await dedup.run("summary", producer)

        with pytest.raises(ReentrantRequestError) as exc_info:
            await asyncio.wait_for(dedup.run("summary", producer), timeout=1)
        assert exc_info.value.key == "summary"
        assert not dedup.is_in_flight("summary")

    @pytest.mark.asyncio
    async def test_nested_request_for_another_key_is_allowed(
        self, dedup: RequestDeduplicator
    ) -> None:
        async def inner():
            return 1

        async def outer():
            return await dedup.run("inner", inner) + 1

        assert await dedup.run("outer", outer) == 2

    @pytest.mark.asyncio
    async def test_same_key_from_unrelated_task_joins(self, dedup: RequestDeduplicator) -> None:
        gate = asyncio.Event()
        calls = 0

        async def producer():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "v"

        first = asyncio.create_task(dedup.run("k", producer))
        await _settle()
        second = asyncio.create_task(dedup.run("k", producer))
        await _settle()
        gate.set()
        assert await asyncio.gather(first, second) == ["v", "v"]
        assert calls == 1
