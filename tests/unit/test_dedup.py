"""Tests for feedbacker/engine/dedup.py."""

import asyncio

import pytest

from feedbacker.engine.dedup import DeliveryDeduplicator


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestDeliveryDeduplicator:
    """Tests for DeliveryDeduplicator."""

    def test_mark_once(self, clock):
        """Should accept an id once within the window."""
        dedup = DeliveryDeduplicator(ttl_seconds=60, clock=clock)

        assert dedup.mark("d-1") is True
        assert dedup.mark("d-1") is False
        assert "d-1" in dedup

    def test_expired_id_accepted_again(self, clock):
        """Should treat an id as new once its window has passed."""
        dedup = DeliveryDeduplicator(ttl_seconds=60, clock=clock)
        dedup.mark("d-1")

        clock.now += 61

        assert "d-1" not in dedup
        assert dedup.mark("d-1") is True

    def test_forget(self, clock):
        """Should allow a forgotten id to be processed again."""
        dedup = DeliveryDeduplicator(ttl_seconds=60, clock=clock)
        dedup.mark("d-1")

        dedup.forget("d-1")
        dedup.forget("never-seen")

        assert dedup.mark("d-1") is True

    def test_prune(self, clock):
        """Should remove only expired ids."""
        dedup = DeliveryDeduplicator(ttl_seconds=60, clock=clock)
        dedup.mark("old")
        clock.now += 30
        dedup.mark("new")
        clock.now += 31

        assert dedup.prune() == 1
        assert len(dedup) == 1
        assert "new" in dedup

    def test_bounded(self, clock):
        """Should evict the oldest ids beyond max_entries."""
        dedup = DeliveryDeduplicator(ttl_seconds=60, max_entries=2, clock=clock)
        for delivery_id in ("a", "b", "c"):
            dedup.mark(delivery_id)

        assert len(dedup) == 2
        assert "a" not in dedup
        assert "c" in dedup

    @pytest.mark.asyncio
    async def test_pruner_task(self, clock):
        """Should prune in the background until cancelled."""
        dedup = DeliveryDeduplicator(ttl_seconds=60, clock=clock)
        dedup.mark("d-1")
        clock.now += 120

        task = asyncio.create_task(dedup.run_pruner(0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(dedup) == 0
