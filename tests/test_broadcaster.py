"""Tests for snapshot building, caching and subscriptions."""

import asyncio
from unittest.mock import patch

import pytest
from conftest import report

from bustrack.models.eta import UnavailableReason
from bustrack.models.vehicle import Deactivate
from bustrack.services.broadcaster import SnapshotBroadcaster
from bustrack.services.engine import FleetEngine


class FakeMonotonic:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def broadcaster(engine: FleetEngine, clock, monotonic: FakeMonotonic) -> SnapshotBroadcaster:
    return SnapshotBroadcaster(
        engine.store,
        engine.eta_engine,
        publish_interval_seconds=3.0,
        clock=clock,
        monotonic=monotonic,
    )


class TestBuildSnapshot:
    def test_entries_pair_state_with_eta(self, engine: FleetEngine, broadcaster):
        engine.pipeline.ingest(report("V1", 500.0))

        snapshot = broadcaster.build_snapshot()

        assert snapshot.vehicle_ids == ["V1", "V2", "V3"]
        entry = snapshot.entry_for("V1")
        assert entry.eta.available is True
        assert entry.eta.computed_at == snapshot.timestamp
        assert entry.vehicle.version == 1

    def test_inactive_vehicles_excluded(self, engine: FleetEngine, broadcaster):
        engine.store.apply("V2", Deactivate())
        assert "V2" not in broadcaster.build_snapshot().vehicle_ids

    def test_sequence_increments(self, broadcaster):
        first = broadcaster.build_snapshot()
        second = broadcaster.build_snapshot()
        assert second.sequence == first.sequence + 1

    def test_projection_failure_isolated(self, engine: FleetEngine, broadcaster):
        engine.pipeline.ingest(report("V1", 500.0))
        engine.pipeline.ingest(report("V2", 1500.0))
        original = engine.eta_engine.project_state

        def failing(state, now=None):
            if state.vehicle_id == "V1":
                raise RuntimeError("boom")
            return original(state, now)

        with patch.object(engine.eta_engine, "project_state", side_effect=failing):
            snapshot = broadcaster.build_snapshot()

        v1 = snapshot.entry_for("V1")
        assert v1.eta.available is False
        assert v1.eta.unavailable_reason == UnavailableReason.PROJECTION_FAILED
        assert snapshot.entry_for("V2").eta.available is True


class TestGetSnapshot:
    """Pull reads are served from cache for one publish interval."""

    async def test_cached_within_interval(self, broadcaster, monotonic: FakeMonotonic):
        first = await broadcaster.get_snapshot()
        monotonic.now += 2.0
        assert await broadcaster.get_snapshot() is first

    async def test_rebuilt_after_interval(self, broadcaster, monotonic: FakeMonotonic):
        first = await broadcaster.get_snapshot()
        monotonic.now += 3.5
        second = await broadcaster.get_snapshot()
        assert second.sequence > first.sequence

    async def test_force_refresh(self, broadcaster):
        first = await broadcaster.get_snapshot()
        second = await broadcaster.get_snapshot(force_refresh=True)
        assert second.sequence > first.sequence

    async def test_concurrent_readers_build_once(self, broadcaster):
        with patch.object(
            broadcaster, "build_snapshot", wraps=broadcaster.build_snapshot
        ) as build:
            results = await asyncio.gather(*(broadcaster.get_snapshot() for _ in range(10)))

        assert build.call_count == 1
        assert all(result is results[0] for result in results)


class TestSubscribe:
    async def test_receives_published_snapshots(self, broadcaster):
        stream = broadcaster.subscribe()
        published = broadcaster.publish()

        received = await asyncio.wait_for(anext(stream), timeout=1)

        # Latest snapshot is delivered first
        assert received is published
        await stream.aclose()

    async def test_slow_consumer_gets_newest(self, broadcaster):
        broadcaster.publish()
        stream = broadcaster.subscribe()
        first = await asyncio.wait_for(anext(stream), timeout=1)

        broadcaster.publish()
        broadcaster.publish()
        newest = broadcaster.publish()

        received = await asyncio.wait_for(anext(stream), timeout=1)
        assert received is newest
        assert received.sequence > first.sequence
        await stream.aclose()

    async def test_cancelled_subscription_is_released(self, broadcaster):
        broadcaster.publish()
        stream = broadcaster.subscribe()
        await asyncio.wait_for(anext(stream), timeout=1)
        assert broadcaster.subscriber_count == 1

        await stream.aclose()

        assert broadcaster.subscriber_count == 0
        # Publishing with no subscribers is fine
        broadcaster.publish()

    async def test_cancelling_consumer_task_releases(self, broadcaster):
        received = []

        async def consume():
            async for snapshot in broadcaster.subscribe():
                received.append(snapshot)

        task = asyncio.create_task(consume())
        broadcaster.publish()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert broadcaster.subscriber_count == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert broadcaster.subscriber_count == 0

    async def test_stop_ends_subscriptions(self, broadcaster):
        received = []

        async def consume():
            async for snapshot in broadcaster.subscribe():
                received.append(snapshot)

        await broadcaster.start()
        task = asyncio.create_task(consume())
        await asyncio.sleep(0.05)
        await broadcaster.stop()

        await asyncio.wait_for(task, timeout=1)
        assert received
        assert broadcaster.subscriber_count == 0
        assert broadcaster.running is False

    async def test_subscription_after_stop_ends(self, broadcaster):
        await broadcaster.start()
        await asyncio.sleep(0.01)
        await broadcaster.stop()

        async def consume():
            return [snapshot async for snapshot in broadcaster.subscribe()]

        received = await asyncio.wait_for(consume(), timeout=1)

        assert [snapshot.sequence for snapshot in received] == [broadcaster.latest.sequence]
        assert broadcaster.subscriber_count == 0

    async def test_restart_resumes_streaming(self, broadcaster):
        await broadcaster.start()
        await broadcaster.stop()
        await broadcaster.start()

        stream = broadcaster.subscribe()
        first = await asyncio.wait_for(anext(stream), timeout=1)
        assert first is broadcaster.latest
        await stream.aclose()
        await broadcaster.stop()


class TestDiff:
    def test_full_diff_without_previous(self, broadcaster):
        snapshot = broadcaster.build_snapshot()
        diff = SnapshotBroadcaster.diff(None, snapshot)
        assert diff.from_sequence is None
        assert len(diff.changed) == len(snapshot.entries)

    def test_only_changed_vehicles(self, engine: FleetEngine, broadcaster):
        previous = broadcaster.build_snapshot()
        engine.pipeline.ingest(report("V1", 500.0))
        engine.store.apply("V3", Deactivate())
        current = broadcaster.build_snapshot()

        diff = SnapshotBroadcaster.diff(previous, current)

        assert [entry.vehicle.vehicle_id for entry in diff.changed] == ["V1"]
        assert diff.removed == ["V3"]
        assert diff.from_sequence == previous.sequence

    def test_unchanged_is_empty(self, broadcaster):
        previous = broadcaster.build_snapshot()
        assert SnapshotBroadcaster.diff(previous, broadcaster.build_snapshot()).is_empty
