"""Fleet snapshot publishing.

Snapshots are built on a fixed cadence, independent of how often vehicles
report, and handed to pull readers through a TTL cache and to push
subscribers through per-subscriber queues of size one.
"""

import asyncio
import itertools
import logging
import time
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime

from bustrack.data.cache import TTLCache
from bustrack.models.eta import ETAResult, UnavailableReason
from bustrack.models.snapshot import FleetEntry, FleetSnapshot, SnapshotDiff
from bustrack.services.eta_engine import ETAEngine
from bustrack.services.state_store import VehicleStateStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _offer(queue: "asyncio.Queue[FleetSnapshot | None]", item: FleetSnapshot | None) -> None:
    """Put without blocking, replacing whatever the consumer has not taken yet."""
    while True:
        try:
            queue.put_nowait(item)
            return
        except asyncio.QueueFull:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass


class SnapshotBroadcaster:
    """Builds and distributes point-in-time fleet snapshots."""

    def __init__(
        self,
        store: VehicleStateStore,
        eta_engine: ETAEngine,
        *,
        publish_interval_seconds: float = 3.0,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._eta = eta_engine
        self._interval = publish_interval_seconds
        self._clock = clock
        self._cache = TTLCache[FleetSnapshot](ttl=publish_interval_seconds, clock=monotonic)
        self._sequence = itertools.count(1)
        self._subscribers: set[asyncio.Queue[FleetSnapshot | None]] = set()
        self._latest: FleetSnapshot | None = None
        self._task: asyncio.Task | None = None
        self._stopped = False

    @property
    def latest(self) -> FleetSnapshot | None:
        """Most recently published snapshot."""
        return self._latest

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def build_snapshot(self) -> FleetSnapshot:
        """Build a snapshot of every active vehicle now.

        Each entry's ETA is projected from the same state record the entry
        shows. A vehicle whose projection fails is marked unavailable; the
        rest of the snapshot is unaffected.
        """
        now = self._clock()
        entries: list[FleetEntry] = []
        for state in self._store.list():
            if not state.is_active:
                continue
            try:
                eta = self._eta.project_state(state, now)
            except Exception:
                logger.exception(f"ETA projection failed for vehicle {state.vehicle_id}")
                eta = ETAResult.unavailable(
                    state.vehicle_id,
                    UnavailableReason.PROJECTION_FAILED,
                    now,
                    route_id=state.route_id,
                )
            entries.append(FleetEntry(vehicle=state, eta=eta))
        return FleetSnapshot(timestamp=now, sequence=next(self._sequence), entries=entries)

    async def get_snapshot(self, force_refresh: bool = False) -> FleetSnapshot:
        """Pull the current snapshot.

        Served from cache for up to one publish interval, so many concurrent
        pollers cost one build per interval.

        Args:
            force_refresh: If True, bypass cache and build a fresh snapshot.
        """
        if not force_refresh:
            cached = self._cache.get()
            if cached is not None:
                return cached

        async with self._cache.lock:
            # Double-check cache after acquiring lock
            if not force_refresh:
                cached = self._cache.get()
                if cached is not None:
                    return cached
            snapshot = self.build_snapshot()
            self._cache.set(snapshot)
            return snapshot

    def publish(self) -> FleetSnapshot:
        """Build a snapshot and push it to every subscriber."""
        snapshot = self.build_snapshot()
        self._latest = snapshot
        self._cache.set(snapshot)
        for queue in list(self._subscribers):
            _offer(queue, snapshot)
        logger.debug(
            f"Published snapshot {snapshot.sequence} with {len(snapshot.entries)} vehicles "
            f"to {len(self._subscribers)} subscribers"
        )
        return snapshot

    async def subscribe(self) -> AsyncIterator[FleetSnapshot]:
        """Stream published snapshots.

        Nothing is registered until iteration starts; every call is an
        independent subscription that begins with the latest published
        snapshot. A consumer slower than the publish cadence skips straight
        to the newest snapshot. Closing the iterator (``aclose()``, ``break``
        or task cancellation) releases the subscription. Iteration ends when
        the broadcaster stops; a subscription opened after :meth:`stop` gets
        the latest snapshot, if any, and ends. One opened before :meth:`start`
        waits for the first publish.
        """
        if self._stopped:
            if self._latest is not None:
                yield self._latest
            return

        queue: asyncio.Queue[FleetSnapshot | None] = asyncio.Queue(maxsize=1)
        if self._latest is not None:
            queue.put_nowait(self._latest)
        self._subscribers.add(queue)
        try:
            while True:
                snapshot = await queue.get()
                if snapshot is None:
                    return
                yield snapshot
        finally:
            self._subscribers.discard(queue)

    @staticmethod
    def diff(previous: FleetSnapshot | None, current: FleetSnapshot) -> SnapshotDiff:
        """Entries that are new or whose vehicle state version moved since ``previous``."""
        if previous is None:
            return SnapshotDiff(
                to_sequence=current.sequence,
                timestamp=current.timestamp,
                changed=list(current.entries),
            )

        before = {entry.vehicle.vehicle_id: entry.vehicle.version for entry in previous.entries}
        changed = [
            entry
            for entry in current.entries
            if before.get(entry.vehicle.vehicle_id) != entry.vehicle.version
        ]
        current_ids = {entry.vehicle.vehicle_id for entry in current.entries}
        removed = sorted(vehicle_id for vehicle_id in before if vehicle_id not in current_ids)
        return SnapshotDiff(
            from_sequence=previous.sequence,
            to_sequence=current.sequence,
            timestamp=current.timestamp,
            changed=changed,
            removed=removed,
        )

    async def start(self) -> None:
        """Start publishing every ``publish_interval_seconds``."""
        if self.running:
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run(), name="snapshot-broadcaster")
        logger.info(f"Snapshot broadcaster started (every {self._interval}s)")

    async def stop(self) -> None:
        """Stop publishing and end every open subscription."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._stopped = True
        for queue in list(self._subscribers):
            _offer(queue, None)
        logger.info("Snapshot broadcaster stopped")

    async def _run(self) -> None:
        while True:
            try:
                self.publish()
            except Exception:
                logger.exception("Snapshot publish failed")
            await asyncio.sleep(self._interval)
