"""Background sweep marking silent vehicles out-of-service."""

import asyncio
import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from bustrack.models.vehicle import MarkStale
from bustrack.services.state_store import VehicleStateStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StalenessMonitor:
    """Per-vehicle state machine: active -> stale on silence -> active on report.

    The sweep is the only place the engine itself takes a vehicle out of
    service. The transition back happens in the store when the next valid
    report is accepted.
    """

    def __init__(
        self,
        store: VehicleStateStore,
        *,
        staleness_threshold_seconds: float = 60.0,
        sweep_interval_seconds: float = 10.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._threshold = timedelta(seconds=staleness_threshold_seconds)
        self._interval = sweep_interval_seconds
        self._clock = clock
        self._sweep_lock = threading.Lock()
        self._task: asyncio.Task | None = None
        self._transitions = 0

    @property
    def transitions(self) -> int:
        """Total vehicles marked stale since startup."""
        return self._transitions

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> list[str]:
        """Mark every active vehicle silent for longer than the threshold as stale.

        The write is a compare-and-set on the vehicle's last-seen time, so a
        report accepted between the read and the write keeps the vehicle
        active. Sweeps are serialized; each stale period is counted once.

        Returns:
            Ids of vehicles that became stale in this sweep.
        """
        with self._sweep_lock:
            now = self._clock()
            marked: list[str] = []
            for state in self._store.list():
                if state.stale or not state.is_active:
                    continue
                baseline = state.last_seen_at or state.registered_at
                if baseline is None or now - baseline <= self._threshold:
                    continue
                updated = self._store.apply(
                    state.vehicle_id, MarkStale(expected_last_seen_at=state.last_seen_at)
                )
                if updated.stale and updated.version != state.version:
                    marked.append(state.vehicle_id)
                    silent_for = (now - baseline).total_seconds()
                    logger.info(
                        f"Vehicle {state.vehicle_id} out of service: "
                        f"no report for {silent_for:.0f}s"
                    )
            self._transitions += len(marked)
            return marked

    async def start(self) -> None:
        """Start sweeping every ``sweep_interval_seconds``."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="staleness-monitor")
        logger.info(
            f"Staleness monitor started (threshold {self._threshold.total_seconds():.0f}s, "
            f"every {self._interval}s)"
        )

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Staleness sweep failed")
