"""Composition root: wires the store, pipeline, projection and publishers."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from bustrack.data.config import FleetConfig
from bustrack.data.registry import load_registry
from bustrack.models.registry import FleetRegistry
from bustrack.models.vehicle import Deactivate
from bustrack.services.broadcaster import SnapshotBroadcaster
from bustrack.services.eta_engine import ETAEngine
from bustrack.services.feed_poller import FeedPoller
from bustrack.services.geo_index import GeoIndex
from bustrack.services.ingest_pipeline import IngestPipeline
from bustrack.services.staleness_monitor import StalenessMonitor
from bustrack.services.state_store import VehicleStateStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FleetEngine:
    """Live fleet position/ETA engine.

    Owns every component and the background tasks: snapshot publisher,
    staleness sweep, and, when a feed URL is configured, the GTFS-RT poller.
    """

    def __init__(
        self,
        registry: FleetRegistry,
        config: FleetConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config or FleetConfig()
        config = self.config

        self.geo_index = GeoIndex(registry.routes.values())
        self.store = VehicleStateStore(
            shards=config.lock_shards,
            smoothing_alpha=config.speed_smoothing_alpha,
            max_speed_kmh=config.max_speed_kmh,
            clock=clock,
        )
        self.pipeline = IngestPipeline(
            self.store,
            self.geo_index,
            max_speed_kmh=config.max_speed_kmh,
            max_future_skew_seconds=config.max_future_skew_seconds,
            clock=clock,
        )
        self.eta_engine = ETAEngine(
            self.store,
            self.geo_index,
            min_moving_speed_kmh=config.min_moving_speed_kmh,
            default_route_speed_kmh=config.default_route_speed_kmh,
            off_route_threshold_m=config.off_route_threshold_m,
            staleness_threshold_seconds=config.staleness_threshold_seconds,
            clock=clock,
        )
        self.broadcaster = SnapshotBroadcaster(
            self.store,
            self.eta_engine,
            publish_interval_seconds=config.publish_interval_seconds,
            clock=clock,
        )
        self.monitor = StalenessMonitor(
            self.store,
            staleness_threshold_seconds=config.staleness_threshold_seconds,
            sweep_interval_seconds=config.sweep_interval_seconds,
            clock=clock,
        )
        self.poller: FeedPoller | None = None
        if config.feed_url:
            self.poller = FeedPoller(
                self.pipeline,
                config.feed_url,
                api_key=config.api_key,
                poll_interval_seconds=config.feed_poll_interval_seconds,
                max_backoff_seconds=config.feed_max_backoff_seconds,
            )

        for registration in registry.vehicles:
            self.store.register(registration)
        self._running = False

    @classmethod
    async def from_database(cls, config: FleetConfig) -> "FleetEngine":
        """Build an engine from the registry database.

        Raises:
            RegistryUnavailableError: If the registry cannot be loaded.
        """
        registry = await load_registry(config.db_path)
        return cls(registry, config)

    @property
    def running(self) -> bool:
        return self._running

    def apply_registry(self, registry: FleetRegistry) -> None:
        """Apply refreshed reference data.

        Routes are swapped as a whole. Listed vehicles are registered or
        updated; vehicles no longer listed are deactivated, never removed.
        """
        self.geo_index.replace(registry.routes.values())
        listed = set()
        for registration in registry.vehicles:
            self.store.register(registration)
            listed.add(registration.vehicle_id)
        for vehicle_id in self.store.vehicle_ids():
            if vehicle_id not in listed:
                self.store.apply(vehicle_id, Deactivate())
        logger.info(
            f"Registry applied: {len(registry.routes)} routes, {len(listed)} vehicles listed"
        )

    async def refresh_registry(self) -> None:
        """Reload the registry database and apply it.

        Raises:
            RegistryUnavailableError: If the registry cannot be loaded; the
                current registry stays in effect.
        """
        self.apply_registry(await load_registry(self.config.db_path))

    async def start(self) -> None:
        """Start background tasks."""
        if self._running:
            return
        await self.broadcaster.start()
        await self.monitor.start()
        if self.poller is not None:
            await self.poller.start()
        self._running = True
        logger.info(f"Fleet engine started with {len(self.store)} vehicles")

    async def stop(self) -> None:
        """Stop background tasks and end open subscriptions."""
        if self.poller is not None:
            await self.poller.stop()
        await self.monitor.stop()
        await self.broadcaster.stop()
        self._running = False
        logger.info("Fleet engine stopped")
