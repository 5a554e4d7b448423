"""GTFS-RT VehiclePositions poller.

Fetches the feed on a fixed interval and forwards every vehicle position to
the ingest pipeline. Retry and backoff live here, upstream of ingest: a
failed fetch doubles the delay before the next attempt, up to a ceiling.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
from google.protobuf.message import DecodeError

from bustrack.data.gtfsrt_client import GTFSRTClient
from bustrack.models.realtime import VehiclePositionsData
from bustrack.models.responses import IngestResult
from bustrack.services.ingest_pipeline import IngestPipeline

logger = logging.getLogger(__name__)

# m/s -> km/h
MPS_TO_KMH = 3.6


def to_position_reports(data: VehiclePositionsData) -> list[dict[str, Any]]:
    """Convert feed entities into raw position reports for ingest.

    Entities lacking a vehicle id, a position or a timestamp are skipped,
    as are entities whose timestamp is not a valid epoch second (a feed
    sending milliseconds, say). One bad entity never costs the others.
    The entity timestamp is the ordering key, falling back to the header's.
    Values are passed through unvalidated; the pipeline rejects bad ones.
    """
    reports: list[dict[str, Any]] = []
    for vp in data.vehicles:
        if vp.vehicle is None or not vp.vehicle.id or vp.position is None:
            continue
        timestamp = vp.timestamp or data.header.timestamp
        if not timestamp:
            continue
        try:
            reported_at = datetime.fromtimestamp(timestamp, UTC)
        except (ValueError, OverflowError, OSError) as e:
            logger.warning(f"Skipping vehicle {vp.vehicle.id}: bad timestamp {timestamp}: {e}")
            continue
        reports.append(
            {
                "vehicle_id": vp.vehicle.id,
                "lat": vp.position.latitude,
                "lng": vp.position.longitude,
                "speed_kmh": (
                    vp.position.speed * MPS_TO_KMH if vp.position.speed is not None else None
                ),
                "heading_deg": vp.position.bearing,
                "timestamp": reported_at,
            }
        )
    return reports


class FeedPoller:
    """Background task polling one VehiclePositions feed into the pipeline."""

    def __init__(
        self,
        pipeline: IngestPipeline,
        feed_url: str,
        *,
        api_key: str | None = None,
        poll_interval_seconds: float = 15.0,
        max_backoff_seconds: float = 300.0,
        client_factory: Callable[[str, str | None], GTFSRTClient] = GTFSRTClient,
    ) -> None:
        self._pipeline = pipeline
        self._feed_url = feed_url
        self._api_key = api_key
        self._interval = poll_interval_seconds
        self._max_backoff = max_backoff_seconds
        self._client_factory = client_factory
        self._task: asyncio.Task | None = None
        self._consecutive_failures = 0
        self._last_success_at: datetime | None = None

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_success_at(self) -> datetime | None:
        return self._last_success_at

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_delay(self) -> float:
        """Seconds until the next poll given the current failure streak."""
        if self._consecutive_failures == 0:
            return self._interval
        return min(self._max_backoff, self._interval * 2**self._consecutive_failures)

    async def poll_once(self) -> list[IngestResult]:
        """Fetch the feed once and ingest every position in it.

        Raises:
            httpx.HTTPError: If the fetch fails.
            DecodeError: If the response is not a GTFS-RT FeedMessage.
        """
        async with self._client_factory(self._feed_url, self._api_key) as client:
            data = await client.fetch_vehicle_positions()

        results = self._pipeline.ingest_batch(to_position_reports(data))
        accepted = sum(1 for result in results if result.accepted)
        logger.debug(f"Feed poll: {accepted}/{len(results)} positions accepted")
        self._last_success_at = datetime.now(UTC)
        return results

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="feed-poller")
        logger.info(f"Polling {self._feed_url} every {self._interval}s")

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
            try:
                await self.poll_once()
                self._consecutive_failures = 0
            except (httpx.HTTPError, DecodeError) as e:
                self._consecutive_failures += 1
                logger.warning(
                    f"Feed poll failed ({self._consecutive_failures} in a row), "
                    f"retrying in {self.next_delay():.0f}s: {e}"
                )
            except Exception:
                self._consecutive_failures += 1
                logger.exception(
                    f"Feed poll crashed ({self._consecutive_failures} in a row), "
                    f"retrying in {self.next_delay():.0f}s"
                )
            await asyncio.sleep(self.next_delay())
