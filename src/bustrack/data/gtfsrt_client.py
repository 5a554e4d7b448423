from datetime import UTC, datetime

import httpx
from google.transit import gtfs_realtime_pb2

from bustrack.models.realtime import (
    FeedHeader,
    Position,
    TripDescriptor,
    VehicleDescriptor,
    VehiclePosition,
    VehiclePositionsData,
)


class GTFSRTClient:
    """Async HTTP client for a GTFS-RT VehiclePositions feed.

    Usage:
        async with GTFSRTClient(feed_url, api_key) as client:
            positions = await client.fetch_vehicle_positions()
    """

    def __init__(self, feed_url: str, api_key: str | None = None, timeout: float = 30.0):
        """Initialize the client.

        Args:
            feed_url: VehiclePositions feed URL.
            api_key: Optional key sent in the ``apikey`` header.
            timeout: HTTP timeout in seconds.
        """
        self._feed_url = feed_url
        self._api_key = api_key
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GTFSRTClient":
        """Enter async context - create HTTP client."""
        headers = {}
        if self._api_key:
            headers["apikey"] = self._api_key
        self._client = httpx.AsyncClient(headers=headers, timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context - close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_vehicle_positions(self) -> VehiclePositionsData:
        """Fetch and parse the vehicle positions feed.

        Returns:
            VehiclePositionsData with parsed vehicle positions.

        Raises:
            RuntimeError: If client not initialized.
            httpx.HTTPError: If the HTTP request fails.
            google.protobuf.message.DecodeError: If the body is not a FeedMessage.
        """
        if not self._client:
            raise RuntimeError("Client not initialized - use 'async with'")

        response = await self._client.get(self._feed_url)
        response.raise_for_status()

        feed = gtfs_realtime_pb2.FeedMessage()
        feed.ParseFromString(response.content)

        return self._parse_vehicle_positions(feed)

    def _parse_vehicle_positions(self, feed: gtfs_realtime_pb2.FeedMessage) -> VehiclePositionsData:
        """Parse protobuf feed message into VehiclePositionsData model."""
        header = FeedHeader(
            gtfs_realtime_version=feed.header.gtfs_realtime_version,
            timestamp=feed.header.timestamp,
        )

        vehicles: list[VehiclePosition] = []
        for entity in feed.entity:
            if entity.HasField("vehicle"):
                vehicles.append(self._parse_vehicle_position(entity.vehicle))

        return VehiclePositionsData(
            header=header,
            vehicles=vehicles,
            fetched_at=datetime.now(UTC),
        )

    def _parse_vehicle_position(self, vp: gtfs_realtime_pb2.VehiclePosition) -> VehiclePosition:
        """Parse a single vehicle position entity."""
        trip = None
        if vp.HasField("trip"):
            trip = TripDescriptor(
                trip_id=vp.trip.trip_id or None,
                route_id=vp.trip.route_id or None,
            )

        vehicle = None
        if vp.HasField("vehicle"):
            vehicle = VehicleDescriptor(
                id=vp.vehicle.id or None,
                label=vp.vehicle.label or None,
            )

        position = None
        if vp.HasField("position"):
            # speed/bearing are optional: a stopped bus reports speed 0, not absent
            position = Position(
                latitude=vp.position.latitude,
                longitude=vp.position.longitude,
                bearing=vp.position.bearing if vp.position.HasField("bearing") else None,
                speed=vp.position.speed if vp.position.HasField("speed") else None,
            )

        return VehiclePosition(
            trip=trip,
            vehicle=vehicle,
            position=position,
            timestamp=vp.timestamp if vp.HasField("timestamp") else None,
        )
