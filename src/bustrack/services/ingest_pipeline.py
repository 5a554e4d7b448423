"""Position report ingestion: validate, order-check, apply."""

import logging
import math
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError

from bustrack.exceptions import ImplausibleValueError, IngestRejectedError, UnknownVehicleError
from bustrack.models.responses import IngestResult, IngestStats, RejectionReason
from bustrack.models.vehicle import PositionReport
from bustrack.services.geo_index import GeoIndex
from bustrack.services.state_store import VehicleStateStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class IngestPipeline:
    """Accepts position reports from vehicles and feeds.

    Reports are dropped, never retried, when they fail validation, name an
    unregistered vehicle, or are not newer than stored state. Redelivery of
    the same report is therefore harmless: it is rejected as out of order.
    """

    def __init__(
        self,
        store: VehicleStateStore,
        geo_index: GeoIndex,
        *,
        max_speed_kmh: float = 150.0,
        max_future_skew_seconds: float = 30.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._geo = geo_index
        self._max_speed_kmh = max_speed_kmh
        self._max_future_skew = timedelta(seconds=max_future_skew_seconds)
        self._clock = clock
        self._stats_lock = threading.Lock()
        self._accepted = 0
        self._rejected: dict[RejectionReason, int] = {}

    def ingest(self, raw: PositionReport | Mapping[str, Any]) -> IngestResult:
        """Ingest one report.

        Args:
            raw: A PositionReport, or a mapping with report fields
                (``lat``/``latitude``, ``lng``/``lon``/``longitude`` accepted).

        Returns:
            IngestResult; rejections carry a reason instead of raising.
        """
        try:
            report = self._validate(raw)
            previous = self._store.get(report.vehicle_id)
            if previous is None:
                raise UnknownVehicleError(
                    f"Vehicle {report.vehicle_id} is not registered", vehicle_id=report.vehicle_id
                )
            location = None
            if previous.route_id is not None:
                location = self._geo.locate(
                    previous.route_id, report.lat, report.lng, hint_m=previous.distance_along_m
                )
            state = self._store.upsert(report, location)
        except IngestRejectedError as e:
            self._count_rejected(e.reason)
            vehicle = e.vehicle_id or "<unknown>"
            logger.debug(f"Rejected report for {vehicle}: {e.reason.value}: {e}")
            return IngestResult.rejected(e.reason, str(e), vehicle_id=e.vehicle_id)

        self._count_accepted()
        if previous.stale:
            logger.info(f"Vehicle {state.vehicle_id} reporting again, back in service")
        return IngestResult.ok(state)

    def ingest_batch(
        self, raws: Iterable[PositionReport | Mapping[str, Any]]
    ) -> list[IngestResult]:
        """Ingest reports one by one; a rejected report never affects the others."""
        return [self.ingest(raw) for raw in raws]

    def stats(self) -> IngestStats:
        with self._stats_lock:
            return IngestStats(accepted=self._accepted, rejected=dict(self._rejected))

    def _count_accepted(self) -> None:
        with self._stats_lock:
            self._accepted += 1

    def _count_rejected(self, reason: RejectionReason) -> None:
        with self._stats_lock:
            self._rejected[reason] = self._rejected.get(reason, 0) + 1

    def _validate(self, raw: PositionReport | Mapping[str, Any]) -> PositionReport:
        """Parse and sanity-check a report.

        Raises:
            ImplausibleValueError: On schema errors or implausible values.
        """
        if isinstance(raw, PositionReport):
            report = raw
        else:
            vehicle_id = raw.get("vehicle_id") if isinstance(raw, Mapping) else None
            try:
                report = PositionReport.model_validate(raw)
            except ValidationError as e:
                fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
                raise ImplausibleValueError(
                    f"Malformed report ({fields})",
                    vehicle_id=str(vehicle_id) if vehicle_id is not None else None,
                ) from e

        def reject(message: str) -> ImplausibleValueError:
            return ImplausibleValueError(message, vehicle_id=report.vehicle_id)

        if not (math.isfinite(report.lat) and math.isfinite(report.lng)):
            raise reject("Position is not a finite number")
        if not (-90.0 <= report.lat <= 90.0 and -180.0 <= report.lng <= 180.0):
            raise reject(f"Position out of range: ({report.lat}, {report.lng})")
        if report.lat == 0.0 and report.lng == 0.0:
            raise reject("Position is the (0, 0) null fix")
        if report.speed_kmh is not None:
            if not math.isfinite(report.speed_kmh) or report.speed_kmh < 0:
                raise reject(f"Speed must be non-negative, got {report.speed_kmh}")
            if report.speed_kmh > self._max_speed_kmh:
                raise reject(
                    f"Speed {report.speed_kmh} km/h above ceiling {self._max_speed_kmh} km/h"
                )
        if report.heading_deg is not None and not math.isfinite(report.heading_deg):
            raise reject("Heading is not a finite number")
        if report.timestamp > self._clock() + self._max_future_skew:
            raise reject(f"Report timestamp {report.timestamp.isoformat()} is in the future")
        return report
