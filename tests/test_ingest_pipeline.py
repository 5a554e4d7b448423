"""Tests for position report ingestion."""

import logging
import random
from datetime import timedelta

import pytest
from conftest import T0, FakeClock, report, simulated_feed

from bustrack.models.responses import RejectionReason
from bustrack.models.vehicle import MarkStale, PositionReport
from bustrack.services.engine import FleetEngine


class TestAccept:
    def test_accepts_valid_report(self, engine: FleetEngine):
        result = engine.pipeline.ingest(report("V1", 500.0))

        assert result.accepted is True
        assert result.vehicle_id == "V1"
        assert result.version == 1
        state = engine.store.get("V1")
        assert state.distance_along_m == pytest.approx(500.0, abs=0.5)
        assert state.last_stop_id == "A"

    def test_accepts_alias_field_names(self, engine: FleetEngine):
        raw = report("V1", 500.0)
        raw["latitude"] = raw.pop("lat")
        raw["lon"] = raw.pop("lng")
        raw["speed"] = raw.pop("speed_kmh")

        assert engine.pipeline.ingest(raw).accepted is True

    def test_accepts_position_report_instance(self, engine: FleetEngine):
        position = PositionReport.model_validate(report("V1", 500.0))
        assert engine.pipeline.ingest(position).accepted is True

    def test_naive_timestamp_treated_as_utc(self, engine: FleetEngine):
        raw = report("V1", 500.0)
        raw["timestamp"] = T0.replace(tzinfo=None).isoformat()

        assert engine.pipeline.ingest(raw).accepted is True
        assert engine.store.get("V1").last_report_at == T0

    def test_vehicle_id_whitespace_stripped(self, engine: FleetEngine):
        assert engine.pipeline.ingest(report(" V1 ", 500.0)).accepted is True


class TestReject:
    """Every rejection is a result with a reason, never an exception."""

    def test_unknown_vehicle(self, engine: FleetEngine):
        result = engine.pipeline.ingest(report("GHOST", 500.0))
        assert result.accepted is False
        assert result.reason == RejectionReason.UNKNOWN_VEHICLE
        assert "GHOST" not in engine.store

    def test_duplicate_delivery(self, engine: FleetEngine):
        assert engine.pipeline.ingest(report("V1", 500.0)).accepted
        result = engine.pipeline.ingest(report("V1", 500.0))
        assert result.reason == RejectionReason.OUT_OF_ORDER
        assert engine.store.get("V1").version == 1

    @pytest.mark.parametrize(
        "field, value",
        [
            ("lat", 91.0),
            ("lng", -181.0),
            ("lat", float("nan")),
            ("speed_kmh", -5.0),
            ("speed_kmh", 400.0),
            ("speed_kmh", float("inf")),
        ],
    )
    def test_implausible_values(self, engine: FleetEngine, field: str, value: float):
        raw = report("V1", 500.0)
        raw[field] = value

        result = engine.pipeline.ingest(raw)

        assert result.reason == RejectionReason.IMPLAUSIBLE_VALUE
        assert result.vehicle_id == "V1"
        assert engine.store.get("V1").version == 0

    def test_null_island_fix(self, engine: FleetEngine):
        raw = report("V1")
        raw["lat"] = 0.0
        raw["lng"] = 0.0
        assert engine.pipeline.ingest(raw).reason == RejectionReason.IMPLAUSIBLE_VALUE

    def test_future_timestamp(self, engine: FleetEngine):
        result = engine.pipeline.ingest(report("V1", 500.0, at=T0 + timedelta(minutes=5)))
        assert result.reason == RejectionReason.IMPLAUSIBLE_VALUE
        assert "future" in result.detail

    def test_malformed_report(self, engine: FleetEngine):
        result = engine.pipeline.ingest({"vehicle_id": "V1", "lat": "north"})

        assert result.reason == RejectionReason.IMPLAUSIBLE_VALUE
        assert result.vehicle_id == "V1"
        assert "lat" in result.detail
        assert "timestamp" in result.detail

    def test_empty_vehicle_id(self, engine: FleetEngine):
        result = engine.pipeline.ingest(report("   ", 500.0))
        assert result.reason == RejectionReason.IMPLAUSIBLE_VALUE


class TestBatchAndStats:
    def test_batch_isolates_rejections(self, engine: FleetEngine):
        results = engine.pipeline.ingest_batch(
            [report("V1", 500.0), report("GHOST", 500.0), report("V2", 1500.0)]
        )
        assert [r.accepted for r in results] == [True, False, True]

    def test_stats_count_by_reason(self, engine: FleetEngine):
        engine.pipeline.ingest(report("V1", 500.0))
        engine.pipeline.ingest(report("V1", 500.0))
        engine.pipeline.ingest(report("GHOST", 500.0))
        engine.pipeline.ingest(report("GHOST", 500.0))

        stats = engine.pipeline.stats()

        assert stats.accepted == 1
        assert stats.rejected[RejectionReason.UNKNOWN_VEHICLE] == 2
        assert stats.rejected[RejectionReason.OUT_OF_ORDER] == 1
        assert stats.total_rejected == 3


class TestRecovery:
    def test_stale_vehicle_back_in_service(
        self, engine: FleetEngine, clock: FakeClock, caplog: pytest.LogCaptureFixture
    ):
        engine.pipeline.ingest(report("V1", 500.0))
        state = engine.store.get("V1")
        engine.store.apply("V1", MarkStale(expected_last_seen_at=state.last_seen_at))

        with caplog.at_level(logging.INFO, logger="bustrack.services.ingest_pipeline"):
            result = engine.pipeline.ingest(report("V1", 600.0, at=clock.advance(90)))

        assert result.accepted is True
        assert engine.store.get("V1").stale is False
        assert "back in service" in caplog.text


class TestUnreliableDelivery:
    """Shuffled, duplicated and delayed delivery converges on in-order state."""

    def test_converges_to_in_order_state(self, registry, config):
        feed = simulated_feed(["V1", "V2"], steps=12)

        in_order = FleetEngine(registry, config, clock=FakeClock())
        in_order.pipeline.ingest_batch(feed)

        rng = random.Random(42)
        delivered = feed + rng.sample(feed, 8)
        rng.shuffle(delivered)
        unreliable = FleetEngine(registry, config, clock=FakeClock())
        results = unreliable.pipeline.ingest_batch(delivered)

        assert sum(r.accepted for r in results) <= len(feed)
        for vehicle_id in ("V1", "V2"):
            expected = in_order.store.get(vehicle_id)
            actual = unreliable.store.get(vehicle_id)
            assert actual.ordering_key == expected.ordering_key == 12
            assert actual.position == expected.position
            assert actual.distance_along_m == pytest.approx(expected.distance_along_m)
