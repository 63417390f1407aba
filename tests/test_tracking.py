"""Unit tests for the position sampler, ETA derivation and tracking sessions."""

from datetime import datetime, timedelta, timezone

import pytest

from roadside.domain.distance import haversine_km
from roadside.domain.entities import Coordinate, ServiceRequest
from roadside.domain.enums import RequestStatus
from roadside.domain.errors import StaleSample
from roadside.domain.tracking import PositionSample, PositionSampler
from roadside.services.tracking import TrackingRegistry

T0 = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)
# ~2 km north of the second sample
CUSTOMER = Coordinate(5.619, -0.181)


def _sample(lat: float, lng: float, seconds: float) -> PositionSample:
    return PositionSample(lat, lng, T0 + timedelta(seconds=seconds))


class TestPositionSampler:
    def test_no_samples_is_calculating(self):
        estimate = PositionSampler(CUSTOMER).estimate()
        assert estimate.is_calculating
        assert estimate.eta_text == "calculating"
        assert estimate.distance_km is None

    def test_single_sample_has_distance_but_no_eta(self):
        sampler = PositionSampler(CUSTOMER)
        sampler.record(_sample(5.60, -0.18, 0))
        estimate = sampler.estimate()
        assert estimate.distance_km == pytest.approx(
            haversine_km(5.60, -0.18, CUSTOMER.latitude, CUSTOMER.longitude)
        )
        assert estimate.is_calculating

    def test_speed_and_eta_from_two_samples(self):
        sampler = PositionSampler(CUSTOMER)
        sampler.record(_sample(5.60, -0.18, 0))
        sampler.record(_sample(5.601, -0.181, 30))

        moved = haversine_km(5.60, -0.18, 5.601, -0.181)
        expected_speed = moved / (30 / 3600)
        estimate = sampler.estimate(now=T0 + timedelta(seconds=30))

        assert estimate.speed_kmh == pytest.approx(expected_speed)
        assert 15.0 < estimate.speed_kmh < 20.0
        assert estimate.distance_km == pytest.approx(2.0, abs=0.05)
        assert estimate.eta_minutes == pytest.approx(
            estimate.distance_km / estimate.speed_kmh * 60
        )
        assert estimate.eta_minutes > 0
        assert estimate.eta_text.endswith("min")

    def test_bearing_points_at_customer(self):
        sampler = PositionSampler(CUSTOMER)
        sampler.record(_sample(5.601, -0.181, 0))
        # customer is due north
        assert sampler.estimate().bearing_deg == pytest.approx(0.0, abs=0.01)

    def test_jitter_is_not_retained(self):
        sampler = PositionSampler(CUSTOMER)
        assert sampler.record(_sample(5.60, -0.18, 0))
        assert not sampler.record(_sample(5.60005, -0.18005, 10))
        assert len(sampler.trail()) == 1
        assert sampler.speed_kmh() is None

    def test_non_increasing_timestamp_is_stale(self):
        sampler = PositionSampler(CUSTOMER)
        sampler.record(_sample(5.60, -0.18, 10))
        with pytest.raises(StaleSample):
            sampler.record(_sample(5.61, -0.18, 10))
        with pytest.raises(StaleSample):
            sampler.record(_sample(5.61, -0.18, 5))
        assert len(sampler.trail()) == 1

    def test_history_keeps_last_fifteen(self):
        sampler = PositionSampler(CUSTOMER, history_size=15)
        for i in range(20):
            sampler.record(_sample(5.60 + i * 0.001, -0.18, i * 10))
        trail = sampler.trail()
        assert len(trail) == 15
        assert trail[0].latitude == pytest.approx(5.605)
        assert trail[-1].latitude == pytest.approx(5.619)

    def test_stationary_too_long_becomes_calculating(self):
        sampler = PositionSampler(CUSTOMER, stale_after=timedelta(seconds=120))
        sampler.record(_sample(5.60, -0.18, 0))
        sampler.record(_sample(5.601, -0.181, 30))
        assert not sampler.estimate(now=T0 + timedelta(seconds=100)).is_calculating
        assert sampler.estimate(now=T0 + timedelta(seconds=200)).is_calculating

    def test_jitter_reports_count_towards_staleness(self):
        sampler = PositionSampler(CUSTOMER, stale_after=timedelta(seconds=120))
        sampler.record(_sample(5.60, -0.18, 0))
        sampler.record(_sample(5.601, -0.181, 30))
        sampler.record(_sample(5.60101, -0.18101, 300))
        assert sampler.estimate().is_calculating

    def test_naive_timestamps_are_utc(self):
        sampler = PositionSampler(CUSTOMER)
        sampler.record(PositionSample(5.60, -0.18, datetime(2026, 10, 17, 9, 0)))
        with pytest.raises(StaleSample):
            sampler.record(_sample(5.61, -0.18, 0))


class TestTrackingRegistry:
    def _request(self, status: RequestStatus) -> ServiceRequest:
        return ServiceRequest(
            id=42,
            status=status,
            provider_id=7,
            customer_lat=CUSTOMER.latitude,
            customer_lng=CUSTOMER.longitude,
        )

    @pytest.mark.asyncio
    async def test_session_opens_and_closes_with_status(self):
        registry = TrackingRegistry()
        await registry.on_status_change(self._request(RequestStatus.EN_ROUTE))
        assert registry.get(42) is not None

        await registry.on_status_change(self._request(RequestStatus.COMPLETED))
        assert registry.get(42) is None

    @pytest.mark.asyncio
    async def test_reports_feed_the_estimate(self):
        registry = TrackingRegistry()
        request = self._request(RequestStatus.EN_ROUTE)
        registry.report(request, _sample(5.60, -0.18, 0))
        session = registry.report(request, _sample(5.601, -0.181, 30))
        await session.join()

        estimate = registry.estimate(42, now=T0 + timedelta(seconds=30))
        assert not estimate.is_calculating
        assert len(session.sampler.trail()) == 2
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_stale_report_rejected_before_queueing(self):
        registry = TrackingRegistry()
        request = self._request(RequestStatus.EN_ROUTE)
        registry.report(request, _sample(5.60, -0.18, 30))
        with pytest.raises(StaleSample):
            registry.report(request, _sample(5.61, -0.18, 0))
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_unknown_request_is_calculating(self):
        assert TrackingRegistry().estimate(999).is_calculating
