import math

import pytest

from campus_eats.domain.geo import estimate_eta, haversine_km
from campus_eats.domain.errors import OrderNotFound
from campus_eats.infrastructure.geolocation import QueueGeolocationSource
from campus_eats.interfaces.IGeolocationSource import PositionSample

from helpers import RUNNER_A, RUNNER_B, deliver_to_status, place_one, wait_for

pytestmark = pytest.mark.anyio

ONE_DEGREE_KM = 6371.0 * math.pi / 180


def test_haversine_along_equator():
    assert haversine_km(0, 0, 0, 1) == pytest.approx(ONE_DEGREE_KM)


def test_haversine_matches_formula():
    lat1, lng1, lat2, lng2 = 40.7128, -74.0060, 40.7306, -73.9352
    p1, p2 = math.radians(lat1), math.radians(lat2)
    a = (math.sin((p2 - p1) / 2) ** 2
         + math.cos(p1) * math.cos(p2) * math.sin(math.radians(lng2 - lng1) / 2) ** 2)
    expected = 2 * 6371.0 * math.asin(math.sqrt(a))

    assert haversine_km(lat1, lng1, lat2, lng2) == pytest.approx(expected, rel=1e-9)


def test_eta_is_ceiling_minutes_at_20_kmh():
    eta = estimate_eta(0, 0, 0, 1)

    assert eta.minutes == math.ceil(ONE_DEGREE_KM / 20 * 60)
    assert not eta.indeterminate


@pytest.mark.parametrize("coords", [(None, 0, 0, 1), (0, None, 0, 1), (0, 0, None, 1), (0, 0, 0, None)])
def test_missing_coordinate_is_indeterminate(coords):
    eta = estimate_eta(*coords)

    assert eta.indeterminate
    assert eta.minutes is None
    assert eta.to_dict()["indeterminate"] is True


async def test_position_only_recorded_while_delivering(marketplace, vendor, orders):
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, "preparing")
    sample = PositionSample(latitude=40.01, longitude=-75.0)

    assert not await marketplace.location.record_position(order.id, RUNNER_A, sample)

    await marketplace.state_machine.advance(order.id, "runner", "delivering", actor_id=RUNNER_A)
    assert await marketplace.location.record_position(order.id, RUNNER_A, sample)
    assert not await marketplace.location.record_position(order.id, RUNNER_B, sample)

    stored = orders.get_by_id(order.id)
    assert (stored.runner_lat, stored.runner_lng) == (40.01, -75.0)
    assert stored.status == "delivering"
    assert stored.last_location_update is not None


async def test_position_for_unknown_order(marketplace):
    with pytest.raises(OrderNotFound):
        await marketplace.location.record_position("nope", RUNNER_A, PositionSample(0, 0))


async def test_eta_for_order(marketplace, vendor):
    order = await place_one(marketplace, vendor)  # delivers to (40.0, -75.0)
    await deliver_to_status(marketplace, order, "delivering")

    assert (await marketplace.location.eta_for(order.id)).indeterminate

    await marketplace.location.record_position(order.id, RUNNER_A, PositionSample(latitude=40.0, longitude=-74.99))
    eta = await marketplace.location.eta_for(order.id)

    assert eta.distance_km == pytest.approx(haversine_km(40.0, -74.99, 40.0, -75.0))
    assert eta.minutes == math.ceil(eta.distance_km / 20 * 60)


async def test_runner_tracker_stops_on_delivery(marketplace, vendor, orders):
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, "delivering")
    source = QueueGeolocationSource()
    tracker = marketplace.runner_tracker(order.id, RUNNER_A, source)

    await tracker.start()
    source.push_position(40.02, -75.0)
    source.push_error("POSITION_UNAVAILABLE", "no fix")
    source.push_position(40.01, -75.0)
    await wait_for(lambda: tracker.samples_written == 2)

    await marketplace.state_machine.advance(order.id, "runner", "delivered", actor_id=RUNNER_A)
    await tracker.wait()

    assert tracker.stop_reason == "delivered"
    assert not source.watching
    assert orders.get_by_id(order.id).runner_lat == 40.01
    await tracker.stop()


async def test_runner_tracker_stops_when_write_rejected(marketplace, vendor):
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, "preparing")
    source = QueueGeolocationSource()
    tracker = marketplace.runner_tracker(order.id, RUNNER_A, source)

    await tracker.start()
    source.push_position(40.02, -75.0)
    await tracker.wait()

    assert tracker.stop_reason == "rejected"
    assert tracker.samples_written == 0
    assert not source.watching
    await tracker.stop()


async def test_runner_tracker_stop_clears_watch(marketplace, vendor):
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, "delivering")
    source = QueueGeolocationSource()
    tracker = marketplace.runner_tracker(order.id, RUNNER_A, source)

    await tracker.start()
    await wait_for(lambda: source.watching)
    await tracker.stop()

    assert tracker.stop_reason == "stopped"
    assert not source.watching


async def test_delivery_tracker_recomputes_eta(marketplace, vendor):
    order = await place_one(marketplace, vendor)
    await deliver_to_status(marketplace, order, "delivering")
    updates = []

    async with marketplace.delivery_tracker(order.id) as tracker:
        tracker.on_update(updates.append)
        assert tracker.eta.indeterminate

        await marketplace.location.record_position(order.id, RUNNER_A, PositionSample(latitude=40.05, longitude=-75.0))

        await wait_for(lambda: not tracker.eta.indeterminate)
        assert tracker.eta.minutes == math.ceil(haversine_km(40.05, -75.0, 40.0, -75.0) / 20 * 60)
        assert updates
