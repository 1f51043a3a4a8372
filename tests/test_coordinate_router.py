import pytest

from routing.coordinate_router import CoordinateRouter
from routing.errors import BackendError, BackendTimeout, UnroutableCrossShard
from routing.models import RouteRequest
from shards.errors import NoShardCoverage, ShardNotReady
from shards.models import ReadinessState
from shards.registry import ShardRegistry

from conftest import FakePool, make_shard

NEW_YORK = "-74.0060,40.7128"
BOSTON = "-71.0589,42.3601"
LONDON = "-0.1278,51.5074"


def route(router, coordinates, query=None):
    return router.route(RouteRequest.from_path("driving", coordinates, query or {}))


def test_single_shard_query_is_passed_through_verbatim(world_registry):
    pool = FakePool()
    router = CoordinateRouter(world_registry, clients=pool)

    response = route(router, f"{NEW_YORK};{BOSTON}", {"overview": "false", "alternatives": "true"})

    engine = pool.engines["slice_a_north_america"]
    assert response.payload is engine.forward_payload
    forwarded = engine.forwarded[0]
    assert forwarded.options == (("overview", "false"), ("alternatives", "true"))
    assert [(c.lon, c.lat) for c in forwarded.waypoints] == [(-74.006, 40.7128), (-71.0589, 42.3601)]
    assert list(pool.engines) == ["slice_a_north_america"]


def test_overlap_goes_to_the_smallest_common_shard(world_registry):
    pool = FakePool()
    router = CoordinateRouter(world_registry, clients=pool)

    # Paris and London sit in both the Europe and the Asia slice
    route(router, f"2.3522,48.8566;{LONDON}")

    assert list(pool.engines) == ["slice_c_europe_africa"]


def test_new_york_to_london_is_unroutable(world_registry):
    router = CoordinateRouter(world_registry, clients=FakePool())

    with pytest.raises(UnroutableCrossShard) as exc:
        route(router, f"{NEW_YORK};{LONDON}")
    assert exc.value.shard_ids == ("slice_a_north_america", "slice_c_europe_africa")


def test_uncovered_waypoint_reports_its_index(world_registry):
    router = CoordinateRouter(world_registry, clients=FakePool())

    with pytest.raises(NoShardCoverage) as exc:
        route(router, f"{NEW_YORK};0,-80")
    assert exc.value.waypoint_index == 1
    assert exc.value.status_code == 400


def test_building_shard_is_not_ready():
    registry = ShardRegistry([make_shard("only", "0,0,10,10", state=ReadinessState.BUILDING)])
    router = CoordinateRouter(registry, clients=FakePool())

    with pytest.raises(ShardNotReady) as exc:
        route(router, "1,1;2,2")
    assert exc.value.status_code == 503
    assert exc.value.shard_ids == ["only"]


def test_stale_shard_keeps_serving():
    registry = ShardRegistry([make_shard("west", "0,0,10,10", state=ReadinessState.STALE)])
    pool = FakePool()
    router = CoordinateRouter(registry, clients=pool)

    route(router, "1,1;2,2")
    assert pool.engines["west"].forwarded


def test_failed_shard_is_skipped_when_an_overlapping_one_serves():
    registry = ShardRegistry([
        make_shard("small", "0,0,5,5", state=ReadinessState.FAILED),
        make_shard("large", "0,0,20,20"),
    ])
    pool = FakePool()
    router = CoordinateRouter(registry, clients=pool)

    route(router, "1,1;2,2")
    assert list(pool.engines) == ["large"]


def test_cross_shard_query_is_stitched(twin_registry):
    pool = FakePool()
    router = CoordinateRouter(twin_registry, clients=pool)

    response = route(router, "5,5;15,5")

    assert len(response.legs) == 1
    assert pool.engines["west"].route_calls and pool.engines["east"].route_calls
    assert not pool.engines["west"].forwarded


def test_pass_through_retries_one_timeout(twin_registry):
    pool = FakePool()
    engine = pool.for_shard(twin_registry.get("west"))
    engine.forward_errors.append(BackendTimeout("http://west.local:5000", 5))
    router = CoordinateRouter(twin_registry, clients=pool)

    response = route(router, "1,1;2,2")

    assert response.payload is engine.forward_payload
    assert len(engine.forwarded) == 2


def test_pass_through_gives_up_after_second_timeout(twin_registry):
    pool = FakePool()
    engine = pool.for_shard(twin_registry.get("west"))
    engine.forward_errors.extend([BackendTimeout("http://west.local:5000", 5)] * 2)
    router = CoordinateRouter(twin_registry, clients=pool)

    with pytest.raises(BackendTimeout):
        route(router, "1,1;2,2")


def test_engine_errors_are_not_retried(twin_registry):
    pool = FakePool()
    engine = pool.for_shard(twin_registry.get("west"))
    engine.forward_errors.append(BackendError("NoRoute", "Impossible route between points"))
    router = CoordinateRouter(twin_registry, clients=pool)

    with pytest.raises(BackendError):
        route(router, "1,1;2,2")
    assert len(engine.forwarded) == 1
