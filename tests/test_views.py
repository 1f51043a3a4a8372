import pytest
from rest_framework.test import APIClient

from directions import services
from routing.coordinate_router import CoordinateRouter
from routing.errors import BackendError, BackendTimeout
from shards.models import ReadinessState
from shards.registry import ShardRegistry

from conftest import FakePool, make_shard


@pytest.fixture
def api():
    return APIClient()


@pytest.fixture
def pool():
    return FakePool()


@pytest.fixture
def wired(monkeypatch, twin_registry, pool):
    router = CoordinateRouter(twin_registry, clients=pool)
    monkeypatch.setattr(services, "get_registry", lambda: twin_registry)
    monkeypatch.setattr(services, "get_router", lambda: router)
    return twin_registry


def test_single_shard_route_is_the_engine_payload(api, wired, pool):
    response = api.get("/route/v1/driving/1,1;2,2", {"overview": "false"})

    assert response.status_code == 200
    assert response.json() == pool.engines["west"].forward_payload
    assert pool.engines["west"].forwarded[0].options == (("overview", "false"),)


def test_cross_shard_route_has_engine_shape(api, wired):
    response = api.get("/route/v1/driving/5,5;15,5")

    assert response.status_code == 200
    body = response.json()
    assert body["code"] == "Ok"
    assert len(body["routes"][0]["legs"]) == 1
    assert len(body["waypoints"]) == 2


def test_malformed_coordinates(api, wired):
    response = api.get("/route/v1/driving/1,1;abc")
    assert response.status_code == 400
    assert response.json()["code"] == "InvalidQuery"


def test_uncovered_waypoint(api, wired):
    response = api.get("/route/v1/driving/1,1;50,50")
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "NoShardCoverage"
    assert body["waypoint_index"] == 1


def test_unroutable_lists_both_shards(api, monkeypatch, pool):
    registry = ShardRegistry([make_shard("west", "0,0,10,10"), make_shard("far_east", "30,0,40,10")])
    monkeypatch.setattr(services, "get_router", lambda: CoordinateRouter(registry, clients=pool))

    response = api.get("/route/v1/driving/5,5;35,5")

    assert response.status_code == 400
    assert response.json()["code"] == "UnroutableCrossShard"
    assert response.json()["shard_ids"] == ["west", "far_east"]


def test_engine_error_passes_through(api, wired, pool):
    engine = pool.for_shard(wired.get("west"))
    engine.forward_errors.append(BackendError("NoRoute", "Impossible route between points",
                                              payload={"code": "NoRoute", "message": "Impossible route between points"}))

    response = api.get("/route/v1/driving/1,1;2,2")

    assert response.status_code == 400
    assert response.json() == {"code": "NoRoute", "message": "Impossible route between points"}


def test_backend_timeout_is_504(api, wired, pool):
    engine = pool.for_shard(wired.get("west"))
    engine.forward_errors.extend([BackendTimeout("http://west.local:5000", 5)] * 2)

    response = api.get("/route/v1/driving/1,1;2,2")

    assert response.status_code == 504
    assert response.json()["code"] == "BackendTimeout"


def test_shard_not_ready_is_503(api, monkeypatch, pool):
    registry = ShardRegistry([make_shard("new", "0,0,10,10", state=ReadinessState.BUILDING)])
    monkeypatch.setattr(services, "get_router", lambda: CoordinateRouter(registry, clients=pool))

    response = api.get("/route/v1/driving/1,1;2,2")

    assert response.status_code == 503
    assert response.json()["shard_ids"] == ["new"]


def test_health(api, wired):
    response = api.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert {shard["id"] for shard in body["shards"]} == {"west", "east"}


def test_health_degraded_and_unavailable(api, monkeypatch):
    registry = ShardRegistry([
        make_shard("up", "0,0,1,1"),
        make_shard("down", "1,1,2,2", state=ReadinessState.FAILED),
    ])
    monkeypatch.setattr(services, "get_registry", lambda: registry)
    assert api.get("/health").json()["status"] == "degraded"

    only_down = ShardRegistry([make_shard("down", "1,1,2,2", state=ReadinessState.BUILDING)])
    monkeypatch.setattr(services, "get_registry", lambda: only_down)
    response = api.get("/health")
    assert response.status_code == 503
    assert response.json()["status"] == "unavailable"


def test_shard_list_and_detail(api, wired):
    listing = api.get("/shards/")
    assert listing.status_code == 200
    assert [shard["id"] for shard in listing.json()] == ["east", "west"]

    detail = api.get("/shards/west/")
    assert detail.status_code == 200
    assert detail.json()["bbox"] == "0,0,10,10"
    assert detail.json()["readiness_state"] == "READY"
    assert detail.json()["servable"] is True


def test_unknown_shard_is_404(api, wired):
    response = api.get("/shards/nowhere/")
    assert response.status_code == 404
    assert response.json()["code"] == "UnknownShard"


def test_shard_health_signal(api, monkeypatch):
    registry = ShardRegistry([
        make_shard("up", "0,0,1,1"),
        make_shard("down", "1,1,2,2", state=ReadinessState.FAILED, last_build_error="extract failed"),
    ])
    monkeypatch.setattr(services, "get_registry", lambda: registry)

    assert api.get("/shards/up/health/").status_code == 200

    response = api.get("/shards/down/health/")
    assert response.status_code == 503
    assert response.json()["readiness_state"] == "FAILED"
    assert response.json()["last_build_error"] == "extract failed"
