import json

import pytest

from shards.errors import NoShardCoverage, UnknownShard
from shards.models import BoundingBox, Coordinate, ReadinessState
from shards.registry import ShardRegistry, preferred_shard

from conftest import make_shard

NEW_YORK = Coordinate(-74.0060, 40.7128)
LONDON = Coordinate(-0.1278, 51.5074)
SOUTH_POLE = Coordinate(0.0, -80.0)


def test_world_catalog_loads_six_slices(world_registry):
    assert world_registry.version == "2024.1"
    ids = sorted(shard.id for shard in world_registry.shards())
    assert ids == [
        "slice_a_north_america",
        "slice_b_south_america",
        "slice_c_europe_africa",
        "slice_d_africa",
        "slice_e_asia",
        "slice_f_oceania",
    ]
    europe = world_registry.get("slice_c_europe_africa")
    assert europe.bbox == BoundingBox(-25, 30, 60, 75)
    assert europe.backend_endpoint == "http://127.0.0.1:5002"
    assert all(shard.is_servable for shard in world_registry.shards())


def test_lookup_returns_every_covering_shard(world_registry):
    assert {shard.id for shard in world_registry.lookup(NEW_YORK)} == {"slice_a_north_america"}

    # Europe and the Asia slice overlap over London
    london = world_registry.lookup(LONDON)
    assert {shard.id for shard in london} == {"slice_c_europe_africa", "slice_e_asia"}
    assert preferred_shard(london).id == "slice_c_europe_africa"


def test_lookup_outside_every_box_is_an_error(world_registry):
    with pytest.raises(NoShardCoverage):
        world_registry.lookup(SOUTH_POLE)


def test_shared_edge_belongs_to_both_shards(twin_registry):
    on_edge = twin_registry.lookup(Coordinate(10.0, 5.0))
    assert {shard.id for shard in on_edge} == {"west", "east"}


def test_preferred_shard_breaks_equal_area_ties_by_id():
    a = make_shard("b_shard", "0,0,10,10")
    b = make_shard("a_shard", "10,0,20,10")
    assert preferred_shard([a, b]).id == "a_shard"


def test_catalog_validation():
    with pytest.raises(ValueError):
        ShardRegistry([make_shard("x", "0,0,1,1"), make_shard("x", "1,1,2,2")])
    with pytest.raises(ValueError):
        ShardRegistry([])
    with pytest.raises(ValueError):
        ShardRegistry.from_catalog({"shards": [{"id": "x", "bbox": "0,0,1,1"}]})


def test_get_unknown_shard(world_registry):
    with pytest.raises(UnknownShard) as exc:
        world_registry.get("slice_z_mars")
    assert exc.value.status_code == 404


def test_rebuild_of_a_serving_shard_keeps_it_serving(twin_registry):
    twin_registry.promote("west", "s3://bucket/processed/west/b1/west.osrm")
    promoted = twin_registry.get("west")

    shard = twin_registry.begin_build("west")
    assert shard == promoted
    assert shard.readiness_state == ReadinessState.READY
    assert shard.artifact_location == "s3://bucket/processed/west/b1/west.osrm"

    shard = twin_registry.promote("west", "s3://bucket/processed/west/b2/west.osrm")
    assert shard.readiness_state == ReadinessState.READY
    assert shard.artifact_location == "s3://bucket/processed/west/b2/west.osrm"


def test_failed_rebuild_keeps_last_known_good(twin_registry):
    twin_registry.promote("west", "s3://bucket/processed/west/b1/west.osrm")
    twin_registry.begin_build("west")

    shard = twin_registry.record_failure("west", "extract failed")
    assert shard.readiness_state == ReadinessState.READY
    assert shard.artifact_location == "s3://bucket/processed/west/b1/west.osrm"
    assert shard.last_build_error == "extract failed"


def test_catalog_stale_shard_stays_stale_after_failure():
    registry = ShardRegistry([make_shard("old", "0,0,1,1", state=ReadinessState.STALE)])
    registry.begin_build("old")

    shard = registry.record_failure("old", "extract failed")
    assert shard.readiness_state == ReadinessState.STALE
    assert shard.is_servable


def test_cancelled_build_only_leaves_a_note():
    registry = ShardRegistry([make_shard("new", "0,0,1,1", state=ReadinessState.BUILDING)])

    shard = registry.record_cancellation("new", "build b1 cancelled")
    assert shard.readiness_state == ReadinessState.BUILDING
    assert shard.last_build_error == "build b1 cancelled"


def test_first_build_failure_marks_shard_failed():
    registry = ShardRegistry([make_shard("new", "0,0,1,1", state=ReadinessState.BUILDING)])
    registry.begin_build("new")
    assert registry.get("new").readiness_state == ReadinessState.BUILDING

    shard = registry.record_failure("new", "contract failed")
    assert shard.readiness_state == ReadinessState.FAILED
    assert not shard.is_servable


def test_readers_keep_their_snapshot(twin_registry):
    before = twin_registry.get("east")
    twin_registry.record_failure("east", "boom")
    # shards are frozen values; the old one is untouched
    assert before.last_build_error is None
    assert twin_registry.get("east").last_build_error == "boom"


def test_health_report(twin_registry):
    twin_registry.record_failure("east", "boom")
    report = {entry["id"]: entry for entry in twin_registry.health_report()}
    assert report["east"]["servable"] is True
    assert report["east"]["last_build_error"] == "boom"
    assert report["west"]["readiness_state"] == "READY"
    assert report["west"]["updated_at"] is None


def test_save_catalog_keeps_readiness(tmp_path, twin_registry):
    twin_registry.promote("west", "s3://bucket/processed/west/b1/west.osrm")
    path = tmp_path / "catalog.json"
    twin_registry.save_catalog(str(path))

    saved = json.loads(path.read_text())
    assert saved["version"] == "test"
    reloaded = ShardRegistry.from_catalog_file(str(path))
    west = reloaded.get("west")
    assert west.artifact_location == "s3://bucket/processed/west/b1/west.osrm"
    assert west.bbox == BoundingBox(0, 0, 10, 10)
