import itertools
from collections import defaultdict, deque
from typing import Dict, List, Optional

import pytest

from pipeline.errors import JobSubmissionError
from pipeline.jobspec import JobSpecBuilder
from pipeline.models import JobState
from pipeline.queue_client import JobQueueClient, QueueJobStatus
from routing.errors import BackendTimeout
from routing.gateway import haversine_m
from shards.models import BoundingBox, Coordinate, ReadinessState, Shard
from shards.registry import ShardRegistry

SPEED_M_PER_S = 10.0


# ----------------
# Routing fakes
# ----------------

class FakeEngine:
    """
    Stands in for one shard's engine. Snaps every coordinate to itself and
    drives in straight lines at 10 m/s, so seams line up exactly.
    """
    def __init__(self, name: str, unreachable=None):
        self.name = name
        self.unreachable = unreachable or (lambda coordinate: False)
        self.route_calls: List[dict] = []
        self.table_calls: List[dict] = []
        self.forwarded = []
        self.forward_errors = deque()
        self.forward_payload = {"code": "Ok", "routes": [{"distance": 1.0, "duration": 1.0, "legs": []}],
                                "waypoints": [], "engine": name}

    def _leg(self, start: Coordinate, end: Coordinate) -> dict:
        distance = haversine_m(start, end)
        duration = distance / SPEED_M_PER_S
        return {
            "distance": distance,
            "duration": duration,
            "weight": duration,
            "summary": self.name,
            "steps": [
                {"distance": distance, "duration": duration, "weight": duration, "name": self.name,
                 "mode": "driving", "maneuver": {"type": "depart", "location": [start.lon, start.lat]},
                 "geometry": {"type": "LineString", "coordinates": [[start.lon, start.lat], [end.lon, end.lat]]}},
                {"distance": 0.0, "duration": 0.0, "weight": 0.0, "name": self.name,
                 "mode": "driving", "maneuver": {"type": "arrive", "location": [end.lon, end.lat]},
                 "geometry": {"type": "LineString", "coordinates": [[end.lon, end.lat], [end.lon, end.lat]]}},
            ],
        }

    def compute_route(self, coordinates, *, profile=None, options=None):
        self.route_calls.append({"coordinates": list(coordinates), "profile": profile, "options": list(options or [])})
        legs = [self._leg(a, b) for a, b in zip(coordinates, coordinates[1:])]
        distance = sum(leg["distance"] for leg in legs)
        duration = sum(leg["duration"] for leg in legs)
        return {
            "code": "Ok",
            "routes": [{
                "distance": distance,
                "duration": duration,
                "weight": duration,
                "weight_name": "duration",
                "geometry": {"type": "LineString", "coordinates": [[c.lon, c.lat] for c in coordinates]},
                "legs": legs,
            }],
            "waypoints": [{"name": "", "location": [c.lon, c.lat]} for c in coordinates],
        }

    def compute_table(self, sources, destinations, *, profile=None):
        self.table_calls.append({"sources": list(sources), "destinations": list(destinations)})
        durations = [
            [None if self.unreachable(s) or self.unreachable(d) else haversine_m(s, d) / SPEED_M_PER_S
             for d in destinations]
            for s in sources
        ]
        return {
            "durations": durations,
            "distances": [[None if v is None else v * SPEED_M_PER_S for v in row] for row in durations],
            "sources": [{"location": [c.lon, c.lat]} for c in sources],
            "destinations": [{"location": [c.lon, c.lat]} for c in destinations],
        }

    def forward(self, request):
        self.forwarded.append(request)
        if self.forward_errors:
            raise self.forward_errors.popleft()
        return self.forward_payload


class FakePool:
    """Shard id -> FakeEngine, created on first use."""
    def __init__(self, engines: Optional[Dict[str, FakeEngine]] = None):
        self.engines = dict(engines or {})

    def for_shard(self, shard):
        if shard.id not in self.engines:
            self.engines[shard.id] = FakeEngine(shard.id)
        return self.engines[shard.id]


def make_shard(shard_id: str, bbox: str, state: ReadinessState = ReadinessState.READY, **extra) -> Shard:
    return Shard(
        id=shard_id,
        name=shard_id.title(),
        bbox=BoundingBox.from_string(bbox),
        backend_endpoint=f"http://{shard_id}.local:5000",
        readiness_state=state,
        **extra,
    )


@pytest.fixture
def world_registry():
    return ShardRegistry.from_catalog_file()


@pytest.fixture
def twin_registry():
    """Two shards sharing the lon=10 edge."""
    return ShardRegistry([make_shard("west", "0,0,10,10"), make_shard("east", "10,0,20,10")], version="test")


@pytest.fixture
def fake_pool():
    return FakePool()


# ----------------
# Pipeline fakes
# ----------------

class FakeQueue(JobQueueClient):
    """
    Scripted batch queue. Keys are an operation ("extract") or a shard-scoped
    operation ("west:extract"); values list one outcome per attempt:
    "ok", "fail", "reject" or "timeout".
    Each submitted job reports RUNNING on its first poll and its outcome on the second.
    """
    def __init__(self, script: Optional[Dict[str, List[str]]] = None):
        self.script = {kind: deque(outcomes) for kind, outcomes in (script or {}).items()}
        self.submitted = []
        self.cancelled = []
        self.polls = defaultdict(int)
        self.outcomes = {}
        self.max_seen_in_flight = 0
        self._ids = itertools.count(1)
        self._in_flight = set()

    def _next_outcome(self, spec):
        shard_id = spec.output_location.split("/processed/")[1].split("/")[0]
        for key in (f"{shard_id}:{spec.kind.value}", spec.kind.value):
            outcomes = self.script.get(key)
            if outcomes:
                return outcomes.popleft()
        return "ok"

    def submit(self, spec):
        outcome = self._next_outcome(spec)
        if outcome == "reject":
            raise JobSubmissionError(spec.job_name, "job definition not found", code="ClientException")
        if outcome == "timeout":
            raise BackendTimeout("batch.test", 10)

        queue_job_id = f"batch-{next(self._ids)}"
        self.submitted.append((queue_job_id, spec))
        self.outcomes[queue_job_id] = outcome
        self._in_flight.add(queue_job_id)
        self.max_seen_in_flight = max(self.max_seen_in_flight, len(self._in_flight))
        return queue_job_id

    def poll(self, queue_job_id):
        self.polls[queue_job_id] += 1
        if self.polls[queue_job_id] == 1:
            return QueueJobStatus(JobState.RUNNING)
        self._in_flight.discard(queue_job_id)
        if self.outcomes[queue_job_id] == "fail":
            return QueueJobStatus(JobState.FAILED, reason="Essential container in task exited")
        return QueueJobStatus(JobState.SUCCEEDED)

    def cancel(self, queue_job_id, reason):
        self.cancelled.append(queue_job_id)
        self._in_flight.discard(queue_job_id)
        return True


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def spec_builder():
    return JobSpecBuilder("osrm-test-bucket", job_queue="osrm-batch-queue",
                          job_definition="osrm-batch-job", profile="bicycle_paved")
