"""
Purpose: Answer a query whose waypoints span more than one shard.
What it does:
- splits the waypoints into maximal runs that fit one shard
- picks a gateway at every run boundary (engine /table costs on both sides)
- queries every shard for its piece concurrently
- validates the seams and concatenates the pieces in waypoint order

Rule: Shard choice for a single-shard query lives in coordinate_router.py.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from shards.models import Coordinate, Shard
from shards.registry import preferred_shard
from .errors import BackendError, RequestCancelled, StitchingError, UnroutableCrossShard
from .gateway import (
    GatewayCandidate,
    candidate_points,
    distance_to_segment,
    gateway_region,
    haversine_m,
    select_gateway,
)
from .models import RouteRequest, RouteResponse
from .osrm_client import OSRMClientPool, retry_on_timeout
from .policy import RoutingPolicy, default_routing_policy

logger = logging.getLogger(__name__)

# options that still make sense once gateways are inserted between the waypoints
SUBQUERY_PASSTHROUGH_OPTIONS = ("continue_straight", "exclude", "snapping")
SUBQUERY_FIXED_OPTIONS = (("geometries", "geojson"), ("overview", "full"), ("steps", "true"))


@dataclass(frozen=True)
class ShardRun:
    """
    Consecutive waypoints [start, end] served by one shard.
    """
    shard: Shard
    start: int
    end: int


def plan_runs(waypoint_shards: Sequence[Iterable[Shard]]) -> List[ShardRun]:
    """
    Greedy split: keep extending the current run while the waypoints still share
    a shard, then close it on the preferred shard of the shared set.
    """
    runs: List[ShardRun] = []
    start = 0
    current = {shard.id: shard for shard in waypoint_shards[0]}

    for index in range(1, len(waypoint_shards)):
        candidates = {shard.id: shard for shard in waypoint_shards[index]}
        shared = {shard_id: shard for shard_id, shard in current.items() if shard_id in candidates}
        if shared:
            current = shared
            continue
        runs.append(ShardRun(preferred_shard(current.values()), start, index - 1))
        start = index
        current = candidates

    runs.append(ShardRun(preferred_shard(current.values()), start, len(waypoint_shards) - 1))
    return runs


def validate_seams(pieces: Sequence[RouteResponse], snap_tolerance_m: float) -> None:
    """
    Every piece has a non-negative duration and ends where the next one starts.
    """
    for index, piece in enumerate(pieces):
        if piece.duration < 0 or any(leg.get("duration", 0.0) < 0 for leg in piece.legs):
            raise StitchingError(f"sub-route {index} reports a negative duration")

    for index, (left, right) in enumerate(zip(pieces, pieces[1:])):
        gap_m = haversine_m(left.end_coordinate, right.start_coordinate)
        if gap_m > snap_tolerance_m:
            raise StitchingError(
                f"sub-route {index} ends at ({left.end_coordinate}) but sub-route {index + 1} "
                f"starts at ({right.start_coordinate}), {gap_m:.1f}m apart (tolerance {snap_tolerance_m}m)"
            )


class CrossShardResolver:
    """
    Stitches partial routes from several shards into one engine-shaped response.
    """
    def __init__(self, clients: OSRMClientPool, policy: Optional[RoutingPolicy] = None,
                 cancel_check_interval: float = 0.05):
        self.clients = clients
        self.policy = policy or default_routing_policy()
        self.cancel_check_interval = cancel_check_interval

    def resolve(self, request: RouteRequest, waypoint_shards: Sequence[Iterable[Shard]],
                cancel_event: Optional[threading.Event] = None) -> RouteResponse:
        """
        waypoint_shards: one entry per waypoint, in waypoint order, holding the
        servable shards that cover it.

        Setting cancel_event stops waiting and drops queued sub-queries. An engine
        call already on the wire is not interrupted; it runs until it answers or
        hits the engine timeout, and its result is discarded.
        """
        if len(waypoint_shards) != len(request.waypoints):
            raise ValueError("need one shard set per waypoint")

        runs = plan_runs(waypoint_shards)
        logger.info(
            "Cross-shard query over %d waypoints: %s",
            len(request.waypoints),
            " -> ".join(f"{run.shard.id}[{run.start}..{run.end}]" for run in runs),
        )

        executor = ThreadPoolExecutor(max_workers=self.policy.max_concurrent_subqueries)
        try:
            gateway_futures = [
                executor.submit(self._choose_gateway, request, left, right)
                for left, right in zip(runs, runs[1:])
            ]
            gateways = self._collect(gateway_futures, cancel_event)

            piece_futures = []
            for index, run in enumerate(runs):
                gateway_in = gateways[index - 1] if index > 0 else None
                gateway_out = gateways[index] if index < len(gateways) else None
                piece_futures.append(executor.submit(self._sub_route, request, run, gateway_in, gateway_out))
            pieces = self._collect(piece_futures, cancel_event)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        validate_seams(pieces, self.policy.snap_tolerance_m)

        response = pieces[0]
        for piece in pieces[1:]:
            response = response.join(piece)
        return response

    # --- Internals ---

    def _collect(self, futures: List[Future], cancel_event: Optional[threading.Event]) -> list:
        """
        Wait for every future, failing fast on the first error or on cancellation.
        Results come back in submission order, not completion order.
        """
        pending = set(futures)
        while pending:
            done, pending = wait(pending, timeout=self.cancel_check_interval, return_when=FIRST_EXCEPTION)
            if cancel_event is not None and cancel_event.is_set():
                for future in pending:
                    future.cancel()
                raise RequestCancelled("query cancelled by the client")
            for future in done:
                error = future.exception()
                if error is not None:
                    for other in pending:
                        other.cancel()
                    raise error
        return [future.result() for future in futures]

    def _choose_gateway(self, request: RouteRequest, left: ShardRun, right: ShardRun) -> Coordinate:
        start = request.waypoints[left.end]
        end = request.waypoints[right.start]

        region = gateway_region(left.shard.bbox, right.shard.bbox, self.policy.gateway_buffer_deg)
        if region is None:
            raise UnroutableCrossShard(left.shard.id, right.shard.id)

        points = candidate_points(
            region, start, end,
            samples=self.policy.gateway_samples,
            max_candidates=self.policy.max_gateway_candidates,
        )
        if not points:
            raise UnroutableCrossShard(left.shard.id, right.shard.id)

        inbound, inbound_snaps = self._score(left.shard, [start], points, request.profile, inbound=True)
        outbound, outbound_snaps = self._score(right.shard, points, [end], request.profile, inbound=False)

        candidates = []
        for index, point in enumerate(points):
            inbound_s, outbound_s = inbound[index], outbound[index]
            left_snap, right_snap = inbound_snaps[index], outbound_snaps[index]
            # both engines must snap the gateway to the same place or the seam breaks
            if left_snap is not None and right_snap is not None:
                if haversine_m(left_snap, right_snap) > self.policy.snap_tolerance_m:
                    inbound_s = outbound_s = None
            candidates.append(
                GatewayCandidate(
                    coordinate=point,
                    inbound_duration_s=inbound_s,
                    outbound_duration_s=outbound_s,
                    offset_from_line=distance_to_segment(point, start, end),
                    order=index,
                )
            )

        best = select_gateway(candidates)
        if best is None:
            raise UnroutableCrossShard(left.shard.id, right.shard.id,
                                       "no candidate gateway is reachable from both shards")
        logger.debug("Gateway %s -> %s at (%s), cost %.1fs",
                     left.shard.id, right.shard.id, best.coordinate, best.cost)
        return best.coordinate

    def _score(self, shard: Shard, sources: List[Coordinate], destinations: List[Coordinate],
               profile: str, *, inbound: bool):
        """
        Durations and snapped locations of each candidate, seen from one shard.
        Inbound: waypoint -> candidates (one row). Outbound: candidates -> waypoint (one column).
        """
        candidates = destinations if inbound else sources
        client = self.clients.for_shard(shard)
        try:
            table = retry_on_timeout(shard.id, client.compute_table, sources, destinations, profile=profile)
        except BackendError as exc:
            logger.info("Shard %s cannot score gateways: %s", shard.id, exc)
            return [None] * len(candidates), [None] * len(candidates)

        durations = table.get("durations") or []
        if inbound:
            row = durations[0] if durations else []
            values = [row[i] if i < len(row) else None for i in range(len(candidates))]
        else:
            values = [durations[i][0] if i < len(durations) and durations[i] else None
                      for i in range(len(candidates))]

        snapped_waypoints = table.get("destinations" if inbound else "sources") or []
        snaps = [
            Coordinate.from_lonlat(snapped_waypoints[i]["location"]) if i < len(snapped_waypoints) else None
            for i in range(len(candidates))
        ]
        return values, snaps

    def _sub_route(self, request: RouteRequest, run: ShardRun,
                   gateway_in: Optional[Coordinate], gateway_out: Optional[Coordinate]) -> RouteResponse:
        coordinates: List[Coordinate] = []
        if gateway_in is not None:
            coordinates.append(gateway_in)
        coordinates.extend(request.waypoints[run.start:run.end + 1])
        if gateway_out is not None:
            coordinates.append(gateway_out)

        options = [(key, value) for key, value in request.options if key in SUBQUERY_PASSTHROUGH_OPTIONS]
        options.extend(SUBQUERY_FIXED_OPTIONS)

        client = self.clients.for_shard(run.shard)
        payload = retry_on_timeout(run.shard.id, client.compute_route,
                                   coordinates, profile=request.profile, options=options)
        return RouteResponse.from_engine(payload)
