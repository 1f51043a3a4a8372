"""
Purpose: Gateway geometry and selection for cross-shard routes.
What it does:
- gateway_region: where two shards may hand a route over (boxes widened by a buffer, intersected)
- candidate_points: a bounded set of points inside that region
- select_gateway: cheapest connected candidate, ties broken by closeness to the straight line

Rule: Pure functions. Engine calls that measure candidate costs live in cross_shard.py.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from shards.models import BoundingBox, Coordinate

EARTH_RADIUS_M = 6371008.8


@dataclass(frozen=True)
class GatewayCandidate:
    """
    A scored candidate. Durations are None when the engine could not reach it.
    """
    coordinate: Coordinate
    inbound_duration_s: Optional[float]
    outbound_duration_s: Optional[float]
    offset_from_line: float
    order: int = 0

    @property
    def connected(self) -> bool:
        return (self.inbound_duration_s is not None and self.outbound_duration_s is not None
                and self.inbound_duration_s >= 0 and self.outbound_duration_s >= 0)

    @property
    def cost(self) -> float:
        if not self.connected:
            return math.inf
        return self.inbound_duration_s + self.outbound_duration_s


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlon = math.radians(b.lon - a.lon)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def distance_to_segment(point: Coordinate, start: Coordinate, end: Coordinate) -> float:
    """
    Planar distance (degrees, longitude scaled by cos(latitude)) from point to segment start-end.
    Good enough to rank candidates a few degrees apart.
    """
    scale = math.cos(math.radians((start.lat + end.lat) / 2.0))
    px, py = point.lon * scale, point.lat
    ax, ay = start.lon * scale, start.lat
    bx, by = end.lon * scale, end.lat
    dx, dy = bx - ax, by - ay
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return math.hypot(px - ax, py - ay)
    t = max(0.0, min(1.0, ((px - ax) * dx + (py - ay) * dy) / length_sq))
    return math.hypot(px - (ax + t * dx), py - (ay + t * dy))


def gateway_region(left: BoundingBox, right: BoundingBox, buffer_deg: float) -> Optional[BoundingBox]:
    """
    Area where a gateway may sit: inside both boxes once each is widened by the buffer.
    None means the shards are further apart than the buffer allows.
    """
    return left.expand(buffer_deg).intersection(right.expand(buffer_deg))


def candidate_points(region: BoundingBox, start: Coordinate, end: Coordinate, *,
                     samples: int, max_candidates: int) -> List[Coordinate]:
    """
    Bounded candidate set inside `region`, in priority order:
    1. points on the straight segment start->end that fall inside the region
    2. the region centre (the shared-edge midpoint when boxes only touch)
    3. points along the region's long axis
    """
    points: List[Coordinate] = []
    seen = set()

    def add(lon: float, lat: float) -> None:
        key = (round(lon, 6), round(lat, 6))
        if key in seen or len(points) >= max_candidates:
            return
        seen.add(key)
        points.append(Coordinate(key[0], key[1]))

    for i in range(1, samples + 1):
        t = i / (samples + 1)
        lon = start.lon + t * (end.lon - start.lon)
        lat = start.lat + t * (end.lat - start.lat)
        if region.contains(Coordinate(lon, lat)):
            add(lon, lat)

    centre = region.center
    add(centre.lon, centre.lat)

    width = region.max_lon - region.min_lon
    height = region.max_lat - region.min_lat
    for i in range(1, samples + 1):
        t = i / (samples + 1)
        if width >= height:
            add(region.min_lon + t * width, centre.lat)
        else:
            add(centre.lon, region.min_lat + t * height)

    return points


def select_gateway(candidates: Sequence[GatewayCandidate]) -> Optional[GatewayCandidate]:
    """
    Cheapest connected candidate. Equal cost -> closest to the straight line,
    then the order the candidate was generated in.
    """
    connected = [c for c in candidates if c.connected]
    if not connected:
        return None
    return min(connected, key=lambda c: (c.cost, c.offset_from_line, c.order))
