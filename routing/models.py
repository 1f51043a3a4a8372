"""
Purpose: Request/response models for the routing capability.
What it does:
- RouteRequest: ordered waypoints + profile + engine options (immutable)
- RouteResponse: the engine-shaped payload, with helpers to read totals and
  to join two adjacent responses end-to-start

Rule: No HTTP calls here. Models only.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from shards.models import Coordinate

SEAM_INSTRUCTION = "Continue across region boundary"


@dataclass(frozen=True)
class RouteRequest:
    """
    Ordered waypoints (at least two). Options are kept in the order received so
    a pass-through forwards them exactly.
    """
    waypoints: Tuple[Coordinate, ...]
    profile: str = "driving"
    options: Tuple[Tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        if len(self.waypoints) < 2:
            raise ValueError("At least two coordinates are required to compute a route.")

    @classmethod
    def from_path(cls, profile: str, coordinates: str, query: Optional[Mapping] = None) -> RouteRequest:
        """
        Build from the engine URL parts: /route/v1/{profile}/{lon,lat;lon,lat}?{query}
        """
        waypoints = tuple(Coordinate.parse(part) for part in coordinates.split(";") if part)
        options: List[Tuple[str, str]] = []
        if query is not None:
            # QueryDict keeps repeated keys; a plain dict has one value per key
            items = query.lists() if hasattr(query, "lists") else ((k, [v]) for k, v in query.items())
            for key, values in items:
                for value in values:
                    options.append((key, value))
        return cls(waypoints=waypoints, profile=profile, options=tuple(options))

    def options_dict(self) -> Dict[str, str]:
        return dict(self.options)

    def coordinate_path(self) -> str:
        return ";".join(f"{c.lon},{c.lat}" for c in self.waypoints)


@dataclass
class RouteResponse:
    """
    Wraps an engine /route payload. Pass-through responses keep the payload
    exactly as received.
    """
    payload: Dict[str, Any]

    @classmethod
    def from_engine(cls, payload: Dict[str, Any]) -> RouteResponse:
        if not payload.get("routes"):
            raise ValueError("engine payload has no routes")
        return cls(payload=payload)

    @property
    def route(self) -> Dict[str, Any]:
        return self.payload["routes"][0]

    @property
    def distance(self) -> float:
        return float(self.route.get("distance", 0.0))

    @property
    def duration(self) -> float:
        return float(self.route.get("duration", 0.0))

    @property
    def legs(self) -> List[Dict[str, Any]]:
        return self.route.get("legs", [])

    @property
    def waypoints(self) -> List[Dict[str, Any]]:
        return self.payload.get("waypoints", [])

    @property
    def geometry(self) -> List[List[float]]:
        geometry = self.route.get("geometry")
        if isinstance(geometry, dict):
            return geometry.get("coordinates", [])
        return []

    @property
    def start_coordinate(self) -> Coordinate:
        if self.waypoints:
            return Coordinate.from_lonlat(self.waypoints[0]["location"])
        return Coordinate.from_lonlat(self.geometry[0])

    @property
    def end_coordinate(self) -> Coordinate:
        if self.waypoints:
            return Coordinate.from_lonlat(self.waypoints[-1]["location"])
        return Coordinate.from_lonlat(self.geometry[-1])

    def to_dict(self) -> Dict[str, Any]:
        return self.payload

    def join(self, other: RouteResponse) -> RouteResponse:
        """
        Concatenate `other` after this response. This route's last waypoint and
        `other`'s first waypoint are the same gateway, so the two legs that meet
        there become one leg and the gateway waypoint disappears.
        """
        left = copy.deepcopy(self.route)
        right = copy.deepcopy(other.route)
        seam = self.end_coordinate

        left_legs = left.get("legs", [])
        right_legs = right.get("legs", [])
        legs = left_legs[:-1] + [_merge_legs(left_legs[-1], right_legs[0], seam)] + right_legs[1:]

        route: Dict[str, Any] = {
            "distance": left.get("distance", 0.0) + right.get("distance", 0.0),
            "duration": left.get("duration", 0.0) + right.get("duration", 0.0),
            "legs": legs,
        }
        if "weight" in left and "weight" in right:
            route["weight"] = left["weight"] + right["weight"]
        if "weight_name" in left:
            route["weight_name"] = left["weight_name"]
        if isinstance(left.get("geometry"), dict) and isinstance(right.get("geometry"), dict):
            route["geometry"] = {
                "type": "LineString",
                "coordinates": _join_lines(left["geometry"]["coordinates"], right["geometry"]["coordinates"]),
            }

        payload = {
            "code": "Ok",
            "routes": [route],
            "waypoints": self.waypoints[:-1] + other.waypoints[1:],
        }
        return RouteResponse(payload=payload)


def seam_step(location: Coordinate, mode: str = "driving") -> Dict[str, Any]:
    """Synthetic zero-length step marking where one shard hands over to the next."""
    point = [location.lon, location.lat]
    return {
        "distance": 0.0,
        "duration": 0.0,
        "weight": 0.0,
        "name": "",
        "mode": mode,
        "instruction": SEAM_INSTRUCTION,
        "geometry": {"type": "LineString", "coordinates": [point, point]},
        "maneuver": {
            "type": "continue",
            "modifier": "straight",
            "location": point,
            "bearing_before": 0,
            "bearing_after": 0,
        },
        "intersections": [],
    }


def _merge_legs(left: Dict[str, Any], right: Dict[str, Any], seam: Coordinate) -> Dict[str, Any]:
    left_steps = list(left.get("steps", []))
    right_steps = list(right.get("steps", []))
    mode = left_steps[-1].get("mode", "driving") if left_steps else "driving"

    # the arrive/depart pair at the gateway is replaced by one seam step
    if left_steps and left_steps[-1].get("maneuver", {}).get("type") == "arrive":
        left_steps = left_steps[:-1]
    if right_steps and right_steps[0].get("maneuver", {}).get("type") == "depart":
        right_steps = right_steps[1:]

    merged = {
        "distance": left.get("distance", 0.0) + right.get("distance", 0.0),
        "duration": left.get("duration", 0.0) + right.get("duration", 0.0),
        "summary": ", ".join(s for s in (left.get("summary"), right.get("summary")) if s),
        "steps": left_steps + [seam_step(seam, mode)] + right_steps,
    }
    if "weight" in left and "weight" in right:
        merged["weight"] = left["weight"] + right["weight"]
    return merged


def _join_lines(left: Sequence[List[float]], right: Sequence[List[float]]) -> List[List[float]]:
    if left and right and list(left[-1]) == list(right[0]):
        return list(left) + list(right[1:])
    return list(left) + list(right)
