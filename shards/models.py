"""
Purpose: Core data models for the shards domain.
What it does:
Defines coordinates, bounding boxes and the Shard record that the registry owns.

Rule: No HTTP calls, no pipeline logic. Models only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

# engine wire order: (lon, lat)
LonLat = Tuple[float, float]


@dataclass(frozen=True)
class Coordinate:
    """
    A WGS84 point in degrees. Longitude first, like the engine URLs.
    """
    lon: float
    lat: float

    def __post_init__(self) -> None:
        if not (-180.0 <= self.lon <= 180.0):
            raise ValueError(f"lon out of range [-180,180]: {self.lon}")
        if not (-90.0 <= self.lat <= 90.0):
            raise ValueError(f"lat out of range [-90,90]: {self.lat}")

    @classmethod
    def parse(cls, text: str) -> Coordinate:
        """Parse the engine form 'lon,lat'."""
        parts = text.split(",")
        if len(parts) != 2:
            raise ValueError(f"expected 'lon,lat', got {text!r}")
        try:
            lon, lat = float(parts[0]), float(parts[1])
        except ValueError:
            raise ValueError(f"non-numeric coordinate {text!r}") from None
        return cls(lon=lon, lat=lat)

    @classmethod
    def from_lonlat(cls, pair) -> Coordinate:
        return cls(lon=float(pair[0]), lat=float(pair[1]))

    def as_lonlat(self) -> LonLat:
        return (self.lon, self.lat)

    def __str__(self) -> str:
        return f"{self.lon:.6f},{self.lat:.6f}"


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned box in degrees. Boxes of different shards may overlap.
    """
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def __post_init__(self) -> None:
        if self.min_lon > self.max_lon or self.min_lat > self.max_lat:
            raise ValueError(f"inverted bounding box: {self.as_string()}")
        if self.min_lon < -180.0 or self.max_lon > 180.0:
            raise ValueError(f"longitude outside [-180,180]: {self.as_string()}")
        if self.min_lat < -90.0 or self.max_lat > 90.0:
            raise ValueError(f"latitude outside [-90,90]: {self.as_string()}")

    @classmethod
    def from_string(cls, text: str) -> BoundingBox:
        """Parse 'min_lon,min_lat,max_lon,max_lat' (the osmium --bbox notation)."""
        parts = [p.strip() for p in text.split(",")]
        if len(parts) != 4:
            raise ValueError(f"bbox needs 4 numbers, got {text!r}")
        return cls(*(float(p) for p in parts))

    @classmethod
    def from_value(cls, value) -> BoundingBox:
        if isinstance(value, str):
            return cls.from_string(value)
        if isinstance(value, dict):
            return cls(value["min_lon"], value["min_lat"], value["max_lon"], value["max_lat"])
        return cls(*(float(v) for v in value))

    def as_string(self) -> str:
        return f"{self.min_lon:g},{self.min_lat:g},{self.max_lon:g},{self.max_lat:g}"

    def contains(self, coordinate: Coordinate) -> bool:
        # edges are inclusive so touching boxes both claim the border
        return (self.min_lon <= coordinate.lon <= self.max_lon
                and self.min_lat <= coordinate.lat <= self.max_lat)

    def expand(self, buffer_deg: float) -> BoundingBox:
        return BoundingBox(
            max(-180.0, self.min_lon - buffer_deg),
            max(-90.0, self.min_lat - buffer_deg),
            min(180.0, self.max_lon + buffer_deg),
            min(90.0, self.max_lat + buffer_deg),
        )

    def intersection(self, other: BoundingBox) -> Optional[BoundingBox]:
        """
        Overlap of two boxes, or None. A shared edge or corner yields a degenerate box.
        """
        min_lon = max(self.min_lon, other.min_lon)
        min_lat = max(self.min_lat, other.min_lat)
        max_lon = min(self.max_lon, other.max_lon)
        max_lat = min(self.max_lat, other.max_lat)
        if min_lon > max_lon or min_lat > max_lat:
            return None
        return BoundingBox(min_lon, min_lat, max_lon, max_lat)

    @property
    def area(self) -> float:
        return (self.max_lon - self.min_lon) * (self.max_lat - self.min_lat)

    @property
    def center(self) -> Coordinate:
        return Coordinate((self.min_lon + self.max_lon) / 2.0, (self.min_lat + self.max_lat) / 2.0)


class ReadinessState(str, Enum):
    """
    Build/serve state of a shard.
    STALE still serves its artifact but is flagged as outdated in the catalog.
    """
    BUILDING = "BUILDING"
    READY = "READY"
    STALE = "STALE"
    FAILED = "FAILED"


SERVABLE_STATES = frozenset({ReadinessState.READY, ReadinessState.STALE})


@dataclass(frozen=True)
class Shard:
    """
    A geographic partition served by one engine instance.
    Frozen: the registry swaps whole values instead of mutating fields.
    """
    id: str
    name: str
    bbox: BoundingBox
    backend_endpoint: str
    readiness_state: ReadinessState = ReadinessState.BUILDING

    # where the currently served graph lives (s3://.../<shard>.osrm)
    artifact_location: Optional[str] = None
    # raw OSM input for rebuilds; None means the default slices/ prefix
    source_location: Optional[str] = None
    last_build_error: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_servable(self) -> bool:
        return self.readiness_state in SERVABLE_STATES

    def contains(self, coordinate: Coordinate) -> bool:
        return self.bbox.contains(coordinate)
