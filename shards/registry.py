"""
Purpose: Static catalog of shards + the single write path for readiness.
What it does:
- Loads the declarative, versioned shard catalog once at startup
- lookup(coordinate) -> every shard whose box contains the point
- Applies readiness transitions driven by pipeline completion events
- Exposes a per-shard health/readiness signal

Rule: Registry owns shard state. Routing and pipelines only read it or call
the transition methods below.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from .errors import NoShardCoverage, UnknownShard
from .models import BoundingBox, Coordinate, ReadinessState, Shard

logger = logging.getLogger(__name__)


def default_catalog_path() -> str:
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), "catalog", "world.json")


def preferred_shard(shards: Iterable[Shard]) -> Shard:
    """
    Pick one shard out of overlapping candidates.
    Smallest box first (the most specific region), then id for determinism.
    """
    return min(shards, key=lambda shard: (shard.bbox.area, shard.id))


class ShardRegistry:
    """
    Read-mostly shard catalog.

    Readers never take the lock: every write builds a new dict and swaps the
    reference, so a lookup always sees a consistent snapshot.
    """

    def __init__(self, shards: Iterable[Shard], version: str = "0"):
        by_id: Dict[str, Shard] = {}
        for shard in shards:
            if shard.id in by_id:
                raise ValueError(f"duplicate shard id in catalog: {shard.id}")
            by_id[shard.id] = shard
        if not by_id:
            raise ValueError("shard catalog is empty")

        self.version = version
        self._shards: Dict[str, Shard] = by_id
        self._write_lock = threading.Lock()

    # --- Loading ---

    @classmethod
    def from_catalog(cls, catalog: Dict[str, Any]) -> ShardRegistry:
        shards = []
        for entry in catalog.get("shards", []):
            try:
                shards.append(
                    Shard(
                        id=entry["id"],
                        name=entry.get("name", entry["id"]),
                        bbox=BoundingBox.from_value(entry["bbox"]),
                        backend_endpoint=entry["backend_endpoint"].rstrip("/"),
                        readiness_state=ReadinessState(entry.get("readiness_state", ReadinessState.BUILDING.value)),
                        artifact_location=entry.get("artifact_location"),
                        source_location=entry.get("source"),
                    )
                )
            except KeyError as missing:
                raise ValueError(f"catalog entry {entry!r} is missing {missing}") from None
        return cls(shards, version=str(catalog.get("version", "0")))

    @classmethod
    def from_catalog_file(cls, path: Optional[str] = None) -> ShardRegistry:
        path = path or default_catalog_path()
        with open(path, "r") as catalog_file:
            catalog = json.load(catalog_file)
        registry = cls.from_catalog(catalog)
        logger.info("Loaded shard catalog %s version %s (%d shards)", path, registry.version, len(registry._shards))
        return registry

    def to_catalog(self) -> Dict[str, Any]:
        entries = []
        for shard in self.shards():
            entry = {
                "id": shard.id,
                "name": shard.name,
                "bbox": shard.bbox.as_string(),
                "backend_endpoint": shard.backend_endpoint,
                "readiness_state": shard.readiness_state.value,
            }
            if shard.artifact_location:
                entry["artifact_location"] = shard.artifact_location
            if shard.source_location:
                entry["source"] = shard.source_location
            entries.append(entry)
        return {"version": self.version, "shards": entries}

    def save_catalog(self, path: str) -> None:
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w") as catalog_file:
            json.dump(self.to_catalog(), catalog_file, indent=2)
        os.replace(tmp_path, path)

    # --- Reads ---

    def get(self, shard_id: str) -> Shard:
        try:
            return self._shards[shard_id]
        except KeyError:
            raise UnknownShard(shard_id) from None

    def shards(self) -> List[Shard]:
        return list(self._shards.values())

    def lookup(self, coordinate: Coordinate) -> Set[Shard]:
        """
        Every shard whose bounding box contains the coordinate.
        An empty result is an error, never a silent default.
        """
        found = {shard for shard in self._shards.values() if shard.contains(coordinate)}
        if not found:
            raise NoShardCoverage(coordinate)
        return found

    # --- Readiness transitions (the only write path) ---

    def _swap(self, shard_id: str, **changes) -> Shard:
        with self._write_lock:
            current = self.get(shard_id)
            updated = replace(current, updated_at=datetime.utcnow(), **changes)
            shards = dict(self._shards)
            shards[shard_id] = updated
            self._shards = shards
        return updated

    def begin_build(self, shard_id: str) -> Shard:
        """
        A build started. Readiness is not touched until the pipeline
        completes: the shard keeps serving (or not) exactly as before.
        """
        shard = self.get(shard_id)
        logger.info("Build started for shard %s (%s)", shard_id, shard.readiness_state.value)
        return shard

    def promote(self, shard_id: str, artifact_location: str) -> Shard:
        """Pipeline SUCCEEDED: swap to the new artifact in one step."""
        previous = self.get(shard_id).artifact_location
        shard = self._swap(
            shard_id,
            readiness_state=ReadinessState.READY,
            artifact_location=artifact_location,
            last_build_error=None,
        )
        logger.info("Shard %s promoted to READY: %s (previous artifact %s)", shard_id, artifact_location, previous)
        return shard

    def record_failure(self, shard_id: str, error: str) -> Shard:
        """
        Pipeline FAILED. Serving shards keep their state and last-known-good
        artifact; a shard that never served is marked FAILED.
        """
        shard = self.get(shard_id)
        if shard.is_servable:
            return self._swap(shard_id, last_build_error=error)
        return self._swap(shard_id, readiness_state=ReadinessState.FAILED, last_build_error=error)

    def record_cancellation(self, shard_id: str, reason: str) -> Shard:
        """Pipeline CANCELLED. Only the note changes."""
        return self._swap(shard_id, last_build_error=reason)

    # --- Health ---

    def health(self, shard_id: str) -> Dict[str, Any]:
        shard = self.get(shard_id)
        return {
            "id": shard.id,
            "name": shard.name,
            "readiness_state": shard.readiness_state.value,
            "servable": shard.is_servable,
            "backend_endpoint": shard.backend_endpoint,
            "artifact_location": shard.artifact_location,
            "last_build_error": shard.last_build_error,
            "updated_at": shard.updated_at.isoformat() if shard.updated_at else None,
        }

    def health_report(self) -> List[Dict[str, Any]]:
        return [self.health(shard.id) for shard in self.shards()]
