"""
Errors raised by the shard registry.
Each carries a reason code and the HTTP status the query service answers with.
"""

from __future__ import annotations

from typing import Iterable, Optional


class ShardError(Exception):
    reason = "ShardError"
    status_code = 500


class NoShardCoverage(ShardError):
    """Raised when a coordinate falls outside every shard's bounding box."""
    reason = "NoShardCoverage"
    status_code = 400

    def __init__(self, coordinate, waypoint_index: Optional[int] = None):
        self.coordinate = coordinate
        self.waypoint_index = waypoint_index
        where = f"waypoint {waypoint_index} " if waypoint_index is not None else ""
        super().__init__(f"{where}({coordinate}) is not covered by any shard")


class ShardNotReady(ShardError):
    """Raised when the covering shards exist but none has a servable graph yet."""
    reason = "ShardNotReady"
    status_code = 503

    def __init__(self, coordinate, waypoint_index: Optional[int], shard_ids: Iterable[str]):
        self.coordinate = coordinate
        self.waypoint_index = waypoint_index
        self.shard_ids = sorted(shard_ids)
        super().__init__(
            f"waypoint {waypoint_index} ({coordinate}) is covered by {', '.join(self.shard_ids)} "
            f"but none of them is serving"
        )


class UnknownShard(ShardError):
    reason = "UnknownShard"
    status_code = 404

    def __init__(self, shard_id: str):
        self.shard_id = shard_id
        super().__init__(f"unknown shard {shard_id!r}")
