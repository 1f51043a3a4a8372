"""
Shards domain package.

Public API:
- Domain models: Coordinate, BoundingBox, Shard, ReadinessState
- Registry: ShardRegistry (catalog loading, lookup, readiness updates)
"""
from .models import Coordinate, BoundingBox, Shard, ReadinessState
from .registry import ShardRegistry, default_catalog_path, preferred_shard
from .errors import ShardError, NoShardCoverage, ShardNotReady, UnknownShard

__all__ = ["Coordinate",
           "BoundingBox",
             "Shard",
               "ReadinessState",
               "ShardRegistry",
               "default_catalog_path",
               "preferred_shard",
               "ShardError",
               "NoShardCoverage",
               "ShardNotReady",
               "UnknownShard",
               ]
