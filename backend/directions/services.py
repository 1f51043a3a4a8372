"""
Process-wide singletons for the query service: one registry, one router.
"""

from functools import lru_cache

from django.conf import settings

from routing import CoordinateRouter, routing_policy_from_env
from shards import ShardRegistry


@lru_cache(maxsize=1)
def get_registry() -> ShardRegistry:
    return ShardRegistry.from_catalog_file(settings.ROUTER_CATALOG_PATH or None)


@lru_cache(maxsize=1)
def get_router() -> CoordinateRouter:
    return CoordinateRouter(get_registry(), policy=routing_policy_from_env())
