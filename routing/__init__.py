#Marks routing as a package.
#Re-exports the public API (CoordinateRouter, OSRMClient, request/response models)
#so other modules import from routing without knowing internal file names.
#No business logic.

from .osrm_client import OSRMClient, OSRMClientPool
from .models import RouteRequest, RouteResponse
from .coordinate_router import CoordinateRouter
from .cross_shard import CrossShardResolver
from .policy import RoutingPolicy, default_routing_policy, routing_policy_from_env

__all__ = [
           "OSRMClient",
           "OSRMClientPool",
             "RouteRequest",
             "RouteResponse",
             "CoordinateRouter",
             "CrossShardResolver",
             "RoutingPolicy",
             "default_routing_policy",
             "routing_policy_from_env",
             ]
