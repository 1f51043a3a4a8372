"""
Purpose: Decide which shard backend(s) answer a route query.
What it does:
- looks up every waypoint in the shard registry
- one shard covers them all -> forward the request verbatim (pass-through)
- otherwise -> hand over to the CrossShardResolver

Rule: This is the only entry point the query service calls.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from shards.errors import NoShardCoverage, ShardNotReady
from shards.models import Shard
from shards.registry import ShardRegistry, preferred_shard
from .cross_shard import CrossShardResolver
from .models import RouteRequest, RouteResponse
from .osrm_client import OSRMClientPool, retry_on_timeout
from .policy import RoutingPolicy, default_routing_policy

logger = logging.getLogger(__name__)


class CoordinateRouter:
    """
    Maps query waypoints to shards and returns one engine-shaped response.
    """
    def __init__(self, registry: ShardRegistry, clients: Optional[OSRMClientPool] = None,
                 resolver: Optional[CrossShardResolver] = None, policy: Optional[RoutingPolicy] = None):
        self.registry = registry
        self.policy = policy or default_routing_policy()
        self.clients = clients or OSRMClientPool(
            timeout=self.policy.engine_timeout_sec,
            connection_retries=self.policy.connection_retries,
        )
        self.resolver = resolver or CrossShardResolver(self.clients, self.policy)

    def shards_for(self, request: RouteRequest) -> List[Dict[str, Shard]]:
        """
        Servable shards per waypoint, keyed by shard id.
        """
        per_waypoint: List[Dict[str, Shard]] = []
        for index, waypoint in enumerate(request.waypoints):
            try:
                covering = self.registry.lookup(waypoint)
            except NoShardCoverage:
                raise NoShardCoverage(waypoint, waypoint_index=index) from None

            servable = {shard.id: shard for shard in covering if shard.is_servable}
            if not servable:
                raise ShardNotReady(waypoint, index, (shard.id for shard in covering))
            per_waypoint.append(servable)
        return per_waypoint

    def route(self, request: RouteRequest, cancel_event: Optional[threading.Event] = None) -> RouteResponse:
        per_waypoint = self.shards_for(request)

        common = set(per_waypoint[0])
        for shards in per_waypoint[1:]:
            common &= set(shards)

        if common:
            shard = preferred_shard(per_waypoint[0][shard_id] for shard_id in common)
            logger.debug("Pass-through to %s for %d waypoints", shard.id, len(request.waypoints))
            return self._pass_through(shard, request)

        return self.resolver.resolve(
            request,
            [list(shards.values()) for shards in per_waypoint],
            cancel_event=cancel_event,
        )

    def _pass_through(self, shard: Shard, request: RouteRequest) -> RouteResponse:
        client = self.clients.for_shard(shard)
        payload = retry_on_timeout(shard.id, client.forward, request)
        return RouteResponse(payload=payload)
