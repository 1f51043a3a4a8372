"""
Purpose: Central configuration for query routing (single source of truth).
What it does:

Stores all tunable thresholds for the router and the cross-shard stitcher:

ENGINE_TIMEOUT_SEC = 5

SNAP_TOLERANCE_M = 50

GATEWAY_BUFFER_DEG = 0.5

MAX_GATEWAY_CANDIDATES = 16

Rule: No logic here - just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class RoutingPolicy:
    """
    Central configuration for coordinate routing and cross-shard stitching.
    """

    # --- Engine calls ---
    # Deadline for every call to a shard's engine.
    engine_timeout_sec: float = 5.0

    # Extra attempts on a dropped connection (never on an engine error).
    connection_retries: int = 1

    # --- Gateways ---
    # Boxes are widened by this much before intersecting; a gap wider than
    # twice the buffer means the shards cannot be stitched.
    gateway_buffer_deg: float = 0.5

    # Points sampled along the straight line between the enclosing waypoints
    # and along the overlap region.
    gateway_samples: int = 8

    # Upper bound on the candidate set scored per boundary.
    max_gateway_candidates: int = 16

    # --- Stitching ---
    # End of leg i and start of leg i+1 must snap within this distance.
    snap_tolerance_m: float = 50.0

    # Threads used to query shards concurrently within one request.
    max_concurrent_subqueries: int = 4

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.engine_timeout_sec <= 0:
            raise ValueError("engine_timeout_sec must be > 0")
        if self.connection_retries < 0:
            raise ValueError("connection_retries must be >= 0")
        if self.gateway_buffer_deg < 0:
            raise ValueError("gateway_buffer_deg must be >= 0")
        if self.gateway_samples < 1:
            raise ValueError("gateway_samples must be >= 1")
        if self.max_gateway_candidates < 1:
            raise ValueError("max_gateway_candidates must be >= 1")
        if self.snap_tolerance_m < 0:
            raise ValueError("snap_tolerance_m must be >= 0")
        if self.max_concurrent_subqueries < 1:
            raise ValueError("max_concurrent_subqueries must be >= 1")


def default_routing_policy() -> RoutingPolicy:
    """
    Convenience factory for the default policy.
    """
    p = RoutingPolicy()
    p.validate()
    return p


def routing_policy_from_env() -> RoutingPolicy:
    """
    Reads overrides from the environment (or a .env file), e.g.
    ROUTER_ENGINE_TIMEOUT_SEC=10
    """
    load_dotenv()
    defaults = RoutingPolicy()
    p = RoutingPolicy(
        engine_timeout_sec=float(os.getenv("ROUTER_ENGINE_TIMEOUT_SEC", defaults.engine_timeout_sec)),
        connection_retries=int(os.getenv("ROUTER_CONNECTION_RETRIES", defaults.connection_retries)),
        gateway_buffer_deg=float(os.getenv("ROUTER_GATEWAY_BUFFER_DEG", defaults.gateway_buffer_deg)),
        gateway_samples=int(os.getenv("ROUTER_GATEWAY_SAMPLES", defaults.gateway_samples)),
        max_gateway_candidates=int(os.getenv("ROUTER_MAX_GATEWAY_CANDIDATES", defaults.max_gateway_candidates)),
        snap_tolerance_m=float(os.getenv("ROUTER_SNAP_TOLERANCE_M", defaults.snap_tolerance_m)),
        max_concurrent_subqueries=int(os.getenv("ROUTER_MAX_CONCURRENT_SUBQUERIES", defaults.max_concurrent_subqueries)),
    )
    p.validate()
    return p
