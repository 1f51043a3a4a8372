"""
Errors raised while answering a route query.
Each carries the reason code and HTTP status the query service answers with.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RoutingError(Exception):
    reason = "RoutingError"
    status_code = 500


class UnroutableCrossShard(RoutingError):
    """No gateway connects two adjacent shards (e.g. an ocean between them)."""
    reason = "UnroutableCrossShard"
    status_code = 400

    def __init__(self, from_shard: str, to_shard: str, detail: str = "no gateway within the overlap buffer"):
        self.from_shard = from_shard
        self.to_shard = to_shard
        self.shard_ids = (from_shard, to_shard)
        super().__init__(f"cannot route from shard {from_shard} to shard {to_shard}: {detail}")


class BackendTimeout(RoutingError):
    """An engine or batch call exceeded its deadline."""
    reason = "BackendTimeout"
    status_code = 504

    def __init__(self, endpoint: str, timeout: float):
        self.endpoint = endpoint
        self.timeout = timeout
        super().__init__(f"{endpoint} did not answer within {timeout}s")


class BackendUnavailable(RoutingError):
    reason = "BackendUnavailable"
    status_code = 502

    def __init__(self, endpoint: str, detail: str):
        self.endpoint = endpoint
        super().__init__(f"{endpoint} unreachable: {detail}")


class BackendError(RoutingError):
    """
    The engine answered with a routing-semantic error (NoRoute, InvalidQuery...).
    Passed through to the client verbatim and never retried.
    """
    reason = "BackendError"

    def __init__(self, code: str, message: str, status_code: int = 400, payload: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload if payload is not None else {"code": code, "message": message}
        super().__init__(f"engine error {code}: {message}")


class StitchingError(RoutingError):
    """Partial routes could not be joined consistently. Internal fault."""
    reason = "StitchingError"
    status_code = 500


class RequestCancelled(RoutingError):
    reason = "RequestCancelled"
    status_code = 499
