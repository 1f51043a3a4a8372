#Purpose: The OSRM "adapter/client" for one shard backend.
#Sole responsibility: talk to an engine instance via HTTP and return its payloads.
#Encapsulates OSRM-specific details:
#coordinate formatting (lon,lat)
#URL construction (/route, /table)
#timeouts, the single retry on a dropped connection, error mapping
#retry_on_timeout: the one extra try callers get after a BackendTimeout
#It should not contain shard selection or stitching rules.

import logging
import threading
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

import requests

from shards.models import Coordinate, Shard
from .errors import BackendError, BackendTimeout, BackendUnavailable
from .models import RouteRequest

logger = logging.getLogger(__name__)


class OSRMClient:
    """
    OSRM Adapter / Client

    Sole responsibility:
    - Talk to one OSRM backend via HTTP
    - Format Coordinate -> OSRM 'lon,lat;lon,lat'
    - Return the engine payload untouched, or raise a routing error

    """
    def __init__(self, base_url: str, profile: str = "driving", timeout: float = 5,
                 connection_retries: int = 1, session: Optional[requests.Session] = None):
        if not base_url:
            raise ValueError("OSRM base URL not set.")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout #the time to wait for a response from OSRM before giving up
        self.profile = profile #the mode of transportation (driving, walking, cycling)
        self.connection_retries = connection_retries
        self.session = session or requests.Session()

    #----------------
    # Internal helpers for coordinate formatting and transport
    #----------------
    def format_coordinates(self, coords: Sequence[Coordinate]) -> str:
        """Convert list of Coordinate to OSRM format 'lon,lat;lon,lat;...'"""
        return ';'.join(f"{c.lon},{c.lat}" for c in coords)

    def _get(self, url: str, params) -> Dict[str, Any]:
        attempts = 1 + self.connection_retries
        for attempt in range(1, attempts + 1):
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
                break
            except requests.Timeout:
                raise BackendTimeout(self.base_url, self.timeout) from None
            except requests.ConnectionError as exc:
                if attempt == attempts:
                    raise BackendUnavailable(self.base_url, str(exc)) from None
                logger.warning("Connection to %s failed (attempt %d/%d), retrying", self.base_url, attempt, attempts)

        try:
            data = response.json()
        except ValueError:
            raise BackendError("InvalidResponse", f"non-JSON answer from {self.base_url}",
                               status_code=502) from None

        #validating OSRM response; semantic errors are never retried
        if data.get("code") != "Ok":
            status = response.status_code if response.status_code >= 400 else 400
            raise BackendError(data.get("code", "Unknown"), data.get("message", "Unknown error"),
                               status_code=status, payload=data)
        return data

    #----------------
    # route service
    #----------------
    def compute_route(self, coordinates: Sequence[Coordinate], *, profile: Optional[str] = None,
                      options=None) -> Dict[str, Any]:
        """
        calls the OSRM /route endpoint with the given coordinates and options
        and returns the payload exactly as the engine sent it
        """
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required to compute a route.")

        url = f"{self.base_url}/route/v1/{profile or self.profile}/{self.format_coordinates(coordinates)}"
        return self._get(url, params=list(options.items()) if isinstance(options, Mapping) else list(options or ()))

    def forward(self, request: RouteRequest) -> Dict[str, Any]:
        """Pass-through: same profile, coordinates and options the client sent."""
        return self.compute_route(request.waypoints, profile=request.profile, options=request.options)

    #----------------
    # table service (batch routing)
    #----------------
    def compute_table(self, sources: Sequence[Coordinate], destinations: Sequence[Coordinate], *,
                      profile: Optional[str] = None) -> Dict[str, Any]:
        """
        calls OSRM /table endpoint.
        used to score gateway candidates (one source against many destinations or the reverse)

        returns :
        {
            "durations": [[seconds or None, ...], ...],   # sources x destinations
            "distances": [[meters or None, ...], ...],
            "sources": [{"location": [lon, lat], ...}, ...],   # snapped inputs
            "destinations": [...],
        }
        """
        if not sources or not destinations:
            return {'durations': [], 'distances': [], 'sources': [], 'destinations': []}

        coordinates = self.format_coordinates(list(sources) + list(destinations))
        params = {
            "sources": ";".join(str(i) for i in range(len(sources))),
            "destinations": ";".join(str(i) for i in range(len(sources), len(sources) + len(destinations))),
            "annotations": "duration,distance",
        }
        url = f"{self.base_url}/table/v1/{profile or self.profile}/{coordinates}"
        data = self._get(url, params=params)
        return {
            "durations": data.get("durations", []),
            "distances": data.get("distances", []),
            "sources": data.get("sources", []),
            "destinations": data.get("destinations", []),
        }


class OSRMClientPool:
    """
    One client (and one HTTP connection pool) per shard backend.
    """
    def __init__(self, timeout: float = 5, connection_retries: int = 1):
        self.timeout = timeout
        self.connection_retries = connection_retries
        self._clients: Dict[str, OSRMClient] = {}
        self._lock = threading.Lock()

    def for_shard(self, shard: Shard) -> OSRMClient:
        with self._lock:
            client = self._clients.get(shard.backend_endpoint)
            if client is None:
                client = OSRMClient(shard.backend_endpoint, timeout=self.timeout,
                                    connection_retries=self.connection_retries)
                self._clients[shard.backend_endpoint] = client
            return client


def retry_on_timeout(shard_id: str, call: Callable[..., Any], *args, **kwargs) -> Any:
    """
    Runs one engine call; a BackendTimeout gets exactly one more try.
    Engine errors and a second timeout propagate.
    """
    try:
        return call(*args, **kwargs)
    except BackendTimeout:
        logger.warning("Shard %s timed out, retrying once", shard_id)
        return call(*args, **kwargs)
