from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView, exception_handler

from routing.errors import BackendError, RoutingError
from routing.models import RouteRequest
from shards.errors import ShardError

from . import services
from .serializers import ErrorSerializer, ShardSerializer


def error_body(code, message, **extra):
    body = {"code": code, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return ErrorSerializer(body).data


def routing_exception_handler(exc, context):
    """
    Maps shard/routing errors onto the engine-style error body.
    Engine errors are passed through with the engine's own status and payload.
    """
    if isinstance(exc, BackendError):
        return Response(exc.payload, status=exc.status_code)
    if isinstance(exc, (ShardError, RoutingError)):
        shard_ids = getattr(exc, "shard_ids", None)
        body = error_body(
            exc.reason,
            str(exc),
            waypoint_index=getattr(exc, "waypoint_index", None),
            shard_ids=list(shard_ids) if shard_ids is not None else None,
        )
        return Response(body, status=exc.status_code)
    return exception_handler(exc, context)


class RouteView(APIView):
    """
    GET /route/v1/<profile>/<lon,lat;lon,lat...>?<engine options>
    Same response shape whether one shard answered or several were stitched.
    """

    def get(self, request, profile, coordinates):
        try:
            route_request = RouteRequest.from_path(profile, coordinates, request.query_params)
        except ValueError as exc:
            return Response(error_body("InvalidQuery", str(exc)), status=status.HTTP_400_BAD_REQUEST)

        response = services.get_router().route(route_request)
        return Response(response.to_dict())


class HealthView(APIView):
    def get(self, request):
        registry = services.get_registry()
        shards = registry.health_report()
        servable = [shard for shard in shards if shard["servable"]]

        if len(servable) == len(shards):
            overall = "ok"
        elif servable:
            overall = "degraded"
        else:
            overall = "unavailable"

        return Response(
            {"status": overall, "catalog_version": registry.version, "shards": shards},
            status=status.HTTP_200_OK if servable else status.HTTP_503_SERVICE_UNAVAILABLE,
        )


class ShardViewSet(viewsets.ViewSet):
    """
    Read-only view of the shard catalog.
    - list / retrieve: catalog entries with readiness
    - health: 200 while the shard can answer queries, 503 otherwise
    """

    def list(self, request):
        shards = sorted(services.get_registry().shards(), key=lambda shard: shard.id)
        return Response(ShardSerializer(shards, many=True).data)

    def retrieve(self, request, pk=None):
        shard = services.get_registry().get(pk)
        return Response(ShardSerializer(shard).data)

    @action(detail=True, methods=["get"])
    def health(self, request, pk=None):
        report = services.get_registry().health(pk)
        code = status.HTTP_200_OK if report["servable"] else status.HTTP_503_SERVICE_UNAVAILABLE
        return Response(report, status=code)
