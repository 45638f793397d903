import logging

from django.db import connection
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework import status
from channels.layers import get_channel_layer

from services.presence.liveness import get_redis

logger = logging.getLogger(__name__)


def _check_database():
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")


def _check_liveness_cache():
    get_redis().ping()


def _check_channel_layer():
    if get_channel_layer() is None:
        raise RuntimeError("no channel layer configured")


PROBES = [
    ("database", _check_database),
    ("redis", _check_liveness_cache),
    ("channels", _check_channel_layer),
]


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """Report database, liveness cache and channel layer reachability."""
    services = {}
    healthy = True

    for name, probe in PROBES:
        try:
            probe()
            services[name] = "healthy"
        except Exception as e:
            logger.warning("Health probe %s failed: %s", name, e)
            services[name] = f"unhealthy: {e}"
            healthy = False

    return Response(
        {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": timezone.now().isoformat(),
            "services": services,
        },
        status=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
