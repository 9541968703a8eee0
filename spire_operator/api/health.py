"""Health check API endpoints"""
import time

from fastapi import APIRouter, Request

from spire_operator import __version__
from spire_operator.schemas import HealthResponse

router = APIRouter()

# Track startup time for uptime calculation
_startup_time = time.time()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint.

    Returns operator status, version and the number of running aggregators.
    """
    registry = getattr(request.app.state, "registry", None)
    active = 0
    if registry is not None:
        active = sum(1 for namespace, name in registry.keys() if registry.is_running(namespace, name))

    return HealthResponse(
        status="ok",
        version=__version__,
        uptime_seconds=int(time.time() - _startup_time),
        active_aggregators=active,
    )
