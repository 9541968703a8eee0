"""SPIRE Operator - FastAPI application exposing health, metrics and dry-run planning"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from spire_operator import __version__, settings
from spire_operator.api import deployments, health
from spire_operator.deploy.cluster import KubernetesClusterClient, load_kube_config
from spire_operator.deploy.health import AggregatorRegistry
from spire_operator.deploy.reconciler import Reconciler
from spire_operator.logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


def build_reconciler(registry: AggregatorRegistry) -> Reconciler:
    """Reconciler bound to the cluster this process runs against."""
    load_kube_config()
    return Reconciler(KubernetesClusterClient(), registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting SPIRE Operator v{__version__}")

    app.state.registry = AggregatorRegistry()
    # Entry point for the external watch process that feeds reconcile requests
    app.state.reconciler = None
    if settings.CONNECT_CLUSTER:
        app.state.reconciler = build_reconciler(app.state.registry)
        logger.info("Cluster-backed reconciler ready")

    yield

    logger.info("Stopping health aggregators")
    await app.state.registry.stop_all()
    logger.info("Shutting down SPIRE Operator")


app = FastAPI(
    title="SPIRE Operator",
    description="Validates, renders and deploys SPIRE servers and agents",
    version=__version__,
    lifespan=lifespan
)

app.include_router(health.router, prefix="/api/v1", tags=["Health"])
app.include_router(deployments.router, prefix="/api/v1", tags=["Deployments"])


@app.get("/health")
async def root_health():
    """Root health check (non-versioned for convenience)."""
    return {"status": "ok", "version": __version__}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint.

    Exposes reconcile outcomes, apply failures, health observations and the
    number of running aggregators.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
