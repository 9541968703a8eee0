"""Operator configuration read from the environment."""
import logging
import os

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}; using default {default}")
        return default


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Build a cluster-backed reconciler at startup (off for local dry-run use)
CONNECT_CLUSTER = os.getenv("SPIRE_OPERATOR_CONNECT_CLUSTER", "false").lower() in ("true", "1", "yes")

# Health aggregation
HEALTH_INTERVAL_SECONDS = _int_env("SPIRE_OPERATOR_HEALTH_INTERVAL", 5)

# Workload images
SERVER_IMAGE = os.getenv("SPIRE_SERVER_IMAGE", "ghcr.io/spiffe/spire-server:1.5.1")
AGENT_IMAGE = os.getenv("SPIRE_AGENT_IMAGE", "ghcr.io/spiffe/spire-agent:1.5.1")
WAIT_IMAGE = os.getenv("SPIRE_WAIT_IMAGE", "cgr.dev/chainguard/wait-for-it")

# Rendered SPIRE configuration
CLUSTER_NAME = os.getenv("SPIRE_CLUSTER_NAME", "demo-cluster")
SPIRE_LOG_LEVEL = os.getenv("SPIRE_LOG_LEVEL", "DEBUG")
DATA_STORAGE_SIZE = os.getenv("SPIRE_DATA_STORAGE_SIZE", "1Gi")

# Custom resources
CRD_GROUP = "spire.hpe.com"
CRD_VERSION = "v1"


def api_token() -> str:
    """Bearer token for the plan API; empty disables auth."""
    return os.environ.get("SPIRE_OPERATOR_API_TOKEN", "").strip()
