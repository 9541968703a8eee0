"""Create planned resources through the cluster client."""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from spire_operator.deploy.cluster import ClusterClient
from spire_operator.exceptions import ApplyFailure
from spire_operator.observability.metrics import apply_failures
from spire_operator.schemas import ResourceDescriptor

logger = logging.getLogger(__name__)


def apply_resources(cluster: ClusterClient, descriptors: Iterable[ResourceDescriptor], kind: str = "") -> None:
    """Create every descriptor in creation order.

    Creation is attempted for all descriptors even after a failure; partial
    application is left for the next reconciliation to complete and nothing
    already created is rolled back.

    Args:
        cluster: Cluster client; expected to treat name collisions as success
        descriptors: Planned resources
        kind: Owning object kind, used for metrics labels

    Raises:
        ApplyFailure: for the first descriptor that failed
    """
    first_failure: Optional[ApplyFailure] = None

    for descriptor in sorted(descriptors, key=lambda item: item.creation_order):
        try:
            cluster.create(descriptor)
        except Exception as exc:
            logger.error(
                f"Failed to create {descriptor.kind.value} {descriptor.name} "
                f"(namespace={descriptor.namespace or '-'}): {exc}"
            )
            apply_failures.labels(kind=kind or "unknown").inc()
            if first_failure is None:
                first_failure = ApplyFailure(descriptor.name, exc)
            continue
        logger.info(f"Created {descriptor.kind.value} {descriptor.name}")

    if first_failure is not None:
        raise first_failure


__all__ = ["apply_resources"]
