"""SpireServer health aggregation.

Each SpireServer gets one long-lived aggregator task that polls its pods,
folds their conditions into a single HealthStatus and writes it to the
object's status on every tick.

Design:
- One task per (namespace, name), owned by AggregatorRegistry
- Cooperative cancellation: the stop event is checked once per tick
- Poll failures end the task with ObservationFailure; the registry starts a
  fresh task on the next successful reconciliation
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from spire_operator import settings
from spire_operator.deploy.cluster import ClusterClient
from spire_operator.exceptions import ObservationFailure
from spire_operator.observability.metrics import active_aggregators, health_observations
from spire_operator.schemas import SERVER_KIND, HealthStatus

logger = logging.getLogger(__name__)

SERVER_POD_SELECTOR = "app=spire-server"

POD_READY = "ready"
POD_INITIALIZED = "initialized"
POD_PENDING = "pending"
POD_ERROR = "error"

# Most favourable condition first
_CONDITION_RANK: List[Tuple[str, str]] = [
    ("Ready", POD_READY),
    ("Initialized", POD_INITIALIZED),
    ("ContainersReady", POD_PENDING),
    ("PodScheduled", POD_PENDING),
]


def classify_pod(pod: Any) -> str:
    """Classify a pod by its most favourable true condition."""
    status = getattr(pod, "status", None)
    conditions = (getattr(status, "conditions", None) or []) if status is not None else []
    true_conditions = {c.type for c in conditions if str(c.status) == "True"}
    for condition_type, classification in _CONDITION_RANK:
        if condition_type in true_conditions:
            return classification
    return POD_ERROR


def aggregate_health(pods: Iterable[Any], replicas: int) -> HealthStatus:
    """Fold per-pod classifications into one HealthStatus.

    Precedence: any error, then all replicas ready, then all replicas at
    least initialized, otherwise still initializing.
    """
    classes = [classify_pod(pod) for pod in pods]
    if POD_ERROR in classes:
        return HealthStatus.ERROR
    ready = classes.count(POD_READY)
    initialized = classes.count(POD_INITIALIZED)
    if ready >= replicas:
        return HealthStatus.READY
    if ready + initialized >= replicas:
        return HealthStatus.LIVE
    return HealthStatus.INITIALIZING


def write_health(cluster: ClusterClient, namespace: str, name: str, state: HealthStatus) -> None:
    try:
        cluster.patch_status(SERVER_KIND, namespace, name, {"health": state.value})
    except Exception as exc:
        raise ObservationFailure(f"Failed to write health of {namespace}/{name}: {exc}", exc) from exc
    health_observations.labels(state=state.value).inc()


class HealthAggregator:
    """Polls one SpireServer's pods and writes its aggregate health."""

    def __init__(
        self,
        cluster: ClusterClient,
        namespace: str,
        name: str,
        replicas: int,
        interval_seconds: Optional[float] = None,
    ):
        self.cluster = cluster
        self.namespace = namespace
        self.name = name
        self.replicas = replicas
        self.interval_seconds = settings.HEALTH_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        self.stop_event = asyncio.Event()

    def tick(self) -> HealthStatus:
        """List pods, aggregate and write status once.

        Raises:
            ObservationFailure: if listing pods or writing status failed
        """
        try:
            pods = self.cluster.list_pods(self.namespace, SERVER_POD_SELECTOR)
        except Exception as exc:
            raise ObservationFailure(f"Failed to list pods for {self.namespace}/{self.name}: {exc}", exc) from exc

        state = aggregate_health(pods, self.replicas)
        write_health(self.cluster, self.namespace, self.name, state)
        logger.debug(f"SpireServer {self.namespace}/{self.name} health={state.value} pods={len(pods)}")
        return state

    async def run(self) -> None:
        logger.info(
            f"Starting health aggregator for SpireServer {self.namespace}/{self.name} "
            f"(interval={self.interval_seconds}s)"
        )
        while not self.stop_event.is_set():
            self.tick()
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info(f"Stopped health aggregator for SpireServer {self.namespace}/{self.name}")

    def stop(self) -> None:
        self.stop_event.set()


class AggregatorRegistry:
    """Owns at most one running aggregator per SpireServer."""

    def __init__(self):
        self._entries: Dict[Tuple[str, str], Tuple[HealthAggregator, asyncio.Task]] = {}

    def is_running(self, namespace: str, name: str) -> bool:
        entry = self._entries.get((namespace, name))
        return entry is not None and not entry[1].done()

    def start(self, aggregator: HealthAggregator) -> bool:
        """Start an aggregator unless one is already running for the same object.

        A running aggregator keeps its task but picks up the replica count of
        the newer spec.

        Returns:
            True if a new task was started, False if one was already running
        """
        key = (aggregator.namespace, aggregator.name)
        if self.is_running(*key):
            running = self._entries[key][0]
            if running.replicas != aggregator.replicas:
                logger.info(
                    f"SpireServer {key[0]}/{key[1]} replicas changed "
                    f"{running.replicas} -> {aggregator.replicas}"
                )
                running.replicas = aggregator.replicas
            return False

        previous = self._entries.pop(key, None)
        if previous is not None:
            self._log_finished(key, previous[1])

        task = asyncio.create_task(aggregator.run(), name=f"health-{key[0]}-{key[1]}")
        self._entries[key] = (aggregator, task)
        self._update_gauge()
        return True

    async def stop(self, namespace: str, name: str) -> bool:
        """Stop and join the aggregator for an object.

        Returns:
            True if an aggregator was registered for the object
        """
        entry = self._entries.pop((namespace, name), None)
        if entry is None:
            return False
        aggregator, task = entry
        aggregator.stop()
        # join without re-raising the task's own outcome
        await asyncio.wait([task])
        if task.cancelled():
            logger.warning(f"Health aggregator for {namespace}/{name} was cancelled")
        elif task.exception() is not None:
            logger.warning(f"Health aggregator for {namespace}/{name} had failed: {task.exception()}")
        self._update_gauge()
        return True

    async def stop_all(self) -> None:
        for namespace, name in list(self._entries.keys()):
            await self.stop(namespace, name)

    def keys(self) -> List[Tuple[str, str]]:
        return sorted(self._entries.keys())

    def _log_finished(self, key: Tuple[str, str], task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Restarting health aggregator for {key[0]}/{key[1]} after failure: {exc}")

    def _update_gauge(self) -> None:
        active_aggregators.set(sum(1 for _, task in self._entries.values() if not task.done()))


__all__ = [
    "classify_pod",
    "aggregate_health",
    "HealthAggregator",
    "AggregatorRegistry",
]
