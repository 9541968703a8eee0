"""Reconciler for SpireServer and SpireAgent objects."""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from pydantic import ValidationError

from spire_operator.deploy.applier import apply_resources
from spire_operator.deploy.cluster import ClusterClient
from spire_operator.deploy.health import AggregatorRegistry, HealthAggregator, write_health
from spire_operator.deploy.planner import plan_agent_resources, plan_server_resources
from spire_operator.deploy.renderer import render_agent_config, render_server_config
from spire_operator.deploy.validator import validate_agent_spec, validate_server_spec
from spire_operator.exceptions import ApplyFailure, ObjectNotFound, ValidationRejection
from spire_operator.logs import correlation_id_context
from spire_operator.observability.metrics import reconciles_total
from spire_operator.schemas import (
    AGENT_KIND,
    SERVER_KIND,
    AgentSpec,
    HealthStatus,
    ReconcileResult,
    ServerReference,
    ServerSpec,
)

logger = logging.getLogger(__name__)


def parse_server_spec(obj: Dict[str, Any]) -> ServerSpec:
    try:
        return ServerSpec.model_validate(obj.get("spec") or {})
    except ValidationError as exc:
        raise ValidationRejection(f"SpireServer spec is malformed: {exc.errors()[0]['msg']}") from exc


def parse_agent_spec(obj: Dict[str, Any]) -> AgentSpec:
    try:
        return AgentSpec.model_validate(obj.get("spec") or {})
    except ValidationError as exc:
        raise ValidationRejection(f"SpireAgent spec is malformed: {exc.errors()[0]['msg']}") from exc


class Reconciler:
    """Drives fetch -> validate -> render/plan/apply -> observe per request.

    Distinct objects may be reconciled concurrently; no state is shared
    between reconciliations apart from the aggregator registry.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        registry: Optional[AggregatorRegistry] = None,
        health_interval_seconds: Optional[float] = None,
    ):
        self.cluster = cluster
        self.registry = registry or AggregatorRegistry()
        self.health_interval_seconds = health_interval_seconds

    def _fetch(self, kind: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            return self.cluster.get_object(kind, namespace, name)
        except ObjectNotFound:
            logger.info(f"{kind} {namespace}/{name} not found; nothing to reconcile")
            return None

    def _reject(self, kind: str, namespace: str, name: str, exc: ValidationRejection) -> ReconcileResult:
        logger.error(
            f"Failed to validate {kind} {namespace}/{name} so cannot deploy it: {exc.reason}. "
            f"Deleting the object."
        )
        try:
            self.cluster.delete_object(kind, namespace, name)
        except ObjectNotFound:
            pass
        reconciles_total.labels(kind=kind, result=ReconcileResult.REJECTED.value).inc()
        return ReconcileResult.REJECTED

    async def reconcile_server(self, namespace: str, name: str) -> ReconcileResult:
        """Reconcile one SpireServer.

        Raises:
            ApplyFailure: if a resource could not be created; retried on the next request
        """
        correlation_id_context.set(str(uuid.uuid4()))

        obj = self._fetch(SERVER_KIND, namespace, name)
        if obj is None:
            # the object is gone; its aggregator must not outlive it
            await self.registry.stop(namespace, name)
            reconciles_total.labels(kind=SERVER_KIND, result=ReconcileResult.NOT_FOUND.value).inc()
            return ReconcileResult.NOT_FOUND

        try:
            spec = parse_server_spec(obj)
            validate_server_spec(spec)
        except ValidationRejection as exc:
            await self.registry.stop(namespace, name)
            return self._reject(SERVER_KIND, namespace, name, exc)

        config = render_server_config(spec, namespace)
        descriptors = plan_server_resources(spec, namespace, config)
        try:
            apply_resources(self.cluster, descriptors, kind=SERVER_KIND)
        except ApplyFailure:
            reconciles_total.labels(kind=SERVER_KIND, result="apply_failed").inc()
            raise

        aggregator = HealthAggregator(
            self.cluster, namespace, name, spec.replicas, self.health_interval_seconds
        )
        if self.registry.start(aggregator):
            write_health(self.cluster, namespace, name, HealthStatus.INITIALIZING)

        logger.info(f"Reconciled SpireServer {namespace}/{name} ({len(descriptors)} resources)")
        reconciles_total.labels(kind=SERVER_KIND, result=ReconcileResult.APPLIED.value).inc()
        return ReconcileResult.APPLIED

    def _server_reference(self, namespace: str) -> Optional[ServerReference]:
        servers = self.cluster.list_objects(SERVER_KIND, namespace)
        if not servers:
            return None
        try:
            return ServerReference.from_server_spec(parse_server_spec(servers[0]))
        except ValidationRejection as exc:
            logger.warning(f"Ignoring malformed SpireServer in namespace {namespace}: {exc.reason}")
            return None

    async def reconcile_agent(self, namespace: str, name: str) -> ReconcileResult:
        """Reconcile one SpireAgent. Agents report no status.

        Raises:
            ApplyFailure: if a resource could not be created; retried on the next request
        """
        correlation_id_context.set(str(uuid.uuid4()))

        obj = self._fetch(AGENT_KIND, namespace, name)
        if obj is None:
            reconciles_total.labels(kind=AGENT_KIND, result=ReconcileResult.NOT_FOUND.value).inc()
            return ReconcileResult.NOT_FOUND

        try:
            spec = parse_agent_spec(obj)
            server = self._server_reference(namespace)
            if server is None:
                logger.warning(
                    f"No SpireServer in namespace {namespace}; validating SpireAgent {name} "
                    f"without server cross-checks"
                )
            validate_agent_spec(spec, server)
        except ValidationRejection as exc:
            return self._reject(AGENT_KIND, namespace, name, exc)

        config = render_agent_config(spec, namespace)
        descriptors = plan_agent_resources(spec, namespace, config)
        try:
            apply_resources(self.cluster, descriptors, kind=AGENT_KIND)
        except ApplyFailure:
            reconciles_total.labels(kind=AGENT_KIND, result="apply_failed").inc()
            raise

        logger.info(f"Reconciled SpireAgent {namespace}/{name} ({len(descriptors)} resources)")
        reconciles_total.labels(kind=AGENT_KIND, result=ReconcileResult.APPLIED.value).inc()
        return ReconcileResult.APPLIED


__all__ = ["Reconciler", "parse_server_spec", "parse_agent_spec"]
