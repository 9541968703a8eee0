"""Cluster API client used by the applier, health aggregator and reconciler."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from spire_operator import settings
from spire_operator.exceptions import ObjectNotFound
from spire_operator.schemas import AGENT_KIND, SERVER_KIND, ResourceDescriptor, ResourceKind

logger = logging.getLogger(__name__)

PLURALS = {
    SERVER_KIND: "spireservers",
    AGENT_KIND: "spireagents",
}


class ClusterClient(Protocol):
    """Typed cluster operations the operator core depends on."""

    def get_object(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        ...

    def list_objects(self, kind: str, namespace: str) -> List[Dict[str, Any]]:
        ...

    def delete_object(self, kind: str, namespace: str, name: str) -> None:
        ...

    def create(self, descriptor: ResourceDescriptor) -> None:
        ...

    def list_pods(self, namespace: str, label_selector: str) -> List[Any]:
        ...

    def patch_status(self, kind: str, namespace: str, name: str, status: Dict[str, Any]) -> None:
        ...


def load_kube_config() -> None:
    """Load in-cluster config, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded local Kubernetes config")


class KubernetesClusterClient:
    """ClusterClient backed by the official kubernetes client."""

    def __init__(self, api_client: client.ApiClient = None):
        self.core = client.CoreV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)
        self.rbac = client.RbacAuthorizationV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)

    def get_object(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        try:
            return self.custom.get_namespaced_custom_object(
                settings.CRD_GROUP, settings.CRD_VERSION, namespace, PLURALS[kind], name
            )
        except ApiException as exc:
            if exc.status == 404:
                raise ObjectNotFound(kind, namespace, name) from exc
            raise

    def list_objects(self, kind: str, namespace: str) -> List[Dict[str, Any]]:
        result = self.custom.list_namespaced_custom_object(
            settings.CRD_GROUP, settings.CRD_VERSION, namespace, PLURALS[kind]
        )
        return result.get("items", [])

    def delete_object(self, kind: str, namespace: str, name: str) -> None:
        try:
            self.custom.delete_namespaced_custom_object(
                settings.CRD_GROUP, settings.CRD_VERSION, namespace, PLURALS[kind], name
            )
        except ApiException as exc:
            if exc.status == 404:
                raise ObjectNotFound(kind, namespace, name) from exc
            raise

    def _creator(self, kind: ResourceKind):
        return {
            ResourceKind.SERVICE_ACCOUNT: self.core.create_namespaced_service_account,
            ResourceKind.ROLE: self.rbac.create_namespaced_role,
            ResourceKind.ROLE_BINDING: self.rbac.create_namespaced_role_binding,
            ResourceKind.CLUSTER_ROLE: self.rbac.create_cluster_role,
            ResourceKind.CLUSTER_ROLE_BINDING: self.rbac.create_cluster_role_binding,
            ResourceKind.CONFIG_MAP: self.core.create_namespaced_config_map,
            ResourceKind.STATEFUL_SET: self.apps.create_namespaced_stateful_set,
            ResourceKind.DAEMON_SET: self.apps.create_namespaced_daemon_set,
            ResourceKind.SERVICE: self.core.create_namespaced_service,
        }[kind]

    def create(self, descriptor: ResourceDescriptor) -> None:
        """Create a planned resource; an existing object of the same name is success."""
        create = self._creator(descriptor.kind)
        try:
            if descriptor.namespaced:
                create(namespace=descriptor.namespace, body=descriptor.payload)
            else:
                create(body=descriptor.payload)
        except ApiException as exc:
            if exc.status == 409:
                logger.debug(f"{descriptor.kind.value} {descriptor.name} already exists")
                return
            raise

    def list_pods(self, namespace: str, label_selector: str) -> List[Any]:
        return self.core.list_namespaced_pod(namespace=namespace, label_selector=label_selector).items

    def patch_status(self, kind: str, namespace: str, name: str, status: Dict[str, Any]) -> None:
        self.custom.patch_namespaced_custom_object_status(
            settings.CRD_GROUP, settings.CRD_VERSION, namespace, PLURALS[kind], name, {"status": status}
        )


__all__ = ["ClusterClient", "KubernetesClusterClient", "load_kube_config"]
