"""Desired-state spec to ordered cluster resources (deterministic, no side effects)."""
from __future__ import annotations

from typing import Dict, List

from kubernetes.client.models import (
    RbacV1Subject,
    V1ClusterRole,
    V1ClusterRoleBinding,
    V1ConfigMap,
    V1ConfigMapVolumeSource,
    V1Container,
    V1ContainerPort,
    V1DaemonSet,
    V1DaemonSetSpec,
    V1HostPathVolumeSource,
    V1HTTPGetAction,
    V1LabelSelector,
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1PodSpec,
    V1PodTemplateSpec,
    V1PolicyRule,
    V1Probe,
    V1Role,
    V1RoleBinding,
    V1RoleRef,
    V1Service,
    V1ServiceAccount,
    V1ServicePort,
    V1ServiceSpec,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1Volume,
    V1VolumeMount,
    V1VolumeResourceRequirements,
)

from spire_operator import settings
from spire_operator.deploy.renderer import (
    AGENT_SERVICE_ACCOUNT,
    BUNDLE_CONFIG_MAP,
    DATA_DIR,
    HEALTH_PORT,
    LIVE_PATH,
    READY_PATH,
    SERVER_SERVICE_NAME,
)
from spire_operator.schemas import (
    AGENT_CONFIG_FILE,
    SERVER_CONFIG_FILE,
    AgentSpec,
    RenderedConfig,
    ResourceDescriptor,
    ResourceKind,
    ServerSpec,
)

SERVER_NAME = "spire-server"
SERVER_CONFIG_MAP = "spire-config-map"
SERVER_ROLE = "spire-server-configmap-role"
SERVER_ROLE_BINDING = "spire-server-configmap-role-binding"
SERVER_CLUSTER_ROLE = "spire-server-trust-role"
SERVER_CLUSTER_ROLE_BINDING = "spire-server-trust-role-binding"
SERVER_DATA_VOLUME = "spire-data"

AGENT_NAME = "spire-agent"
AGENT_CLUSTER_ROLE = "spire-agent-cluster-role"
AGENT_CLUSTER_ROLE_BINDING = "spire-agent-cluster-role-binding"
AGENT_SOCKET_DIR = "/run/spire/sockets"

CONFIG_DIR = "/run/spire/config"
BUNDLE_DIR = "/run/spire/bundle"
RBAC_API_GROUP = "rbac.authorization.k8s.io"

SERVER_LABELS = {"app": SERVER_NAME}
AGENT_LABELS = {"app": AGENT_NAME}


def _descriptor(payload, kind: ResourceKind, order: int, namespace: str = None) -> ResourceDescriptor:
    return ResourceDescriptor(
        name=payload.metadata.name,
        kind=kind,
        namespaced=namespace is not None,
        namespace=namespace,
        creation_order=order,
        payload=payload,
    )


def _meta(name: str, namespace: str = None, labels: Dict[str, str] = None) -> V1ObjectMeta:
    return V1ObjectMeta(name=name, namespace=namespace, labels=dict(labels) if labels else None)


def _service_account(name: str, namespace: str) -> V1ServiceAccount:
    return V1ServiceAccount(api_version="v1", kind="ServiceAccount", metadata=_meta(name, namespace))


def _subject(service_account: str, namespace: str) -> RbacV1Subject:
    return RbacV1Subject(kind="ServiceAccount", name=service_account, namespace=namespace)


def _config_map(name: str, namespace: str, data: Dict[str, str] = None) -> V1ConfigMap:
    return V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=_meta(name, namespace),
        data=dict(data) if data is not None else None,
    )


def _health_probes():
    liveness = V1Probe(
        http_get=V1HTTPGetAction(path=LIVE_PATH, port=HEALTH_PORT),
        failure_threshold=2,
        initial_delay_seconds=15,
        period_seconds=60,
        timeout_seconds=3,
    )
    readiness = V1Probe(
        http_get=V1HTTPGetAction(path=READY_PATH, port=HEALTH_PORT),
        initial_delay_seconds=5,
        period_seconds=5,
    )
    return liveness, readiness


def _config_volume(config_map_name: str, volume_name: str = "spire-config") -> V1Volume:
    return V1Volume(name=volume_name, config_map=V1ConfigMapVolumeSource(name=config_map_name))


def _server_stateful_set(spec: ServerSpec, namespace: str) -> V1StatefulSet:
    liveness, readiness = _health_probes()
    container = V1Container(
        name=SERVER_NAME,
        image=settings.SERVER_IMAGE,
        args=["-config", f"{CONFIG_DIR}/{SERVER_CONFIG_FILE}"],
        ports=[V1ContainerPort(container_port=spec.port)],
        volume_mounts=[
            V1VolumeMount(name="spire-config", mount_path=CONFIG_DIR, read_only=True),
            V1VolumeMount(name=SERVER_DATA_VOLUME, mount_path=DATA_DIR, read_only=False),
        ],
        liveness_probe=liveness,
        readiness_probe=readiness,
    )
    claim = V1PersistentVolumeClaim(
        metadata=_meta(SERVER_DATA_VOLUME, namespace),
        spec=V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteOnce"],
            resources=V1VolumeResourceRequirements(requests={"storage": settings.DATA_STORAGE_SIZE}),
        ),
    )
    return V1StatefulSet(
        api_version="apps/v1",
        kind="StatefulSet",
        metadata=_meta(SERVER_NAME, namespace, SERVER_LABELS),
        spec=V1StatefulSetSpec(
            replicas=spec.replicas,
            service_name=SERVER_SERVICE_NAME,
            selector=V1LabelSelector(match_labels=dict(SERVER_LABELS)),
            template=V1PodTemplateSpec(
                metadata=_meta(None, namespace, SERVER_LABELS),
                spec=V1PodSpec(
                    service_account_name=SERVER_NAME,
                    containers=[container],
                    volumes=[_config_volume(SERVER_CONFIG_MAP)],
                ),
            ),
            volume_claim_templates=[claim],
        ),
    )


def plan_server_resources(spec: ServerSpec, namespace: str, config: RenderedConfig) -> List[ResourceDescriptor]:
    """Plan the resources backing a SpireServer, in creation order."""
    subject = _subject(SERVER_NAME, namespace)

    role = V1Role(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="Role",
        metadata=_meta(SERVER_ROLE, namespace),
        rules=[V1PolicyRule(api_groups=[""], resources=["configmaps"], verbs=["patch", "get", "list"])],
    )
    role_binding = V1RoleBinding(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="RoleBinding",
        metadata=_meta(SERVER_ROLE_BINDING, namespace),
        subjects=[subject],
        role_ref=V1RoleRef(api_group=RBAC_API_GROUP, kind="Role", name=SERVER_ROLE),
    )
    cluster_role = V1ClusterRole(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="ClusterRole",
        metadata=_meta(SERVER_CLUSTER_ROLE),
        rules=[V1PolicyRule(api_groups=["authentication.k8s.io"], resources=["tokenreviews"], verbs=["create"])],
    )
    cluster_role_binding = V1ClusterRoleBinding(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="ClusterRoleBinding",
        metadata=_meta(SERVER_CLUSTER_ROLE_BINDING),
        subjects=[subject],
        role_ref=V1RoleRef(api_group=RBAC_API_GROUP, kind="ClusterRole", name=SERVER_CLUSTER_ROLE),
    )
    service = V1Service(
        api_version="v1",
        kind="Service",
        metadata=_meta(SERVER_SERVICE_NAME, namespace, SERVER_LABELS),
        spec=V1ServiceSpec(
            selector=dict(SERVER_LABELS),
            ports=[V1ServicePort(name="grpc", port=spec.port, target_port=spec.port, protocol="TCP")],
        ),
    )

    return [
        _descriptor(_service_account(SERVER_NAME, namespace), ResourceKind.SERVICE_ACCOUNT, 1, namespace),
        _descriptor(role, ResourceKind.ROLE, 2, namespace),
        _descriptor(role_binding, ResourceKind.ROLE_BINDING, 3, namespace),
        _descriptor(cluster_role, ResourceKind.CLUSTER_ROLE, 4),
        _descriptor(cluster_role_binding, ResourceKind.CLUSTER_ROLE_BINDING, 5),
        _descriptor(_config_map(SERVER_CONFIG_MAP, namespace, config), ResourceKind.CONFIG_MAP, 6, namespace),
        # populated at runtime by the k8sbundle notifier
        _descriptor(_config_map(BUNDLE_CONFIG_MAP, namespace), ResourceKind.CONFIG_MAP, 7, namespace),
        _descriptor(_server_stateful_set(spec, namespace), ResourceKind.STATEFUL_SET, 8, namespace),
        _descriptor(service, ResourceKind.SERVICE, 9, namespace),
    ]


def _agent_daemon_set(spec: AgentSpec, namespace: str) -> V1DaemonSet:
    liveness, readiness = _health_probes()
    init_container = V1Container(
        name="init",
        image=settings.WAIT_IMAGE,
        args=["-t", "30", f"{SERVER_SERVICE_NAME}:{spec.port}"],
    )
    container = V1Container(
        name=AGENT_NAME,
        image=settings.AGENT_IMAGE,
        args=["-config", f"{CONFIG_DIR}/{AGENT_CONFIG_FILE}"],
        volume_mounts=[
            V1VolumeMount(name="spire-config", mount_path=CONFIG_DIR, read_only=True),
            V1VolumeMount(name=BUNDLE_CONFIG_MAP, mount_path=BUNDLE_DIR),
            V1VolumeMount(name="spire-agent-socket", mount_path=AGENT_SOCKET_DIR, read_only=False),
        ],
        liveness_probe=liveness,
        readiness_probe=readiness,
    )
    volumes = [
        _config_volume(AGENT_NAME),
        _config_volume(BUNDLE_CONFIG_MAP, BUNDLE_CONFIG_MAP),
        V1Volume(
            name="spire-agent-socket",
            host_path=V1HostPathVolumeSource(path=AGENT_SOCKET_DIR, type="DirectoryOrCreate"),
        ),
    ]
    return V1DaemonSet(
        api_version="apps/v1",
        kind="DaemonSet",
        metadata=_meta(AGENT_NAME, namespace, AGENT_LABELS),
        spec=V1DaemonSetSpec(
            selector=V1LabelSelector(match_labels=dict(AGENT_LABELS)),
            template=V1PodTemplateSpec(
                metadata=_meta(None, namespace, AGENT_LABELS),
                spec=V1PodSpec(
                    host_pid=True,
                    host_network=True,
                    dns_policy="ClusterFirstWithHostNet",
                    service_account_name=AGENT_SERVICE_ACCOUNT,
                    init_containers=[init_container],
                    containers=[container],
                    volumes=volumes,
                ),
            ),
        ),
    )


def plan_agent_resources(spec: AgentSpec, namespace: str, config: RenderedConfig) -> List[ResourceDescriptor]:
    """Plan the resources backing a SpireAgent, in creation order."""
    cluster_role = V1ClusterRole(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="ClusterRole",
        metadata=_meta(AGENT_CLUSTER_ROLE),
        rules=[V1PolicyRule(api_groups=[""], resources=["pods", "nodes", "nodes/proxy"], verbs=["get"])],
    )
    cluster_role_binding = V1ClusterRoleBinding(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="ClusterRoleBinding",
        metadata=_meta(AGENT_CLUSTER_ROLE_BINDING),
        subjects=[_subject(AGENT_SERVICE_ACCOUNT, namespace)],
        role_ref=V1RoleRef(api_group=RBAC_API_GROUP, kind="ClusterRole", name=AGENT_CLUSTER_ROLE),
    )

    return [
        _descriptor(cluster_role, ResourceKind.CLUSTER_ROLE, 1),
        _descriptor(cluster_role_binding, ResourceKind.CLUSTER_ROLE_BINDING, 2),
        _descriptor(_service_account(AGENT_SERVICE_ACCOUNT, namespace), ResourceKind.SERVICE_ACCOUNT, 3, namespace),
        _descriptor(_config_map(AGENT_NAME, namespace, config), ResourceKind.CONFIG_MAP, 4, namespace),
        _descriptor(_agent_daemon_set(spec, namespace), ResourceKind.DAEMON_SET, 5, namespace),
    ]


__all__ = ["plan_server_resources", "plan_agent_resources", "SERVER_LABELS", "AGENT_LABELS"]
