import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from spire_operator.deploy.planner import plan_agent_resources, plan_server_resources  # noqa: E402
from spire_operator.deploy.renderer import render_agent_config, render_server_config  # noqa: E402
from spire_operator.schemas import AgentSpec, ResourceKind, ServerSpec  # noqa: E402


def server_plan(namespace="spire", **overrides):
    fields = {
        "trustDomain": "example.org",
        "port": 8081,
        "nodeAttestors": ["k8s_psat"],
        "keyStorage": "disk",
        "replicas": 2,
        "dataStore": "postgres",
        "connectionString": "dbname=spire",
    }
    fields.update(overrides)
    spec = ServerSpec.model_validate(fields)
    return plan_server_resources(spec, namespace, render_server_config(spec, namespace))


def agent_plan(namespace="spire"):
    spec = AgentSpec.model_validate({
        "trustDomain": "example.org",
        "port": 8081,
        "nodeAttestor": "k8s_psat",
        "workloadAttestors": ["k8s"],
        "keyStorage": "memory",
    })
    return plan_agent_resources(spec, namespace, render_agent_config(spec, namespace))


def test_server_plan_order_and_names():
    plan = server_plan()
    assert [(d.kind, d.name) for d in plan] == [
        (ResourceKind.SERVICE_ACCOUNT, "spire-server"),
        (ResourceKind.ROLE, "spire-server-configmap-role"),
        (ResourceKind.ROLE_BINDING, "spire-server-configmap-role-binding"),
        (ResourceKind.CLUSTER_ROLE, "spire-server-trust-role"),
        (ResourceKind.CLUSTER_ROLE_BINDING, "spire-server-trust-role-binding"),
        (ResourceKind.CONFIG_MAP, "spire-config-map"),
        (ResourceKind.CONFIG_MAP, "spire-bundle"),
        (ResourceKind.STATEFUL_SET, "spire-server"),
        (ResourceKind.SERVICE, "spire-service"),
    ]
    assert [d.creation_order for d in plan] == list(range(1, 10))


def test_server_plan_namespacing():
    plan = server_plan(namespace="test-namespace")
    for descriptor in plan:
        if descriptor.kind in (ResourceKind.CLUSTER_ROLE, ResourceKind.CLUSTER_ROLE_BINDING):
            assert not descriptor.namespaced
            assert descriptor.payload.metadata.namespace is None
        else:
            assert descriptor.namespaced
            assert descriptor.payload.metadata.namespace == "test-namespace"


def test_server_plan_is_deterministic():
    assert [d.name for d in server_plan()] == [d.name for d in server_plan()]
    assert server_plan()[5].payload.data == server_plan()[5].payload.data


def test_server_config_maps():
    by_name = {d.name: d for d in server_plan() if d.kind == ResourceKind.CONFIG_MAP}
    assert 'trust_domain = "example.org"' in by_name["spire-config-map"].payload.data["server.conf"]
    assert by_name["spire-bundle"].payload.data is None


def test_server_stateful_set():
    stateful_set = server_plan()[7].payload
    assert stateful_set.spec.replicas == 2
    assert stateful_set.spec.service_name == "spire-service"
    assert stateful_set.spec.selector.match_labels == {"app": "spire-server"}

    claim = stateful_set.spec.volume_claim_templates[0]
    assert claim.metadata.name == "spire-data"
    assert claim.spec.resources.requests == {"storage": "1Gi"}

    container = stateful_set.spec.template.spec.containers[0]
    assert container.args == ["-config", "/run/spire/config/server.conf"]
    assert container.ports[0].container_port == 8081
    assert container.liveness_probe.http_get.path == "/live"
    assert container.readiness_probe.http_get.path == "/ready"
    assert container.readiness_probe.http_get.port == 8080
    assert stateful_set.spec.template.spec.service_account_name == "spire-server"


def test_server_service_exposes_port():
    service = server_plan(port=9443)[8].payload
    assert service.spec.ports[0].port == 9443
    assert service.spec.selector == {"app": "spire-server"}


def test_server_rbac_rules():
    plan = server_plan()
    role, cluster_role = plan[1].payload, plan[3].payload
    assert role.rules[0].resources == ["configmaps"]
    assert role.rules[0].verbs == ["patch", "get", "list"]
    assert cluster_role.rules[0].resources == ["tokenreviews"]
    assert cluster_role.rules[0].verbs == ["create"]
    binding = plan[4].payload
    assert binding.subjects[0].name == "spire-server"
    assert binding.subjects[0].namespace == "spire"
    assert binding.role_ref.name == "spire-server-trust-role"


def test_agent_plan_order_and_names():
    plan = agent_plan()
    assert [(d.kind, d.name) for d in plan] == [
        (ResourceKind.CLUSTER_ROLE, "spire-agent-cluster-role"),
        (ResourceKind.CLUSTER_ROLE_BINDING, "spire-agent-cluster-role-binding"),
        (ResourceKind.SERVICE_ACCOUNT, "spire-agent"),
        (ResourceKind.CONFIG_MAP, "spire-agent"),
        (ResourceKind.DAEMON_SET, "spire-agent"),
    ]


def test_agent_daemon_set():
    daemon_set = agent_plan()[4].payload
    pod_spec = daemon_set.spec.template.spec
    assert pod_spec.host_pid is True
    assert pod_spec.host_network is True
    assert pod_spec.dns_policy == "ClusterFirstWithHostNet"
    assert pod_spec.init_containers[0].args == ["-t", "30", "spire-service:8081"]

    socket_volume = [v for v in pod_spec.volumes if v.host_path is not None][0]
    assert socket_volume.host_path.path == "/run/spire/sockets"
    assert socket_volume.host_path.type == "DirectoryOrCreate"
    assert pod_spec.containers[0].args == ["-config", "/run/spire/config/agent.conf"]
