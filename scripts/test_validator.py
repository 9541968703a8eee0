import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from spire_operator.deploy.validator import (  # noqa: E402
    is_valid_agent_spec,
    is_valid_server_spec,
    validate_agent_spec,
    validate_server_spec,
)
from spire_operator.exceptions import ValidationRejection  # noqa: E402
from spire_operator.schemas import AgentSpec, ServerReference, ServerSpec  # noqa: E402


def server_spec(**overrides):
    fields = {
        "trustDomain": "example.org",
        "port": 8081,
        "nodeAttestors": ["k8s_sat"],
        "keyStorage": "disk",
        "replicas": 1,
        "dataStore": "sqlite3",
        "connectionString": "/data/store.db",
    }
    fields.update(overrides)
    return ServerSpec.model_validate(fields)


def agent_spec(**overrides):
    fields = {
        "trustDomain": "example.org",
        "port": 8081,
        "nodeAttestor": "k8s_sat",
        "workloadAttestors": ["k8s", "unix"],
        "keyStorage": "memory",
    }
    fields.update(overrides)
    return AgentSpec.model_validate(fields)


def rejection_field(validate, spec, *args):
    with pytest.raises(ValidationRejection) as excinfo:
        validate(spec, *args)
    return excinfo.value.field


def test_valid_server_spec_is_accepted_and_idempotent():
    spec = server_spec()
    assert is_valid_server_spec(spec) == (True, None)
    assert is_valid_server_spec(spec) == (True, None)


@pytest.mark.parametrize("trust_domain", ["", "example", "exa_mple.org", "example.o", "example.org1", "a.org", "ex ample.org", "example.org\n"])
def test_invalid_trust_domain_is_rejected(trust_domain):
    assert rejection_field(validate_server_spec, server_spec(trustDomain=trust_domain)) == "trustDomain"
    assert rejection_field(validate_agent_spec, agent_spec(trustDomain=trust_domain)) == "trustDomain"


@pytest.mark.parametrize("trust_domain", ["example.org", "spire.prod.example.com", "my-org.io", "10.example.net"])
def test_valid_trust_domains(trust_domain):
    validate_server_spec(server_spec(trustDomain=trust_domain))


@pytest.mark.parametrize("port", [-1, 65536, 100000])
def test_port_out_of_range_is_rejected(port):
    assert rejection_field(validate_server_spec, server_spec(port=port)) == "port"
    assert rejection_field(validate_agent_spec, agent_spec(port=port)) == "port"


@pytest.mark.parametrize("port", [0, 65535])
def test_port_bounds_are_inclusive(port):
    validate_server_spec(server_spec(port=port))


@pytest.mark.parametrize("attestors", [[], ["x509pop"], ["k8s_sat", "aws_iid"], ["k8s_sat", "k8s_sat"]])
def test_server_node_attestors_are_rejected(attestors):
    assert rejection_field(validate_server_spec, server_spec(nodeAttestors=attestors)) == "nodeAttestors"


def test_all_supported_server_node_attestors():
    validate_server_spec(server_spec(nodeAttestors=["k8s_sat", "k8s_psat", "join_token"]))


@pytest.mark.parametrize("attestors", [[], ["kubernetes"], ["unix", "podman"]])
def test_agent_workload_attestors_are_rejected(attestors):
    assert rejection_field(validate_agent_spec, agent_spec(workloadAttestors=attestors)) == "workloadAttestors"


def test_agent_unsupported_node_attestor_is_rejected():
    assert rejection_field(validate_agent_spec, agent_spec(nodeAttestor="x509pop")) == "nodeAttestor"


def test_key_storage_is_case_insensitive():
    validate_server_spec(server_spec(keyStorage="DISK"))
    validate_server_spec(server_spec(keyStorage="Memory"))
    assert rejection_field(validate_server_spec, server_spec(keyStorage="tpm")) == "keyStorage"


def test_replicas_must_be_positive():
    assert rejection_field(validate_server_spec, server_spec(replicas=0, dataStore="postgres")) == "replicas"


def test_sqlite_with_multiple_replicas_is_rejected():
    ok, reason = is_valid_server_spec(server_spec(replicas=3))
    assert not ok
    assert "sqlite3" in reason


def test_postgres_with_multiple_replicas_is_accepted():
    validate_server_spec(server_spec(replicas=3, dataStore="postgres", connectionString="dbname=spire"))


def test_data_store_requires_connection_string():
    assert rejection_field(validate_server_spec, server_spec(connectionString="")) == "connectionString"


def test_unknown_data_store_is_rejected():
    assert rejection_field(validate_server_spec, server_spec(dataStore="mongodb")) == "dataStore"


def test_data_store_is_optional():
    validate_server_spec(server_spec(dataStore=None, connectionString=None, replicas=2))


def test_first_failing_rule_wins():
    spec = server_spec(trustDomain="", port=-1, nodeAttestors=[])
    assert rejection_field(validate_server_spec, spec) == "trustDomain"


def test_agent_checked_against_server_reference():
    server = ServerReference(port=8081, node_attestors=["k8s_psat"])
    assert rejection_field(validate_agent_spec, agent_spec(), server) == "nodeAttestor"
    assert rejection_field(validate_agent_spec, agent_spec(port=9000, nodeAttestor="k8s_psat"), server) == "port"
    assert is_valid_agent_spec(agent_spec(nodeAttestor="k8s_psat"), server) == (True, None)


def test_agent_accepts_crd_shaped_fields():
    spec = AgentSpec.model_validate({
        "trustDomain": "example.org",
        "serverPort": 8081,
        "nodeAttestor": "join_token",
        "workloadAttestors": [{"name": "docker"}, {"name": "systemd"}],
        "keyStorage": "disk",
    })
    assert spec.port == 8081
    assert spec.workload_attestors == ["docker", "systemd"]
    validate_agent_spec(spec)
