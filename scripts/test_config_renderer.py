import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from spire_operator.deploy.renderer import (  # noqa: E402
    Block,
    render_agent_config,
    render_blocks,
    render_server_config,
)
from spire_operator.schemas import AgentSpec, ServerSpec  # noqa: E402


def example_server(**overrides):
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


def test_render_server_config_contains_core_settings():
    config = render_server_config(example_server(), "spire")
    assert list(config.keys()) == ["server.conf"]
    text = config["server.conf"]

    assert 'NodeAttestor "k8s_sat"' in text
    assert 'trust_domain = "example.org"' in text
    assert 'bind_port = "8081"' in text
    assert 'KeyManager "disk"' in text
    assert 'database_type = "sqlite3"' in text
    assert 'connection_string = "/data/store.db"' in text
    assert 'service_account_allow_list = [ "spire:spire-agent" ]' in text
    assert 'Notifier "k8sbundle"' in text


def test_render_server_config_is_byte_stable():
    first = render_server_config(example_server(), "spire")
    second = render_server_config(example_server(), "spire")
    assert first == second


def test_render_server_config_sections_in_order():
    text = render_server_config(example_server(), "spire")["server.conf"]
    assert text.startswith("server {\n")
    assert text.index("server {") < text.index("plugins {") < text.index("health_checks {")
    assert text.endswith("}\n")


def test_node_attestors_render_in_input_order():
    spec = example_server(nodeAttestors=["join_token", "k8s_psat", "k8s_sat"])
    text = render_server_config(spec, "spire")["server.conf"]
    positions = [text.index(f'NodeAttestor "{name}"') for name in ("join_token", "k8s_psat", "k8s_sat")]
    assert positions == sorted(positions)
    assert text.count("NodeAttestor ") == 3


def test_unknown_attestor_is_skipped():
    spec = example_server(nodeAttestors=["k8s_sat", "tpm"])
    text = render_server_config(spec, "spire")["server.conf"]
    assert text.count("NodeAttestor ") == 1


def test_key_storage_is_canonicalized():
    text = render_server_config(example_server(keyStorage="MEMORY"), "spire")["server.conf"]
    assert 'KeyManager "memory"' in text
    assert "keys_path" not in text


def test_default_data_store_when_unset():
    spec = example_server(dataStore=None, connectionString=None)
    text = render_server_config(spec, "spire")["server.conf"]
    assert 'connection_string = "/run/spire/data/datastore.sqlite3"' in text


def test_health_checks_block_is_fixed():
    text = render_server_config(example_server(), "spire")["server.conf"]
    expected = (
        "health_checks {\n"
        "  listener_enabled = true\n"
        '  bind_address = "0.0.0.0"\n'
        '  bind_port = "8080"\n'
        '  live_path = "/live"\n'
        '  ready_path = "/ready"\n'
        "}\n"
    )
    assert text.endswith(expected)


def test_render_agent_config():
    spec = AgentSpec.model_validate({
        "trustDomain": "example.org",
        "port": 8081,
        "nodeAttestor": "k8s_psat",
        "workloadAttestors": ["k8s", "systemd"],
        "keyStorage": "disk",
    })
    text = render_agent_config(spec, "spire")["agent.conf"]

    assert text.startswith("agent {\n")
    assert 'server_address = "spire-service"' in text
    assert 'server_port = "8081"' in text
    assert 'trust_domain = "example.org"' in text
    assert 'NodeAttestor "k8s_psat"' in text
    assert 'KeyManager "disk"' in text
    assert "skip_kubelet_verification = true" in text
    assert 'WorkloadAttestor "systemd" {}' in text
    assert text.index('WorkloadAttestor "k8s"') < text.index('WorkloadAttestor "systemd"')


def test_interpolated_values_are_escaped():
    block = Block("plugins").block(
        Block("NodeAttestor", 'odd"name').block(
            Block("plugin_data").attr("path", 'a"} evil { "b').attr("map", {"needs quote": "x\ny"})
        )
    )
    rendered = render_blocks([block])
    expected = (
        "plugins {\n"
        '  NodeAttestor "odd\\"name" {\n'
        "    plugin_data {\n"
        '      path = "a\\"} evil { \\"b"\n'
        "      map = {\n"
        '        "needs quote" = "x\\ny"\n'
        "      }\n"
        "    }\n"
        "  }\n"
        "}\n"
    )
    assert rendered == expected
