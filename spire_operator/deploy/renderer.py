"""SPIRE configuration renderer (server.conf / agent.conf).

Configuration is assembled from an ordered list of typed blocks rather than
string concatenation. Every value interpolated from a spec passes through
``_quote`` so quotes, backslashes and newlines cannot break out of a string.
"""
from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Optional, Union

from spire_operator import settings
from spire_operator.schemas import (
    AGENT_CONFIG_FILE,
    SERVER_CONFIG_FILE,
    AgentSpec,
    RenderedConfig,
    ServerSpec,
)

INDENT = "  "

DATA_DIR = "/run/spire/data"
SERVER_SOCKET_PATH = "/tmp/spire-server/private/api.sock"
AGENT_DATA_DIR = "/run/spire"
AGENT_SOCKET_PATH = "/run/spire/sockets/agent.sock"
TRUST_BUNDLE_PATH = "/run/spire/bundle/bundle.crt"
SERVER_SERVICE_NAME = "spire-service"
BUNDLE_CONFIG_MAP = "spire-bundle"
AGENT_SERVICE_ACCOUNT = "spire-agent"

HEALTH_PORT = 8080
LIVE_PATH = "/live"
READY_PATH = "/ready"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Attribute:
    """``key = value`` line inside a block."""

    def __init__(self, key: str, value: Any):
        self.key = key
        self.value = value


class Block:
    """``kind "label" { ... }`` block holding attributes and nested blocks."""

    def __init__(self, kind: str, label: Optional[str] = None, body: Optional[List[Union["Block", Attribute]]] = None):
        self.kind = kind
        self.label = label
        self.body: List[Union[Block, Attribute]] = list(body or [])

    def attr(self, key: str, value: Any) -> "Block":
        self.body.append(Attribute(key, value))
        return self

    def block(self, child: "Block") -> "Block":
        self.body.append(child)
        return self


def _quote(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace("\"", "\\\"")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f"\"{escaped}\""


def _render_key(key: str) -> str:
    return key if _IDENTIFIER_RE.match(key) else _quote(key)


def _render_value(value: Any, depth: int) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, (list, tuple)):
        if not value:
            return "[]"
        return "[ " + ", ".join(_render_value(item, depth) for item in value) + " ]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        prefix = INDENT * (depth + 1)
        lines = ["{"]
        for key, item in value.items():
            lines.append(f"{prefix}{_render_key(key)} = {_render_value(item, depth + 1)}")
        lines.append(f"{INDENT * depth}}}")
        return "\n".join(lines)
    raise TypeError(f"Unsupported config value type: {type(value).__name__}")


def _render_block(block: Block, depth: int, lines: List[str]) -> None:
    prefix = INDENT * depth
    header = block.kind if block.label is None else f"{block.kind} {_quote(block.label)}"
    if not block.body:
        lines.append(f"{prefix}{header} {{}}")
        return
    lines.append(f"{prefix}{header} {{")
    previous: Optional[Union[Block, Attribute]] = None
    for item in block.body:
        if isinstance(item, Block):
            # blank line between sibling plugin blocks
            if isinstance(previous, Block) and depth == 0:
                lines.append("")
            _render_block(item, depth + 1, lines)
        else:
            lines.append(f"{prefix}{INDENT}{item.key} = {_render_value(item.value, depth + 1)}")
        previous = item
    lines.append(f"{prefix}}}")


def render_blocks(blocks: List[Block]) -> str:
    """Render top-level blocks separated by blank lines."""
    lines: List[str] = []
    for index, block in enumerate(blocks):
        if index:
            lines.append("")
        _render_block(block, 0, lines)
    return "\n".join(lines) + "\n"


def _plugin(kind: str, name: str, plugin_data: Optional[Dict[str, Any]] = None) -> Block:
    plugin = Block(kind, name)
    if plugin_data is None:
        return plugin
    data = Block("plugin_data")
    for key, value in plugin_data.items():
        data.attr(key, value)
    return plugin.block(data)


def _agent_allow_list(namespace: str) -> List[str]:
    return [f"{namespace}:{AGENT_SERVICE_ACCOUNT}"]


# Node attestor templates, keyed by attestor name
def _server_k8s_sat(namespace: str) -> Block:
    return _plugin("NodeAttestor", "k8s_sat", {
        "clusters": {
            settings.CLUSTER_NAME: {
                "use_token_review_api_validation": True,
                "service_account_allow_list": _agent_allow_list(namespace),
            }
        }
    })


def _server_k8s_psat(namespace: str) -> Block:
    return _plugin("NodeAttestor", "k8s_psat", {
        "clusters": {
            settings.CLUSTER_NAME: {
                "service_account_allow_list": _agent_allow_list(namespace),
            }
        }
    })


def _join_token(namespace: str) -> Block:
    return _plugin("NodeAttestor", "join_token", {})


def _agent_k8s_sat(namespace: str) -> Block:
    return _plugin("NodeAttestor", "k8s_sat", {"cluster": settings.CLUSTER_NAME})


def _agent_k8s_psat(namespace: str) -> Block:
    return _plugin("NodeAttestor", "k8s_psat", {"cluster": settings.CLUSTER_NAME})


SERVER_NODE_ATTESTORS: Dict[str, Callable[[str], Block]] = {
    "k8s_sat": _server_k8s_sat,
    "k8s_psat": _server_k8s_psat,
    "join_token": _join_token,
}

AGENT_NODE_ATTESTORS: Dict[str, Callable[[str], Block]] = {
    "k8s_sat": _agent_k8s_sat,
    "k8s_psat": _agent_k8s_psat,
    "join_token": _join_token,
}

WORKLOAD_ATTESTORS: Dict[str, Callable[[], Block]] = {
    "k8s": lambda: _plugin("WorkloadAttestor", "k8s", {"skip_kubelet_verification": True}),
    "unix": lambda: _plugin("WorkloadAttestor", "unix", {}),
    "docker": lambda: _plugin("WorkloadAttestor", "docker", {}),
    "systemd": lambda: _plugin("WorkloadAttestor", "systemd"),
    "windows": lambda: _plugin("WorkloadAttestor", "windows"),
}


def _key_manager(key_storage: str, disk_data: Dict[str, Any]) -> Block:
    if key_storage == "disk":
        return _plugin("KeyManager", "disk", disk_data)
    return _plugin("KeyManager", key_storage, {})


def _health_checks() -> Block:
    return (
        Block("health_checks")
        .attr("listener_enabled", True)
        .attr("bind_address", "0.0.0.0")
        .attr("bind_port", str(HEALTH_PORT))
        .attr("live_path", LIVE_PATH)
        .attr("ready_path", READY_PATH)
    )


def server_config_blocks(spec: ServerSpec, namespace: str) -> List[Block]:
    server = (
        Block("server")
        .attr("bind_address", "0.0.0.0")
        .attr("bind_port", str(spec.port))
        .attr("socket_path", SERVER_SOCKET_PATH)
        .attr("trust_domain", spec.trust_domain)
        .attr("data_dir", DATA_DIR)
        .attr("log_level", settings.SPIRE_LOG_LEVEL)
        .attr("ca_key_type", "rsa-2048")
        .attr("ca_subject", {
            "country": ["US"],
            "organization": ["SPIFFE"],
            "common_name": "",
        })
    )

    plugins = Block("plugins")
    plugins.block(_plugin("DataStore", "sql", {
        "database_type": spec.data_store or "sqlite3",
        "connection_string": spec.connection_string or f"{DATA_DIR}/datastore.sqlite3",
    }))
    for attestor in spec.node_attestors:
        template = SERVER_NODE_ATTESTORS.get(attestor)
        if template is None:
            continue
        plugins.block(template(namespace))
    plugins.block(_key_manager(spec.canonical_key_storage, {"keys_path": f"{DATA_DIR}/keys.json"}))
    plugins.block(_plugin("Notifier", "k8sbundle", {
        "namespace": namespace,
        "config_map": BUNDLE_CONFIG_MAP,
    }))

    return [server, plugins, _health_checks()]


def agent_config_blocks(spec: AgentSpec, namespace: str) -> List[Block]:
    agent = (
        Block("agent")
        .attr("data_dir", AGENT_DATA_DIR)
        .attr("log_level", settings.SPIRE_LOG_LEVEL)
        .attr("server_address", SERVER_SERVICE_NAME)
        .attr("server_port", str(spec.port))
        .attr("socket_path", AGENT_SOCKET_PATH)
        .attr("trust_bundle_path", TRUST_BUNDLE_PATH)
        .attr("trust_domain", spec.trust_domain)
    )

    plugins = Block("plugins")
    template = AGENT_NODE_ATTESTORS.get(spec.node_attestor)
    if template is not None:
        plugins.block(template(namespace))
    plugins.block(_key_manager(spec.canonical_key_storage, {"directory": AGENT_DATA_DIR}))
    for attestor in spec.workload_attestors:
        workload_template = WORKLOAD_ATTESTORS.get(attestor)
        if workload_template is None:
            continue
        plugins.block(workload_template())

    return [agent, plugins, _health_checks()]


def render_server_config(spec: ServerSpec, namespace: str) -> RenderedConfig:
    """Render server.conf for a validated SpireServer spec."""
    return {SERVER_CONFIG_FILE: render_blocks(server_config_blocks(spec, namespace))}


def render_agent_config(spec: AgentSpec, namespace: str) -> RenderedConfig:
    """Render agent.conf for a validated SpireAgent spec."""
    return {AGENT_CONFIG_FILE: render_blocks(agent_config_blocks(spec, namespace))}


__all__ = ["render_server_config", "render_agent_config", "render_blocks", "Block", "Attribute"]
