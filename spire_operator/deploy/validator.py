"""Domain validation for SPIRE desired-state specs (fail-fast, first rule wins)."""
from __future__ import annotations

import re
from typing import Iterable, Optional, Tuple

from spire_operator.exceptions import ValidationRejection
from spire_operator.schemas import AgentSpec, ServerReference, ServerSpec

SUPPORTED_NODE_ATTESTORS = ("k8s_sat", "k8s_psat", "join_token")
SUPPORTED_WORKLOAD_ATTESTORS = ("k8s", "unix", "docker", "systemd", "windows")
SUPPORTED_KEY_STORAGE = ("disk", "memory")
SUPPORTED_DATA_STORES = ("sqlite3", "postgres", "mysql")

# trust domain takes the same form as a DNS name
_TRUST_DOMAIN_RE = re.compile(r"^([a-zA-Z0-9][a-zA-Z0-9-]{0,60}[a-zA-Z0-9]\.)+[A-Za-z]{2,}$")


def _ensure(condition: bool, message: str, field: str) -> None:
    if not condition:
        raise ValidationRejection(message, field)


def _check_trust_domain(trust_domain: str) -> None:
    _ensure(bool(trust_domain), "trust domain must not be empty", "trustDomain")
    _ensure(
        _TRUST_DOMAIN_RE.fullmatch(trust_domain) is not None,
        f"trust domain '{trust_domain}' is not a valid DNS name",
        "trustDomain",
    )


def _check_port(port: int, field: str = "port") -> None:
    _ensure(0 <= port <= 65535, f"invalid port number {port}: must be within [0, 65535]", field)


def _check_attestor_set(attestors: Iterable[str], supported: Tuple[str, ...], label: str, field: str) -> None:
    attestors = list(attestors)
    _ensure(len(attestors) > 0, f"at least one {label} must be specified", field)
    for attestor in attestors:
        _ensure(
            attestor in supported,
            f"{label} '{attestor}' is not supported (supported: {', '.join(supported)})",
            field,
        )
    _ensure(len(set(attestors)) == len(attestors), f"{label} list contains duplicates", field)


def _check_key_storage(key_storage: str) -> None:
    _ensure(
        (key_storage or "").lower() in SUPPORTED_KEY_STORAGE,
        "generated key storage is only supported on disk or in memory",
        "keyStorage",
    )


def validate_server_spec(spec: ServerSpec) -> None:
    """Validate a SpireServer spec.

    Raises:
        ValidationRejection: describing the first rule that failed
    """
    _check_trust_domain(spec.trust_domain)
    _check_port(spec.port)
    _check_attestor_set(spec.node_attestors, SUPPORTED_NODE_ATTESTORS, "node attestor", "nodeAttestors")
    _check_key_storage(spec.key_storage)
    _ensure(spec.replicas >= 1, f"replicas must be at least 1, got {spec.replicas}", "replicas")

    if spec.data_store is not None:
        _ensure(
            spec.data_store in SUPPORTED_DATA_STORES,
            f"data store '{spec.data_store}' is not supported (supported: {', '.join(SUPPORTED_DATA_STORES)})",
            "dataStore",
        )
        _ensure(
            bool(spec.connection_string),
            "connection string is required when a data store is set",
            "connectionString",
        )
        # a single-writer embedded store cannot be shared across replicas
        _ensure(
            not (spec.data_store == "sqlite3" and spec.replicas > 1),
            f"data store sqlite3 cannot be used with {spec.replicas} replicas",
            "dataStore",
        )


def validate_agent_spec(spec: AgentSpec, server: Optional[ServerReference] = None) -> None:
    """Validate a SpireAgent spec.

    When ``server`` is given, the agent must target the server's port and use
    one of the server's node attestors.

    Raises:
        ValidationRejection: describing the first rule that failed
    """
    _check_trust_domain(spec.trust_domain)
    _check_port(spec.port)
    _ensure(
        spec.node_attestor in SUPPORTED_NODE_ATTESTORS,
        f"node attestor '{spec.node_attestor}' is not supported (supported: {', '.join(SUPPORTED_NODE_ATTESTORS)})",
        "nodeAttestor",
    )
    _check_attestor_set(
        spec.workload_attestors, SUPPORTED_WORKLOAD_ATTESTORS, "workload attestor", "workloadAttestors"
    )
    _check_key_storage(spec.key_storage)

    if server is not None:
        _ensure(
            spec.port == server.port,
            f"port {spec.port} does not correspond to a SPIRE server (server listens on {server.port})",
            "port",
        )
        _ensure(
            spec.node_attestor in server.node_attestors,
            f"node attestor '{spec.node_attestor}' is not supported by the server",
            "nodeAttestor",
        )


def is_valid_server_spec(spec: ServerSpec) -> Tuple[bool, Optional[str]]:
    try:
        validate_server_spec(spec)
    except ValidationRejection as exc:
        return False, exc.reason
    return True, None


def is_valid_agent_spec(spec: AgentSpec, server: Optional[ServerReference] = None) -> Tuple[bool, Optional[str]]:
    try:
        validate_agent_spec(spec, server)
    except ValidationRejection as exc:
        return False, exc.reason
    return True, None


__all__ = [
    "validate_server_spec",
    "validate_agent_spec",
    "is_valid_server_spec",
    "is_valid_agent_spec",
    "SUPPORTED_NODE_ATTESTORS",
    "SUPPORTED_WORKLOAD_ATTESTORS",
]
