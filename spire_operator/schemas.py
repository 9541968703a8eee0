"""Pydantic schemas for SPIRE desired-state objects and operator DTOs"""
import enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


SERVER_KIND = "SpireServer"
AGENT_KIND = "SpireAgent"

SERVER_CONFIG_FILE = "server.conf"
AGENT_CONFIG_FILE = "agent.conf"

# Ordered mapping of config filename to rendered text
RenderedConfig = Dict[str, str]


class HealthStatus(str, enum.Enum):
    """Aggregate health of a SPIRE server deployment."""
    ERROR = "ERROR"
    INITIALIZING = "INITIALIZING"
    LIVE = "LIVE"
    READY = "READY"


class ReconcileResult(str, enum.Enum):
    """Outcome of a single reconciliation request."""
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    APPLIED = "applied"


class ResourceKind(str, enum.Enum):
    SERVICE_ACCOUNT = "ServiceAccount"
    ROLE = "Role"
    ROLE_BINDING = "RoleBinding"
    CLUSTER_ROLE = "ClusterRole"
    CLUSTER_ROLE_BINDING = "ClusterRoleBinding"
    CONFIG_MAP = "ConfigMap"
    STATEFUL_SET = "StatefulSet"
    DAEMON_SET = "DaemonSet"
    SERVICE = "Service"


# Spec schemas
class _DeploymentSpec(BaseModel):
    """Fields shared by SpireServer and SpireAgent specs.

    Only types are enforced here; domain rules live in deploy.validator so
    every rejection carries a domain reason.
    """
    trust_domain: str = Field(default="", alias="trustDomain")
    port: int = 0
    key_storage: str = Field(default="", alias="keyStorage")

    class Config:
        populate_by_name = True

    @property
    def canonical_key_storage(self) -> str:
        return self.key_storage.strip().lower()


class ServerSpec(_DeploymentSpec):
    """Desired state of a SPIRE server."""
    node_attestors: List[str] = Field(default_factory=list, alias="nodeAttestors")
    replicas: int = 1
    data_store: Optional[str] = Field(default=None, alias="dataStore")
    connection_string: Optional[str] = Field(default=None, alias="connectionString")
    ca_bundle_path: Optional[str] = Field(default=None, alias="caBundlePath")
    cert_authorities: List[str] = Field(default_factory=list, alias="certAuthorities")
    cert_authorities_path: Optional[str] = Field(default=None, alias="certAuthoritiesPath")


class AgentSpec(_DeploymentSpec):
    """Desired state of a SPIRE agent.

    ``port`` is the port of the server the agent connects to.
    """
    port: int = Field(default=0, validation_alias=AliasChoices("port", "serverPort"))
    node_attestor: str = Field(default="", alias="nodeAttestor")
    workload_attestors: List[str] = Field(default_factory=list, alias="workloadAttestors")
    private_key_path: Optional[str] = Field(default=None, alias="privateKeyPath")
    certificate_path: Optional[str] = Field(default=None, alias="certificatePath")
    host_key_path: Optional[str] = Field(default=None, alias="hostKeyPath")
    host_cert_path: Optional[str] = Field(default=None, alias="hostCertPath")

    @field_validator("workload_attestors", mode="before")
    @classmethod
    def _flatten_named(cls, value):
        # CRD objects carry workload attestors as [{name: ...}]
        if isinstance(value, list):
            return [item.get("name", "") if isinstance(item, dict) else item for item in value]
        return value


class ServerReference(BaseModel):
    """Server fields an agent must agree with."""
    port: int
    node_attestors: List[str] = Field(default_factory=list)

    @classmethod
    def from_server_spec(cls, spec: ServerSpec) -> "ServerReference":
        return cls(port=spec.port, node_attestors=list(spec.node_attestors))


# Resource schemas
class ResourceDescriptor(BaseModel):
    """A cluster object the planner wants to exist."""
    name: str
    kind: ResourceKind
    namespaced: bool
    creation_order: int
    namespace: Optional[str] = None
    payload: Any = None

    class Config:
        arbitrary_types_allowed = True


# API schemas
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    uptime_seconds: int
    active_aggregators: int


class PlanRequest(BaseModel):
    """Dry-run request carrying a desired-state object."""
    namespace: str = "default"
    spec: Dict[str, Any]
    server: Optional[Dict[str, Any]] = None


class PlannedResource(BaseModel):
    name: str
    kind: str
    namespaced: bool
    creation_order: int

    @classmethod
    def from_descriptor(cls, descriptor: ResourceDescriptor) -> "PlannedResource":
        return cls(
            name=descriptor.name,
            kind=descriptor.kind.value,
            namespaced=descriptor.namespaced,
            creation_order=descriptor.creation_order,
        )


class PlanResponse(BaseModel):
    """Rendered config and ordered resources for a valid spec."""
    kind: str
    config: Dict[str, str]
    resources: List[PlannedResource]


class AggregatorInfo(BaseModel):
    namespace: str
    name: str
    running: bool
