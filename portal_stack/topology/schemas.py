from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from portal_stack.core.config import (
    BACKSTAGE_ORGNAME,
    BACKSTAGE_TITLE,
    CONTAINER_PORT,
    CPU_UNITS,
    CUSTOMER_LOGO,
    CUSTOMER_LOGO_ICON,
    CUSTOMER_NAME,
    DESIRED_COUNT,
    MEMORY_LIMIT_MIB,
)
from portal_stack.topology.graph import Edge, ResourceGraph, ResourceHandle

IDENTITY_PROVIDER_SECRET = "identity_provider"
PEER_ADMIN_SECRET = "peer_admin"
REQUIRED_SECRETS = (IDENTITY_PROVIDER_SECRET, PEER_ADMIN_SECRET)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class SecretHandle(_Frozen):
    secret_arn: str = Field(..., min_length=1)


class SecretRef(_Frozen):
    """Indirection resolved by the container runtime, never by this compiler."""

    secret: SecretHandle
    field: Optional[str] = Field(None, description="JSON key inside the secret; whole value when unset")


class NetworkContext(_Frozen):
    network_id: str = Field(..., min_length=1)
    allowed_ingress_group_id: str = Field(..., min_length=1)


class KeyPresent(_Frozen):
    kind: Literal["present"] = "present"
    key_arn: str = Field(..., min_length=1)


class KeyAbsent(_Frozen):
    kind: Literal["absent"] = "absent"


EncryptionKey = Annotated[Union[KeyPresent, KeyAbsent], Field(discriminator="kind")]


class RegistryContext(_Frozen):
    repository_uri: str = Field(..., min_length=1)
    image_tag: str = "latest"
    encryption_key: EncryptionKey = Field(default_factory=KeyAbsent)

    @property
    def image(self) -> str:
        return f"{self.repository_uri}:{self.image_tag}"


class DatabaseEndpoint(_Frozen):
    hostname: str = Field(..., min_length=1)
    port: int = Field(5432, ge=1, le=65535)


class DatabaseContext(_Frozen):
    endpoint: DatabaseEndpoint
    credential: Optional[SecretHandle] = None
    perimeter_id: str = Field(..., min_length=1)


class HostedZone(_Frozen):
    zone_id: str = Field(..., min_length=1)
    zone_name: str


class ExecutionIdentity(_Frozen):
    role_arn: str = Field(..., min_length=1)


class AccessLogTarget(_Frozen):
    bucket_name: str = Field(..., min_length=1)
    prefix: Optional[str] = None


class Branding(_Frozen):
    title: str = BACKSTAGE_TITLE
    org_name: str = BACKSTAGE_ORGNAME
    customer_name: str = CUSTOMER_NAME
    customer_logo: str = CUSTOMER_LOGO
    customer_logo_icon: str = CUSTOMER_LOGO_ICON


class ServiceSpec(_Frozen):
    """What to provision.

    Do NOT put sensitive values in ``env_vars``; reference them through
    ``secret_vars`` instead.
    """

    app_prefix: str = Field(..., min_length=1, pattern=r"^[a-z0-9][a-z0-9-]*$")
    container_port: int = Field(CONTAINER_PORT, gt=0, le=65535)
    memory_limit_mib: int = Field(MEMORY_LIMIT_MIB, gt=0)
    cpu: int = Field(CPU_UNITS, gt=0)
    desired_count: int = Field(DESIRED_COUNT, gt=0)
    branding: Branding = Field(default_factory=Branding)
    env_vars: Dict[str, str] = Field(default_factory=dict)
    secret_vars: Dict[str, SecretRef] = Field(default_factory=dict)


class ProvisionedTopology(_Frozen):
    cluster: ResourceHandle
    load_balancer: ResourceHandle


class TopologyRequest(BaseModel):
    app_prefix: str = Field(..., min_length=1)
    network: NetworkContext
    registry: RegistryContext
    database: DatabaseContext
    task_identity: ExecutionIdentity
    hosted_zone: HostedZone
    access_logs: AccessLogTarget
    secrets: Dict[str, SecretHandle] = Field(default_factory=dict)
    branding: Optional[Branding] = None
    env_vars: Optional[Dict[str, str]] = None
    secret_vars: Optional[Dict[str, SecretRef]] = None


class Topology(BaseModel):
    id: int
    app_prefix: str
    environment: str
    status: str
    detail: str
    cluster: Optional[ResourceHandle] = None
    load_balancer: Optional[ResourceHandle] = None
    resource_count: int = 0
    edge_count: int = 0
    execution_arn: Optional[str] = None


class TopologyGraph(BaseModel):
    topology_id: int
    graph: ResourceGraph


class EdgeList(BaseModel):
    topology_id: int
    edges: List[Edge]


class TopologyCallback(BaseModel):
    topology_id: int
    status: str
    detail: str = ""
    execution_arn: Optional[str] = None
