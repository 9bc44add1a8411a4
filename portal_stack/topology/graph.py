"""Immutable resource graph and the pure functions that extend it."""
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from portal_stack.topology.errors import NamingCollision

# Resource kinds
SECRET = "Secret"
CLUSTER = "Cluster"
LOAD_BALANCER = "LoadBalancer"
LISTENER = "Listener"
CERTIFICATE = "Certificate"
TASK_DEFINITION = "TaskDefinition"
SERVICE = "Service"
SECURITY_GROUP = "SecurityGroup"
ROLE = "Role"
DNS_RECORD = "DnsRecord"

# Edge kinds
ACCESS_LOGS = "access_logs"
KMS_DECRYPT = "kms_decrypt"
INGRESS = "ingress"
SECURITY_GROUP_ATTACHMENT = "security_group_attachment"
DNS_ALIAS = "dns_alias"
SECRET_READ = "secret_read"
IMAGE_PULL = "image_pull"
CERTIFICATE_VALIDATION = "certificate_validation"


class ResourceHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    logical_id: str


class Resource(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    logical_id: str
    properties: Dict[str, Any] = Field(default_factory=dict)

    @property
    def handle(self) -> ResourceHandle:
        return ResourceHandle(kind=self.kind, logical_id=self.logical_id)


class Edge(BaseModel):
    """A directed permission or network edge.

    ``source`` and ``target`` are logical ids of declared resources, or opaque
    handles (ARNs, group ids) of resources owned outside this graph.
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    source: str
    target: str
    label: str = ""
    properties: Dict[str, Any] = Field(default_factory=dict)


class ResourceGraph(BaseModel):
    model_config = ConfigDict(frozen=True)

    resources: Tuple[Resource, ...] = ()
    edges: Tuple[Edge, ...] = ()

    def get(self, logical_id: str) -> Optional[Resource]:
        for resource in self.resources:
            if resource.logical_id == logical_id:
                return resource
        return None

    def resources_of(self, kind: str) -> Tuple[Resource, ...]:
        return tuple(r for r in self.resources if r.kind == kind)

    def edges_of(self, kind: str) -> Tuple[Edge, ...]:
        return tuple(e for e in self.edges if e.kind == kind)

    def ingress_rules(self, target: str) -> Tuple[Edge, ...]:
        return tuple(e for e in self.edges if e.kind == INGRESS and e.target == target)


def add_resource(graph: ResourceGraph, resource: Resource) -> ResourceGraph:
    if graph.get(resource.logical_id) is not None:
        raise NamingCollision(resource.logical_id)
    return ResourceGraph(resources=graph.resources + (resource,), edges=graph.edges)


def add_edge(graph: ResourceGraph, edge: Edge) -> ResourceGraph:
    # Append-only: an identical edge is kept twice, existing edges are never dropped.
    return ResourceGraph(resources=graph.resources, edges=graph.edges + (edge,))
