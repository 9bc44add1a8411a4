import logging
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from portal_stack.topology.errors import ProvisioningStepError
from portal_stack.topology.graph import Edge, Resource, ResourceGraph, ResourceHandle, add_edge, add_resource

logger = logging.getLogger(__name__)


class RecordedCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: str
    action: str
    kind: str
    target: str


class DeploymentContext:
    """Account, region and environment a topology is declared against."""

    def __init__(self, account: str, region: str, environment: str = "dev", graph: Optional[ResourceGraph] = None):
        self.account = account
        self.region = region
        self.environment = environment
        self.graph = graph or ResourceGraph()
        self.calls: List[RecordedCall] = []

    def create(self, step: str, resource: Resource) -> ResourceHandle:
        try:
            self.graph = self.apply_resource(self.graph, resource)
        except Exception as exc:
            logger.error("Step %s failed declaring %s %s: %s", step, resource.kind, resource.logical_id, exc)
            raise ProvisioningStepError(step, exc) from exc
        self.calls.append(RecordedCall(step=step, action="create", kind=resource.kind, target=resource.logical_id))
        logger.debug("Declared %s %s", resource.kind, resource.logical_id)
        return resource.handle

    def connect(self, step: str, edge: Edge) -> None:
        try:
            self.graph = self.apply_edge(self.graph, edge)
        except Exception as exc:
            logger.error("Step %s failed wiring %s %s -> %s: %s", step, edge.kind, edge.source, edge.target, exc)
            raise ProvisioningStepError(step, exc) from exc
        self.calls.append(RecordedCall(step=step, action="connect", kind=edge.kind, target=edge.target))
        logger.debug("Wired %s %s -> %s", edge.kind, edge.source, edge.target)

    # Override points for a real control plane or a failing fake.
    def apply_resource(self, graph: ResourceGraph, resource: Resource) -> ResourceGraph:
        return add_resource(graph, resource)

    def apply_edge(self, graph: ResourceGraph, edge: Edge) -> ResourceGraph:
        return add_edge(graph, edge)

    def calls_for(self, step: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.step == step]
