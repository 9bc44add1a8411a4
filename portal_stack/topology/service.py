import json
import logging
from typing import Optional

import boto3
from sqlalchemy.orm import Session

from portal_stack.core.config import AWS_ACCOUNT, AWS_REGION, DEPLOY_ENVIRONMENT, DEPLOY_STATE_MACHINE_ARN
from portal_stack.topology.context import DeploymentContext
from portal_stack.topology.graph import CLUSTER, LOAD_BALANCER, ResourceGraph, ResourceHandle
from portal_stack.topology.models import TopologyModel
from portal_stack.topology.orchestrator import merge_spec, provision
from portal_stack.topology.schemas import Topology, TopologyRequest

logger = logging.getLogger(__name__)


def new_context() -> DeploymentContext:
    return DeploymentContext(account=AWS_ACCOUNT, region=AWS_REGION, environment=DEPLOY_ENVIRONMENT)


def compile_topology(db: Session, request: TopologyRequest, context: Optional[DeploymentContext] = None) -> TopologyModel:
    context = context or new_context()
    spec = merge_spec(
        {
            "app_prefix": request.app_prefix,
            "branding": request.branding,
            "env_vars": request.env_vars,
            "secret_vars": request.secret_vars,
        }
    )
    result = provision(
        spec,
        request.network,
        request.registry,
        request.database,
        request.task_identity,
        request.hosted_zone,
        request.secrets,
        access_logs=request.access_logs,
        context=context,
    )
    record = TopologyModel(
        app_prefix=spec.app_prefix,
        environment=context.environment,
        status="compiled",
        detail=f"{len(context.graph.resources)} resources, {len(context.graph.edges)} edges",
        graph=context.graph.model_dump(mode="json"),
        cluster_id=result.cluster.logical_id,
        load_balancer_id=result.load_balancer.logical_id,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("Stored topology %s for %s", record.id, record.app_prefix)
    return record


def start_step_function_execution(record: TopologyModel) -> Optional[str]:
    if not DEPLOY_STATE_MACHINE_ARN:
        return None
    client = boto3.client("stepfunctions", region_name=AWS_REGION)
    execution_input = {
        "topology_id": record.id,
        "app_prefix": record.app_prefix,
        "environment": record.environment,
        "graph": record.graph,
    }
    resp = client.start_execution(stateMachineArn=DEPLOY_STATE_MACHINE_ARN, input=json.dumps(execution_input))
    return resp.get("executionArn")


def submit_topology(db: Session, record: TopologyModel) -> TopologyModel:
    try:
        execution_arn = start_step_function_execution(record)
    except Exception as exc:
        logger.exception("Submitting topology %s failed", record.id)
        record.status = "failed"
        record.detail = f"Submission failed to start: {exc}"
        db.commit()
        db.refresh(record)
        return record

    if execution_arn:
        record.execution_arn = execution_arn
        record.status = "in_progress"
        record.detail = "Submitted via Step Functions"
    else:
        record.status = "queued"
        record.detail = "Compiled (Step Functions not configured)"
    db.commit()
    db.refresh(record)
    return record


def load_graph(record: TopologyModel) -> ResourceGraph:
    return ResourceGraph.model_validate(record.graph or {})


def to_schema(record: TopologyModel) -> Topology:
    graph = load_graph(record)
    return Topology(
        id=record.id,
        app_prefix=record.app_prefix,
        environment=record.environment,
        status=record.status,
        detail=record.detail,
        cluster=ResourceHandle(kind=CLUSTER, logical_id=record.cluster_id) if record.cluster_id else None,
        load_balancer=(
            ResourceHandle(kind=LOAD_BALANCER, logical_id=record.load_balancer_id) if record.load_balancer_id else None
        ),
        resource_count=len(graph.resources),
        edge_count=len(graph.edges),
        execution_arn=record.execution_arn,
    )
