import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from portal_stack.auth.utils import ROLE_OPERATOR, ROLE_VIEWER, AuthContext, require_roles
from portal_stack.core.config import CALLBACK_TOKEN
from portal_stack.core.deps import get_db
from portal_stack.topology.errors import MisconfigurationError, ProvisioningStepError
from portal_stack.topology.models import TopologyModel
from portal_stack.topology.schemas import EdgeList, Topology, TopologyCallback, TopologyGraph, TopologyRequest
from portal_stack.topology.service import compile_topology, load_graph, submit_topology, to_schema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/topologies", tags=["topologies"])


def _ensure_topology(db: Session, topology_id: int) -> TopologyModel:
    record = db.get(TopologyModel, topology_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Topology not found")
    return record


@router.post("", response_model=Topology, status_code=status.HTTP_201_CREATED)
def create_topology(
    payload: TopologyRequest,
    ctx: AuthContext = Depends(require_roles(ROLE_OPERATOR)),
    db: Session = Depends(get_db),
):
    logger.info("%s compiling topology %s in %s", ctx.username, payload.app_prefix, ctx.environment)
    try:
        record = compile_topology(db, payload)
    except MisconfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"problems": exc.problems})
    except ProvisioningStepError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"step": exc.step, "error": str(exc.cause)})
    return to_schema(submit_topology(db, record))


@router.get("", response_model=List[Topology])
def list_topologies(
    _: str = Depends(require_roles(ROLE_OPERATOR, ROLE_VIEWER)),
    db: Session = Depends(get_db),
):
    rows = db.query(TopologyModel).order_by(TopologyModel.id.asc()).all()
    return [to_schema(row) for row in rows]


@router.get("/{topology_id}", response_model=Topology)
def get_topology(
    topology_id: int,
    _: str = Depends(require_roles(ROLE_OPERATOR, ROLE_VIEWER)),
    db: Session = Depends(get_db),
):
    return to_schema(_ensure_topology(db, topology_id))


@router.get("/{topology_id}/graph", response_model=TopologyGraph)
def get_topology_graph(
    topology_id: int,
    _: str = Depends(require_roles(ROLE_OPERATOR, ROLE_VIEWER)),
    db: Session = Depends(get_db),
):
    record = _ensure_topology(db, topology_id)
    return TopologyGraph(topology_id=record.id, graph=load_graph(record))


@router.get("/{topology_id}/edges", response_model=EdgeList)
def list_edges(
    topology_id: int,
    kind: Optional[str] = None,
    _: str = Depends(require_roles(ROLE_OPERATOR, ROLE_VIEWER)),
    db: Session = Depends(get_db),
):
    graph = load_graph(_ensure_topology(db, topology_id))
    edges = graph.edges_of(kind) if kind else graph.edges
    return EdgeList(topology_id=topology_id, edges=list(edges))


@router.post("/callback")
def topology_callback(payload: TopologyCallback, request: Request, db: Session = Depends(get_db)):
    if request.headers.get("X-Callback-Token") != CALLBACK_TOKEN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid callback token")

    record = _ensure_topology(db, payload.topology_id)
    record.status = payload.status
    record.detail = payload.detail
    if payload.execution_arn:
        record.execution_arn = payload.execution_arn
    db.commit()
    logger.info("Topology %s reported %s", record.id, payload.status)
    return {"status": "ok"}
