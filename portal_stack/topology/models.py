from sqlalchemy import JSON, Column, DateTime, Integer, String, func

from portal_stack.db import Base


class TopologyModel(Base):
    __tablename__ = "topologies"

    id = Column(Integer, primary_key=True, index=True)
    app_prefix = Column(String, nullable=False, index=True)
    environment = Column(String, nullable=False, default="dev")
    status = Column(String, nullable=False, default="compiled")
    detail = Column(String, nullable=False, default="")
    graph = Column(JSON, nullable=False, default=dict)
    cluster_id = Column(String, nullable=True)
    load_balancer_id = Column(String, nullable=True)
    execution_arn = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
