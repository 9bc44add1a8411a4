"""Shared fixtures for the portal stack test suite."""
import os

os.environ.setdefault("DB_URL", "sqlite+pysqlite:///:memory:")

import pytest  # noqa: E402

from portal_stack.topology.context import DeploymentContext  # noqa: E402
from portal_stack.topology.schemas import (  # noqa: E402
    AccessLogTarget,
    DatabaseContext,
    DatabaseEndpoint,
    ExecutionIdentity,
    HostedZone,
    KeyPresent,
    NetworkContext,
    RegistryContext,
    SecretHandle,
    ServiceSpec,
)
from tests.arns import DB_CREDENTIAL_ARN, GITLAB_ARN, KMS_KEY_ARN, OKTA_ARN  # noqa: E402


@pytest.fixture
def spec() -> ServiceSpec:
    return ServiceSpec(app_prefix="portal")


@pytest.fixture
def network() -> NetworkContext:
    return NetworkContext(network_id="vpc-0abc", allowed_ingress_group_id="sg-allowed-ips")


@pytest.fixture
def registry() -> RegistryContext:
    return RegistryContext(repository_uri="123456789012.dkr.ecr.us-east-1.amazonaws.com/backstage")


@pytest.fixture
def encrypted_registry() -> RegistryContext:
    return RegistryContext(
        repository_uri="123456789012.dkr.ecr.us-east-1.amazonaws.com/backstage",
        encryption_key=KeyPresent(key_arn=KMS_KEY_ARN),
    )


@pytest.fixture
def database() -> DatabaseContext:
    return DatabaseContext(
        endpoint=DatabaseEndpoint(hostname="db.internal", port=5432),
        credential=SecretHandle(secret_arn=DB_CREDENTIAL_ARN),
        perimeter_id="sg-db",
    )


@pytest.fixture
def task_identity() -> ExecutionIdentity:
    return ExecutionIdentity(role_arn="arn:aws:iam::123456789012:role/backstage-task")


@pytest.fixture
def hosted_zone() -> HostedZone:
    return HostedZone(zone_id="Z0123456789", zone_name="portal.example.com")


@pytest.fixture
def secrets() -> dict:
    return {
        "identity_provider": SecretHandle(secret_arn=OKTA_ARN),
        "peer_admin": SecretHandle(secret_arn=GITLAB_ARN),
    }


@pytest.fixture
def access_logs() -> AccessLogTarget:
    return AccessLogTarget(bucket_name="portal-access-logs")


@pytest.fixture
def context() -> DeploymentContext:
    return DeploymentContext(account="123456789012", region="us-east-1", environment="test")


@pytest.fixture
def topology_payload() -> dict:
    """Request body for ``POST /topologies``."""
    return {
        "app_prefix": "portal",
        "network": {"network_id": "vpc-0abc", "allowed_ingress_group_id": "sg-allowed-ips"},
        "registry": {"repository_uri": "123456789012.dkr.ecr.us-east-1.amazonaws.com/backstage"},
        "database": {
            "endpoint": {"hostname": "db.internal", "port": 5432},
            "credential": {"secret_arn": DB_CREDENTIAL_ARN},
            "perimeter_id": "sg-db",
        },
        "task_identity": {"role_arn": "arn:aws:iam::123456789012:role/backstage-task"},
        "hosted_zone": {"zone_id": "Z0123456789", "zone_name": "portal.example.com"},
        "access_logs": {"bucket_name": "portal-access-logs"},
        "secrets": {
            "identity_provider": {"secret_arn": OKTA_ARN},
            "peer_admin": {"secret_arn": GITLAB_ARN},
        },
    }


@pytest.fixture
def db():
    from portal_stack.db import Base, SessionLocal, engine
    from portal_stack.topology import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
