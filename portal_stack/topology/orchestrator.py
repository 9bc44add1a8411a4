"""Compiles the portal service declaration into a resource graph."""
import logging
from functools import singledispatch
from typing import Any, Dict, List, Mapping, Union

from pydantic import ValidationError

from portal_stack.core.config import CONTAINER_PORT, HTTP_PORT, HTTPS_PORT
from portal_stack.topology import graph as g
from portal_stack.topology.context import DeploymentContext
from portal_stack.topology.errors import MisconfigurationError
from portal_stack.topology.schemas import (
    IDENTITY_PROVIDER_SECRET,
    PEER_ADMIN_SECRET,
    REQUIRED_SECRETS,
    AccessLogTarget,
    DatabaseContext,
    ExecutionIdentity,
    HostedZone,
    KeyAbsent,
    KeyPresent,
    NetworkContext,
    ProvisionedTopology,
    RegistryContext,
    SecretHandle,
    SecretRef,
    ServiceSpec,
)

logger = logging.getLogger(__name__)

STEP_APP_SECRET = "create_app_secret"
STEP_CLUSTER = "create_cluster"
STEP_SERVICE = "create_load_balanced_service"
STEP_ACCESS_LOGS = "enable_access_logs"
STEP_KEY_GRANT = "grant_image_decrypt"
STEP_DB_INGRESS = "allow_database_ingress"
STEP_LB_INGRESS = "attach_allowed_ingress"

DB_INGRESS_LABEL = "from fargate service"

FIXED_ENV_KEYS = (
    "POSTGRES_HOST",
    "POSTGRES_PORT",
    "BACKSTAGE_TITLE",
    "BACKSTAGE_ORGNAME",
    "PROTOCOL",
    "BACKSTAGE_HOSTNAME",
    "GITLAB_HOSTNAME",
    "BACKSTAGE_PORT",
    "NODE_ENV",
    "CUSTOMER_NAME",
    "CUSTOMER_LOGO",
    "CUSTOMER_LOGO_ICON",
)
FIXED_SECRET_KEYS = (
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
    "OKTA_ORG_URL",
    "OKTA_CLIENT_ID",
    "OKTA_CLIENT_SECRET",
    "OKTA_API_TOKEN",
    "BACKSTAGE_SECRET",
    "GITLAB_ADMIN_TOKEN",
)

SPEC_DEFAULTS: Dict[str, Any] = {
    "env_vars": {},
    "secret_vars": {},
}


def merge_spec(overrides: Mapping[str, Any]) -> ServiceSpec:
    """Apply defaults under caller-supplied values. ``None`` means unspecified."""
    specified = {key: value for key, value in overrides.items() if value is not None}
    try:
        return ServiceSpec.model_validate({**SPEC_DEFAULTS, **specified})
    except ValidationError as exc:
        raise MisconfigurationError([f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in exc.errors()]) from exc


def validate_inputs(
    spec: ServiceSpec,
    database: DatabaseContext,
    hosted_zone: HostedZone,
    secrets: Mapping[str, SecretHandle],
) -> None:
    problems: List[str] = []
    if database.credential is None:
        problems.append("database has no credential secret attached")
    for name in REQUIRED_SECRETS:
        if secrets.get(name) is None:
            problems.append(f"secret handle '{name}' is required")
    if not hosted_zone.zone_name.strip():
        problems.append("hosted zone has no domain name")
    elif hosted_zone.zone_name != hosted_zone.zone_name.strip():
        problems.append(f"hosted zone name '{hosted_zone.zone_name}' has surrounding whitespace")
    if spec.container_port != CONTAINER_PORT:
        problems.append(f"container must listen on {CONTAINER_PORT}, got {spec.container_port}")

    for key in sorted(set(spec.env_vars) & set(FIXED_ENV_KEYS + FIXED_SECRET_KEYS)):
        problems.append(f"env var '{key}' is managed by the stack")
    for key in sorted(set(spec.secret_vars) & set(FIXED_ENV_KEYS + FIXED_SECRET_KEYS)):
        problems.append(f"secret var '{key}' is managed by the stack")
    for key in sorted(set(spec.env_vars) & set(spec.secret_vars)):
        problems.append(f"'{key}' is set both as env var and secret var")

    if problems:
        logger.warning("Rejecting topology for %s: %s", spec.app_prefix, "; ".join(problems))
        raise MisconfigurationError(problems)


def build_environment(spec: ServiceSpec, database: DatabaseContext, hosted_zone: HostedZone) -> Dict[str, str]:
    zone_name = hosted_zone.zone_name
    fixed = {
        "POSTGRES_HOST": database.endpoint.hostname,
        "POSTGRES_PORT": str(database.endpoint.port),
        "BACKSTAGE_TITLE": spec.branding.title,
        "BACKSTAGE_ORGNAME": spec.branding.org_name,
        "PROTOCOL": "https",
        "BACKSTAGE_HOSTNAME": zone_name,
        "GITLAB_HOSTNAME": f"git.{zone_name}",
        "BACKSTAGE_PORT": str(HTTPS_PORT),
        "NODE_ENV": "production",
        "CUSTOMER_NAME": spec.branding.customer_name,
        "CUSTOMER_LOGO": spec.branding.customer_logo,
        "CUSTOMER_LOGO_ICON": spec.branding.customer_logo_icon,
    }
    return {**spec.env_vars, **fixed}


def build_secrets(
    spec: ServiceSpec,
    database: DatabaseContext,
    secrets: Mapping[str, SecretHandle],
    app_secret: SecretHandle,
) -> Dict[str, SecretRef]:
    credential = database.credential
    idp = secrets[IDENTITY_PROVIDER_SECRET]
    peer_admin = secrets[PEER_ADMIN_SECRET]
    fixed = {
        "POSTGRES_USER": SecretRef(secret=credential, field="username"),
        "POSTGRES_PASSWORD": SecretRef(secret=credential, field="password"),
        "OKTA_ORG_URL": SecretRef(secret=idp, field="audience"),
        "OKTA_CLIENT_ID": SecretRef(secret=idp, field="clientId"),
        "OKTA_CLIENT_SECRET": SecretRef(secret=idp, field="clientSecret"),
        "OKTA_API_TOKEN": SecretRef(secret=idp, field="apiToken"),
        "BACKSTAGE_SECRET": SecretRef(secret=app_secret),
        "GITLAB_ADMIN_TOKEN": SecretRef(secret=peer_admin, field="apiToken"),
    }
    return {**spec.secret_vars, **fixed}


@singledispatch
def grant_decrypt(key, context: DeploymentContext, execution_role: str) -> None:
    raise TypeError(f"Unsupported encryption key descriptor: {type(key).__name__}")


@grant_decrypt.register
def _(key: KeyPresent, context: DeploymentContext, execution_role: str) -> None:
    logger.info("Granting %s decrypt on %s", execution_role, key.key_arn)
    context.connect(STEP_KEY_GRANT, g.Edge(kind=g.KMS_DECRYPT, source=execution_role, target=key.key_arn))


@grant_decrypt.register
def _(key: KeyAbsent, context: DeploymentContext, execution_role: str) -> None:
    logger.info("Registry is not encrypted with a customer key, no decrypt grant")


def _declare_load_balanced_service(
    spec: ServiceSpec,
    context: DeploymentContext,
    cluster_id: str,
    network: NetworkContext,
    registry: RegistryContext,
    database: DatabaseContext,
    task_identity: ExecutionIdentity,
    hosted_zone: HostedZone,
    secrets: Mapping[str, SecretHandle],
    app_secret: SecretHandle,
) -> Dict[str, str]:
    prefix = f"{spec.app_prefix}-backstage"
    ids = {
        "load_balancer": f"{prefix}-alb",
        "lb_security_group": f"{prefix}-alb-sg",
        "certificate": f"{prefix}-certificate",
        "https_listener": f"{prefix}-https-listener",
        "http_listener": f"{prefix}-http-redirect",
        "execution_role": f"{prefix}-execution-role",
        "task_definition": f"{prefix}-taskdef",
        "service_security_group": f"{prefix}-service-sg",
        "service": f"{prefix}-service",
        "dns_record": f"{prefix}-dns",
    }
    environment = build_environment(spec, database, hosted_zone)
    container_secrets = build_secrets(spec, database, secrets, app_secret)

    def create(kind: str, key: str, **properties: Any) -> None:
        context.create(STEP_SERVICE, g.Resource(kind=kind, logical_id=ids[key], properties=properties))

    def connect(kind: str, source: str, target: str, label: str = "", **properties: Any) -> None:
        context.connect(STEP_SERVICE, g.Edge(kind=kind, source=source, target=target, label=label, properties=properties))

    # The listener is not opened to 0.0.0.0/0; reachability comes only from
    # the allowed-ingress group attached later.
    create(g.SECURITY_GROUP, "lb_security_group", network_id=network.network_id, ingress=[])
    create(
        g.LOAD_BALANCER,
        "load_balancer",
        network_id=network.network_id,
        internet_facing=True,
        security_groups=[ids["lb_security_group"]],
    )
    create(g.CERTIFICATE, "certificate", domain_name=hosted_zone.zone_name, validation="DNS")
    connect(g.CERTIFICATE_VALIDATION, ids["certificate"], hosted_zone.zone_id)
    create(
        g.LISTENER,
        "https_listener",
        load_balancer=ids["load_balancer"],
        protocol="HTTPS",
        port=HTTPS_PORT,
        certificate=ids["certificate"],
        open=False,
        default_action={"type": "forward", "target": ids["service"], "port": spec.container_port},
    )
    create(
        g.LISTENER,
        "http_listener",
        load_balancer=ids["load_balancer"],
        protocol="HTTP",
        port=HTTP_PORT,
        open=False,
        default_action={"type": "redirect", "protocol": "HTTPS", "port": HTTPS_PORT, "status_code": "HTTP_301"},
    )

    create(g.ROLE, "execution_role", assumed_by="ecs-tasks.amazonaws.com")
    create(
        g.TASK_DEFINITION,
        "task_definition",
        memory_limit_mib=spec.memory_limit_mib,
        cpu=spec.cpu,
        task_role=task_identity.role_arn,
        execution_role=ids["execution_role"],
        containers=[
            {
                "name": "web",
                "image": registry.image,
                "port": spec.container_port,
                "environment": environment,
                "secrets": {name: ref.model_dump() for name, ref in container_secrets.items()},
            }
        ],
    )
    connect(g.IMAGE_PULL, ids["execution_role"], registry.repository_uri)
    for secret_arn in sorted({ref.secret.secret_arn for ref in container_secrets.values()}):
        connect(g.SECRET_READ, ids["execution_role"], secret_arn)

    create(g.SECURITY_GROUP, "service_security_group", network_id=network.network_id, ingress=[])
    create(
        g.SERVICE,
        "service",
        cluster=cluster_id,
        task_definition=ids["task_definition"],
        desired_count=spec.desired_count,
        enable_execute_command=True,
        security_groups=[ids["service_security_group"]],
        load_balancer=ids["load_balancer"],
    )
    connect(g.INGRESS, ids["lb_security_group"], ids["service_security_group"], port=spec.container_port)

    create(g.DNS_RECORD, "dns_record", zone_id=hosted_zone.zone_id, record_name=hosted_zone.zone_name, type="A")
    connect(g.DNS_ALIAS, ids["dns_record"], ids["load_balancer"])
    return ids


def provision(
    spec: Union[ServiceSpec, Mapping[str, Any]],
    network: NetworkContext,
    registry: RegistryContext,
    database: DatabaseContext,
    task_identity: ExecutionIdentity,
    hosted_zone: HostedZone,
    secrets: Mapping[str, SecretHandle],
    *,
    access_logs: AccessLogTarget,
    context: DeploymentContext,
) -> ProvisionedTopology:
    if not isinstance(spec, ServiceSpec):
        spec = merge_spec(spec)
    validate_inputs(spec, database, hosted_zone, secrets)
    logger.info("Compiling topology %s in %s/%s", spec.app_prefix, context.account, context.region)

    app_secret_id = f"{spec.app_prefix}-backstage-appsecret"
    context.create(STEP_APP_SECRET, g.Resource(kind=g.SECRET, logical_id=app_secret_id, properties={"generate_secret_string": True}))
    app_secret = SecretHandle(secret_arn=app_secret_id)

    cluster = context.create(
        STEP_CLUSTER,
        g.Resource(
            kind=g.CLUSTER,
            logical_id=f"{spec.app_prefix}-backstage-cluster",
            properties={"network_id": network.network_id, "container_insights": True},
        ),
    )

    ids = _declare_load_balanced_service(
        spec, context, cluster.logical_id, network, registry, database, task_identity, hosted_zone, secrets, app_secret
    )
    logger.info("Declared service %s at https://%s", ids["service"], hosted_zone.zone_name)

    context.connect(
        STEP_ACCESS_LOGS,
        g.Edge(
            kind=g.ACCESS_LOGS,
            source=ids["load_balancer"],
            target=access_logs.bucket_name,
            properties={"prefix": access_logs.prefix},
        ),
    )

    grant_decrypt(registry.encryption_key, context, ids["execution_role"])

    context.connect(
        STEP_DB_INGRESS,
        g.Edge(
            kind=g.INGRESS,
            source=ids["service_security_group"],
            target=database.perimeter_id,
            label=DB_INGRESS_LABEL,
            properties={"port": database.endpoint.port},
        ),
    )

    context.connect(
        STEP_LB_INGRESS,
        g.Edge(kind=g.SECURITY_GROUP_ATTACHMENT, source=ids["load_balancer"], target=network.allowed_ingress_group_id),
    )

    load_balancer = context.graph.get(ids["load_balancer"])
    return ProvisionedTopology(cluster=cluster, load_balancer=load_balancer.handle)
