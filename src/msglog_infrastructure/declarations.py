"""The message logger resource graph, expressed as engine declarations."""

from msglog_infrastructure.config import MessageLoggerConfig
from msglog_infrastructure.engine.models import (
    Join,
    Ref,
    ResourceDeclaration,
    ResourceType,
)
from msglog_infrastructure.events import InputTransformer
from msglog_infrastructure.lib.aws.ecs.container_definition_config import (
    ContainerLogConfig,
    FargateContainerDefinitionConfig,
    build_container_log_options,
)
from msglog_infrastructure.lib.aws.ecs.task_definition_config import (
    FargateTaskDefinitionConfig,
)
from msglog_infrastructure.lib.aws.iam_helper import (
    ECS_TASK_EXECUTION_POLICY_ARN,
    ECS_TASKS_SERVICE_PRINCIPAL,
    EVENTS_SERVICE_PRINCIPAL,
    run_task_policy_document,
    service_trust_policy,
)
from msglog_infrastructure.lib.magic_numbers import SINGLE_TASK
from msglog_infrastructure.policy.security_group import (
    ANY_IPV4,
    egress_attributes,
    ingress_policy,
)

VPC = "vpc"
INTERNET_GATEWAY = "internet-gateway"
ROUTE_TABLE = "public-route-table"
SECURITY_GROUP = "security-group"
CLUSTER = "ecs-cluster"
EXECUTION_ROLE = "task-execution-role"
EXECUTION_ROLE_POLICY = "task-execution-role-policy"
LOG_GROUP = "log-group"
REPOSITORY = "ecr-repository"
TASK_DEFINITION = "task-definition"
EVENT_RULE = "event-rule"
INVOCATION_ROLE = "event-invocation-role"
INVOCATION_POLICY = "event-invocation-policy"
EVENT_TARGET = "event-target"


def subnet_name(index: int) -> str:
    return f"public-subnet-{index + 1}"


def association_name(index: int) -> str:
    return f"{subnet_name(index)}-route-association"


def _network(config: MessageLoggerConfig) -> list[ResourceDeclaration]:
    declarations = [
        ResourceDeclaration(
            type=ResourceType.vpc,
            name=VPC,
            attributes={
                "cidr_block": str(config.vpc_cidr),
                "enable_dns_support": True,
                "enable_dns_hostnames": True,
                "tags": config.merged_tags({"Name": f"{config.app_name}-vpc"}),
            },
        ),
        ResourceDeclaration(
            type=ResourceType.internet_gateway,
            name=INTERNET_GATEWAY,
            attributes={
                "vpc_id": Ref(target=VPC),
                "tags": config.merged_tags({"Name": f"{config.app_name}-igw"}),
            },
        ),
        ResourceDeclaration(
            type=ResourceType.route_table,
            name=ROUTE_TABLE,
            attributes={
                "vpc_id": Ref(target=VPC),
                "routes": [
                    {"cidr_block": ANY_IPV4, "gateway_id": Ref(target=INTERNET_GATEWAY)}
                ],
                "tags": config.merged_tags({"Name": f"{config.app_name}-public"}),
            },
        ),
    ]
    for index, subnet in enumerate(config.public_subnets):
        declarations.extend(
            [
                ResourceDeclaration(
                    type=ResourceType.subnet,
                    name=subnet_name(index),
                    attributes={
                        "vpc_id": Ref(target=VPC),
                        "cidr_block": str(subnet.cidr_block),
                        "availability_zone": subnet.availability_zone,
                        "map_public_ip_on_launch": True,
                        "tags": config.merged_tags(
                            {"Name": f"{config.app_name}-{subnet_name(index)}"}
                        ),
                    },
                ),
                ResourceDeclaration(
                    type=ResourceType.route_table_association,
                    name=association_name(index),
                    attributes={
                        "subnet_id": Ref(target=subnet_name(index)),
                        "route_table_id": Ref(target=ROUTE_TABLE),
                    },
                ),
            ]
        )
    declarations.append(
        ResourceDeclaration(
            type=ResourceType.security_group,
            name=SECURITY_GROUP,
            attributes={
                "name": f"{config.app_name}-sg",
                "description": f"Network access for {config.app_name} tasks",
                "vpc_id": Ref(target=VPC),
                "ingress": ingress_policy(config.ingress_mode).ingress_attributes(),
                "egress": egress_attributes(),
                "tags": config.merged_tags({"Name": f"{config.app_name}-sg"}),
            },
        )
    )
    return declarations


def _task(config: MessageLoggerConfig) -> list[ResourceDeclaration]:
    task_definition_config = FargateTaskDefinitionConfig(
        task_def_name=config.app_name,
        execution_role_arn=Ref(target=EXECUTION_ROLE, attribute="arn"),
        cpu=config.cpu,
        memory_mib=config.memory_mib,
        container_definition_configs=[
            FargateContainerDefinitionConfig(
                container_name=config.app_name,
                image=Join(
                    parts=(
                        Ref(target=REPOSITORY, attribute="repository_url"),
                        f":{config.image_tag}",
                    )
                ),
                memory=config.memory_mib,
                log_configuration=ContainerLogConfig(
                    options=build_container_log_options(
                        Ref(target=LOG_GROUP, attribute="name"),
                        config.region,
                        "ecs",
                    )
                ),
            )
        ],
    )
    return [
        ResourceDeclaration(
            type=ResourceType.ecs_cluster,
            name=CLUSTER,
            attributes={
                "name": f"{config.app_name}-cluster",
                "tags": config.merged_tags(),
            },
        ),
        ResourceDeclaration(
            type=ResourceType.iam_role,
            name=EXECUTION_ROLE,
            attributes={
                "name": f"{config.app_name}-task-execution-role",
                "assume_role_policy": service_trust_policy(
                    ECS_TASKS_SERVICE_PRINCIPAL
                ),
                "tags": config.merged_tags(),
            },
        ),
        ResourceDeclaration(
            type=ResourceType.iam_role_policy_attachment,
            name=EXECUTION_ROLE_POLICY,
            attributes={
                "role": Ref(target=EXECUTION_ROLE, attribute="name"),
                "policy_arn": ECS_TASK_EXECUTION_POLICY_ARN,
            },
        ),
        ResourceDeclaration(
            type=ResourceType.log_group,
            name=LOG_GROUP,
            attributes={
                "name": config.log_group_name,
                "retention_in_days": config.log_retention_days,
                "tags": config.merged_tags(),
            },
        ),
        ResourceDeclaration(
            type=ResourceType.ecr_repository,
            name=REPOSITORY,
            attributes={
                "name": config.app_name,
                "image_tag_mutability": "MUTABLE",
                "image_scanning_configuration": {"scan_on_push": True},
                "tags": config.merged_tags(),
            },
        ),
        ResourceDeclaration(
            type=ResourceType.ecs_task_definition,
            name=TASK_DEFINITION,
            attributes={
                "family": task_definition_config.task_def_name,
                "cpu": str(task_definition_config.cpu),
                "memory": str(task_definition_config.memory_mib),
                "network_mode": "awsvpc",
                "requires_compatibilities": ["FARGATE"],
                "execution_role_arn": task_definition_config.execution_role_arn,
                "container_definitions": task_definition_config.container_definitions(),
                "tags": config.merged_tags(),
            },
            # The execution role is useless to ECS until its policy is attached
            depends_on=[EXECUTION_ROLE_POLICY],
        ),
    ]


def _trigger(config: MessageLoggerConfig) -> list[ResourceDeclaration]:
    transformer = InputTransformer()
    return [
        ResourceDeclaration(
            type=ResourceType.event_rule,
            name=EVENT_RULE,
            attributes={
                "name": f"{config.app_name}-trigger",
                "description": f"Launch {config.app_name} for {config.event_source} events",  # noqa: E501
                "event_pattern": config.event_pattern.to_pattern(),
                "tags": config.merged_tags(),
            },
        ),
        ResourceDeclaration(
            type=ResourceType.iam_role,
            name=INVOCATION_ROLE,
            attributes={
                "name": f"{config.app_name}-events-invoke-role",
                "assume_role_policy": service_trust_policy(EVENTS_SERVICE_PRINCIPAL),
                "tags": config.merged_tags(),
            },
        ),
        ResourceDeclaration(
            type=ResourceType.iam_role_policy,
            name=INVOCATION_POLICY,
            attributes={
                "name": f"{config.app_name}-run-task",
                "role": Ref(target=INVOCATION_ROLE, attribute="name"),
                "policy": run_task_policy_document(
                    Ref(target=TASK_DEFINITION, attribute="arn"),
                    Ref(target=EXECUTION_ROLE, attribute="arn"),
                ),
            },
        ),
        ResourceDeclaration(
            type=ResourceType.event_target,
            name=EVENT_TARGET,
            attributes={
                "rule": Ref(target=EVENT_RULE, attribute="name"),
                "target_id": f"{config.app_name}-task",
                "arn": Ref(target=CLUSTER, attribute="arn"),
                "role_arn": Ref(target=INVOCATION_ROLE, attribute="arn"),
                "ecs_target": {
                    "task_definition_arn": Ref(target=TASK_DEFINITION, attribute="arn"),
                    "task_count": SINGLE_TASK,
                    "launch_type": "FARGATE",
                    "network_configuration": {
                        "subnets": [
                            Ref(target=subnet_name(index))
                            for index in range(len(config.public_subnets))
                        ],
                        "security_groups": [Ref(target=SECURITY_GROUP)],
                        "assign_public_ip": config.assign_public_ip,
                    },
                },
                "input_transformer": {
                    "input_paths": transformer.input_paths,
                    "input_template": transformer.input_template,
                },
            },
            # EventBridge cannot launch the task until it may call RunTask
            depends_on=[INVOCATION_POLICY],
        ),
    ]


def build_declarations(config: MessageLoggerConfig) -> list[ResourceDeclaration]:
    """Every resource of the message logger deployment, in declaration order."""
    return [*_network(config), *_task(config), *_trigger(config)]
