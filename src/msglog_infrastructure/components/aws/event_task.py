"""Pulumi component for a Fargate task that is launched by an EventBridge rule.

Included:
- ECS Cluster
- ECS Task Definition with a single container logging to CloudWatch
- Task execution role with the AmazonECSTaskExecutionRolePolicy attached
- CloudWatch log group
- ECR repository for the task image
- EventBridge rule, invocation role and target

Required On Input:
- Subnets with a route to the internet
- Security group for the task
"""

import json
from typing import Any

import pulumi
from pulumi_aws import cloudwatch, ecr, ecs, iam
from pydantic import ConfigDict, PositiveInt, field_validator

from msglog_infrastructure.config import check_public_ip
from msglog_infrastructure.events import EventPattern, InputTransformer
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
    lint_iam_policy,
    run_task_policy_document,
    service_trust_policy,
)
from msglog_infrastructure.lib.magic_numbers import (
    DEFAULT_LOG_RETENTION_DAYS,
    HALF_GIGABYTE_MB,
    QUARTER_VCPU,
    SINGLE_TASK,
)
from msglog_infrastructure.lib.msglog_types import AWSBase

# iam:PassRole is required for EventBridge to hand the execution role to ECS and is
# scoped to that single role ARN
RUN_TASK_PARLIAMENT_CONFIG = {
    "PERMISSIONS_MANAGEMENT_ACTIONS": {
        "ignore_locations": [{"actions": ["iam:passrole"]}]
    },
    "PRIVILEGE_ESCALATION": {"ignore_locations": [{"actions": ["iam:passrole"]}]},
}


class EventTaskConfig(AWSBase):
    """Configuration for a Fargate task launched by EventBridge."""

    # base name for all resources
    app_name: str
    # Subnets the task is launched into. They must have a route to the internet
    subnet_ids: list[pulumi.Output[str] | str]
    security_group_ids: list[pulumi.Output[str] | str]
    # Tasks in public subnets without a NAT gateway need a public IP to pull images
    assign_public_ip: bool = True
    image_tag: str = "latest"
    cpu: PositiveInt = PositiveInt(QUARTER_VCPU)
    memory_mib: PositiveInt = PositiveInt(HALF_GIGABYTE_MB)
    log_retention_days: PositiveInt = PositiveInt(DEFAULT_LOG_RETENTION_DAYS)
    event_pattern: EventPattern = EventPattern()
    input_transformer: InputTransformer = InputTransformer()

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("assign_public_ip")
    @classmethod
    def require_public_ip(cls, assign_public_ip: bool) -> bool:  # noqa: FBT001
        return check_public_ip(assign_public_ip)

    @property
    def log_group_name(self) -> str:
        return f"/ecs/{self.app_name}"


class EventTriggeredFargateTask(pulumi.ComponentResource):
    def __init__(
        self,
        config: EventTaskConfig,
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__(
            "msglog:infrastructure:aws:ecs:EventTriggeredFargateTask",
            config.app_name,
            None,
            opts,
        )

        self.resource_options = pulumi.ResourceOptions(parent=self).merge(opts)

        self.cluster = ecs.Cluster(
            f"{config.app_name}-cluster",
            name=f"{config.app_name}-cluster",
            tags=config.tags,
            opts=self.resource_options,
        )

        pulumi.log.debug(
            "creating task execution role with AmazonEcsTaskExecutionRolePolicy attached"
        )
        self.execution_role = iam.Role(
            f"{config.app_name}-task-execution-role",
            name=f"{config.app_name}-task-execution-role",
            assume_role_policy=json.dumps(
                service_trust_policy(ECS_TASKS_SERVICE_PRINCIPAL)
            ),
            tags=config.tags,
            opts=self.resource_options,
        )
        self.execution_role_policy = iam.RolePolicyAttachment(
            f"{config.app_name}-task-execution-role-policy",
            role=self.execution_role.name,
            policy_arn=ECS_TASK_EXECUTION_POLICY_ARN,
            opts=self.resource_options,
        )

        self.log_group = cloudwatch.LogGroup(
            f"{config.app_name}-log-group",
            name=config.log_group_name,
            retention_in_days=config.log_retention_days,
            tags=config.tags,
            opts=self.resource_options,
        )

        self.repository = ecr.Repository(
            f"{config.app_name}-repository",
            name=config.app_name,
            image_tag_mutability="MUTABLE",
            image_scanning_configuration=ecr.RepositoryImageScanningConfigurationArgs(
                scan_on_push=True
            ),
            tags=config.tags,
            opts=self.resource_options,
        )

        task_config = FargateTaskDefinitionConfig(
            task_def_name=config.app_name,
            execution_role_arn=self.execution_role.arn,
            cpu=config.cpu,
            memory_mib=config.memory_mib,
            container_definition_configs=[
                FargateContainerDefinitionConfig(
                    container_name=config.app_name,
                    image=pulumi.Output.concat(
                        self.repository.repository_url, ":", config.image_tag
                    ),
                    memory=config.memory_mib,
                    log_configuration=ContainerLogConfig(
                        options=build_container_log_options(
                            self.log_group.name, config.region, "ecs"
                        )
                    ),
                )
            ],
        )
        pulumi.log.debug("container definitions constructed")

        self.task_definition = ecs.TaskDefinition(
            f"{config.app_name}-task-definition",
            family=task_config.task_def_name,
            cpu=str(task_config.cpu),
            memory=str(task_config.memory_mib),
            execution_role_arn=task_config.execution_role_arn,
            network_mode="awsvpc",
            requires_compatibilities=["FARGATE"],
            container_definitions=pulumi.Output.json_dumps(
                task_config.container_definitions()
            ),
            tags=config.tags,
            opts=self.resource_options.merge(
                pulumi.ResourceOptions(depends_on=[self.execution_role_policy])
            ),
        )

        self.event_rule = cloudwatch.EventRule(
            f"{config.app_name}-trigger",
            name=f"{config.app_name}-trigger",
            description=(
                f"Launch {config.app_name} for {config.event_pattern.source} events"
            ),
            event_pattern=config.event_pattern.to_json(),
            tags=config.tags,
            opts=self.resource_options,
        )

        self.invocation_role = iam.Role(
            f"{config.app_name}-events-invoke-role",
            name=f"{config.app_name}-events-invoke-role",
            assume_role_policy=json.dumps(
                service_trust_policy(EVENTS_SERVICE_PRINCIPAL)
            ),
            tags=config.tags,
            opts=self.resource_options,
        )
        self.invocation_policy = iam.RolePolicy(
            f"{config.app_name}-run-task",
            name=f"{config.app_name}-run-task",
            role=self.invocation_role.id,
            policy=pulumi.Output.all(
                self.task_definition.arn, self.execution_role.arn
            ).apply(self.build_run_task_policy),
            opts=self.resource_options,
        )

        pulumi.log.debug(
            f"assign public IP addresses is set to {config.assign_public_ip}"
        )
        self.event_target = cloudwatch.EventTarget(
            f"{config.app_name}-task-target",
            rule=self.event_rule.name,
            target_id=f"{config.app_name}-task",
            arn=self.cluster.arn,
            role_arn=self.invocation_role.arn,
            ecs_target=cloudwatch.EventTargetEcsTargetArgs(
                task_definition_arn=self.task_definition.arn,
                task_count=SINGLE_TASK,
                launch_type="FARGATE",
                network_configuration=cloudwatch.EventTargetEcsTargetNetworkConfigurationArgs(  # noqa: E501
                    subnets=config.subnet_ids,
                    security_groups=config.security_group_ids,
                    assign_public_ip=config.assign_public_ip,
                ),
            ),
            input_transformer=cloudwatch.EventTargetInputTransformerArgs(
                input_paths=config.input_transformer.input_paths,
                input_template=config.input_transformer.input_template,
            ),
            opts=self.resource_options.merge(
                pulumi.ResourceOptions(depends_on=[self.invocation_policy])
            ),
        )

        component_outputs = {
            "cluster": self.cluster,
            "task_definition": self.task_definition,
            "repository": self.repository,
            "log_group": self.log_group,
            "event_rule": self.event_rule,
            "event_target": self.event_target,
        }

        self.register_outputs(component_outputs)

    @staticmethod
    def build_run_task_policy(arns: list[Any]) -> str:
        """Render and lint the policy that lets EventBridge launch the task.

        :param arns: The task definition ARN followed by the execution role ARN.

        :raises ValueError: If parliament reports findings for the policy.

        :returns: The policy document encoded as a JSON string.

        :rtype: str
        """
        task_definition_arn, execution_role_arn = arns
        return lint_iam_policy(
            run_task_policy_document(task_definition_arn, execution_role_arn),
            stringify=True,
            parliament_config=RUN_TASK_PARLIAMENT_CONFIG,
        )
