"""Deploy the message logger: a public VPC and an event-triggered Fargate task.

Stack configuration lives under the `message_logger` namespace. Any key that is not
set falls back to the defaults of `MessageLoggerConfig`.
"""

from typing import Any

from pulumi import Config, export

from msglog_infrastructure.components.aws.event_task import (
    EventTaskConfig,
    EventTriggeredFargateTask,
)
from msglog_infrastructure.components.aws.public_vpc import PublicVPC, PublicVPCConfig
from msglog_infrastructure.config import MessageLoggerConfig
from msglog_infrastructure.lib.msglog_types import Application
from msglog_infrastructure.lib.pulumi_helper import parse_stack

CONFIG_KEYS = (
    "app_name",
    "vpc_cidr",
    "public_subnets",
    "ingress_mode",
    "log_retention_days",
    "image_tag",
    "cpu",
    "memory_mib",
    "event_source",
    "event_detail_type",
)

stack_info = parse_stack()
message_logger_config = Config("message_logger")
aws_config = Config("aws")

config_values: dict[str, Any] = {
    key: value
    for key in CONFIG_KEYS
    if (value := message_logger_config.get_object(key)) is not None
}
deployment = MessageLoggerConfig(
    tags={
        "Application": Application.message_logger.value,
        "Environment": stack_info.env_suffix,
        "Name": f"{Application.message_logger.value}-{stack_info.env_suffix}",
    },
    region=aws_config.get("region") or "eu-north-1",
    **config_values,
)

public_vpc = PublicVPC(
    PublicVPCConfig(
        vpc_name=f"{deployment.app_name}-{stack_info.env_suffix}",
        cidr_block=deployment.vpc_cidr,
        public_subnets=deployment.public_subnets,
        ingress_mode=deployment.ingress_mode,
        tags=deployment.tags,
        region=deployment.region,
    )
)

message_logger_task = EventTriggeredFargateTask(
    EventTaskConfig(
        app_name=deployment.app_name,
        subnet_ids=[subnet.id for subnet in public_vpc.subnets],
        security_group_ids=[public_vpc.security_group.id],
        assign_public_ip=deployment.assign_public_ip,
        image_tag=deployment.image_tag,
        cpu=deployment.cpu,
        memory_mib=deployment.memory_mib,
        log_retention_days=deployment.log_retention_days,
        event_pattern=deployment.event_pattern,
        tags=deployment.tags,
        region=deployment.region,
    )
)

export(
    "message_logger",
    {
        "vpc_id": public_vpc.vpc.id,
        "subnet_ids": [subnet.id for subnet in public_vpc.subnets],
        "security_group_id": public_vpc.security_group.id,
        "cluster_arn": message_logger_task.cluster.arn,
        "task_definition_arn": message_logger_task.task_definition.arn,
        "repository_url": message_logger_task.repository.repository_url,
        "log_group": message_logger_task.log_group.name,
        "event_rule_arn": message_logger_task.event_rule.arn,
    },
)
