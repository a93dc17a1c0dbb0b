"""Tests for the PublicVPC and EventTriggeredFargateTask components.

This test validates:
1. Subnets hand out public IPs and route through the internet gateway
2. The security group follows the configured ingress preset
3. The EventBridge target launches one task with a public IP and forwards the detail
4. The invocation policy is scoped to the task definition and execution role
"""

import asyncio
import json

import pulumi
import pytest
from pydantic import ValidationError

# Python 3.14+ compatibility: ensure event loop exists for set_mocks()
try:
    asyncio.get_event_loop()
except RuntimeError:
    asyncio.set_event_loop(asyncio.new_event_loop())

ACCOUNT_ID = "123456789012"
REGION = "eu-north-1"


class MessageLoggerMocks(pulumi.runtime.Mocks):
    """Mock implementation returning realistic identifiers per resource type."""

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        outputs = {**args.inputs, "id": f"{args.name}_id"}
        name = args.inputs.get("name", args.name)

        if args.typ == "aws:iam/role:Role":
            outputs["arn"] = f"arn:aws:iam::{ACCOUNT_ID}:role/{name}"
        elif args.typ == "aws:ecs/taskDefinition:TaskDefinition":
            outputs["arn"] = (
                f"arn:aws:ecs:{REGION}:{ACCOUNT_ID}:"
                f"task-definition/{args.inputs['family']}:1"
            )
            outputs["revision"] = 1
        elif args.typ == "aws:ecs/cluster:Cluster":
            outputs["arn"] = f"arn:aws:ecs:{REGION}:{ACCOUNT_ID}:cluster/{name}"
        elif args.typ == "aws:ecr/repository:Repository":
            outputs["repositoryUrl"] = (
                f"{ACCOUNT_ID}.dkr.ecr.{REGION}.amazonaws.com/{name}"
            )
            outputs["arn"] = f"arn:aws:ecr:{REGION}:{ACCOUNT_ID}:repository/{name}"
        elif args.typ == "aws:cloudwatch/logGroup:LogGroup":
            outputs["arn"] = f"arn:aws:logs:{REGION}:{ACCOUNT_ID}:log-group:{name}"
        elif args.typ == "aws:cloudwatch/eventRule:EventRule":
            outputs["arn"] = f"arn:aws:events:{REGION}:{ACCOUNT_ID}:rule/{name}"

        return [args.name + "_id", outputs]

    def call(self, args: pulumi.runtime.MockCallArgs):
        return {}


# Set mocks BEFORE importing infrastructure code
pulumi.runtime.set_mocks(MessageLoggerMocks())

from msglog_infrastructure.components.aws.event_task import (  # noqa: E402
    EventTaskConfig,
    EventTriggeredFargateTask,
)
from msglog_infrastructure.components.aws.public_vpc import (  # noqa: E402
    PublicVPC,
    PublicVPCConfig,
)
from msglog_infrastructure.policy.security_group import IngressMode  # noqa: E402

TAGS = {"Application": "message-logger", "Environment": "qa"}

public_vpc = PublicVPC(
    PublicVPCConfig(
        vpc_name="message-logger",
        cidr_block="10.0.0.0/16",
        public_subnets=[
            {"cidr_block": "10.0.1.0/24", "availability_zone": "eu-north-1a"},
            {"cidr_block": "10.0.2.0/24", "availability_zone": "eu-north-1b"},
        ],
        ingress_mode=IngressMode.allow_http,
        tags=TAGS,
    )
)

closed_vpc = PublicVPC(
    PublicVPCConfig(
        vpc_name="closed",
        cidr_block="10.1.0.0/16",
        public_subnets=[
            {"cidr_block": "10.1.1.0/24", "availability_zone": "eu-north-1a"}
        ],
        tags=TAGS,
    )
)

event_task = EventTriggeredFargateTask(
    EventTaskConfig(
        app_name="message-logger",
        subnet_ids=[subnet.id for subnet in public_vpc.subnets],
        security_group_ids=[public_vpc.security_group.id],
        tags=TAGS,
    )
)


@pulumi.runtime.test
def test_subnets_assign_public_ips():
    def check_subnets(args):
        map_public_ip, zones = args[0], args[1:]
        assert map_public_ip is True
        assert zones == ["eu-north-1a", "eu-north-1b"]

    return pulumi.Output.all(
        public_vpc.subnets[0].map_public_ip_on_launch,
        *(subnet.availability_zone for subnet in public_vpc.subnets),
    ).apply(check_subnets)


@pulumi.runtime.test
def test_default_route_uses_internet_gateway():
    def check_routes(args):
        routes, gateway_id = args
        assert len(routes) == 1
        assert routes[0]["cidr_block"] == "0.0.0.0/0"
        assert routes[0]["gateway_id"] == gateway_id

    return pulumi.Output.all(
        public_vpc.route_table.routes, public_vpc.gateway.id
    ).apply(check_routes)


@pulumi.runtime.test
def test_allow_http_ingress():
    def check_ingress(ingress):
        assert len(ingress) == 1
        assert ingress[0]["protocol"] == "tcp"
        assert ingress[0]["from_port"] == 80
        assert ingress[0]["to_port"] == 80
        assert ingress[0]["cidr_blocks"] == ["0.0.0.0/0"]

    return public_vpc.security_group.ingress.apply(check_ingress)


@pulumi.runtime.test
def test_default_ingress_denies_everything():
    def check_ingress(args):
        ingress, egress = args
        assert not ingress
        [rule] = egress
        assert rule["protocol"] == "-1"
        assert rule["cidr_blocks"] == ["0.0.0.0/0"]
        assert not rule.get("ipv6_cidr_blocks")

    return pulumi.Output.all(
        closed_vpc.security_group.ingress, closed_vpc.security_group.egress
    ).apply(check_ingress)


@pulumi.runtime.test
def test_log_group_retention():
    def check_log_group(args):
        name, retention = args
        assert name == "/ecs/message-logger"
        assert retention == 14

    return pulumi.Output.all(
        event_task.log_group.name, event_task.log_group.retention_in_days
    ).apply(check_log_group)


@pulumi.runtime.test
def test_container_definition_uses_repository_image():
    def check_container(args):
        container_definitions, cpu, memory = args
        [container] = json.loads(container_definitions)
        assert container["image"] == (
            "123456789012.dkr.ecr.eu-north-1.amazonaws.com/message-logger:latest"
        )
        assert container["logConfiguration"]["options"] == {
            "awslogs-group": "/ecs/message-logger",
            "awslogs-region": "eu-north-1",
            "awslogs-stream-prefix": "ecs",
        }
        assert (cpu, memory) == ("256", "512")

    return pulumi.Output.all(
        event_task.task_definition.container_definitions,
        event_task.task_definition.cpu,
        event_task.task_definition.memory,
    ).apply(check_container)


@pulumi.runtime.test
def test_event_target_launches_one_public_task():
    def check_target(args):
        ecs_target, input_transformer = args
        assert ecs_target["task_count"] == 1
        assert ecs_target["launch_type"] == "FARGATE"
        assert ecs_target["network_configuration"]["assign_public_ip"] is True
        assert len(ecs_target["network_configuration"]["subnets"]) == 2
        assert input_transformer["input_paths"] == {"detail": "$.detail"}
        assert input_transformer["input_template"] == '{"detail": <detail>}'

    return pulumi.Output.all(
        event_task.event_target.ecs_target,
        event_task.event_target.input_transformer,
    ).apply(check_target)


@pulumi.runtime.test
def test_event_rule_pattern():
    def check_pattern(pattern):
        assert json.loads(pattern) == {
            "source": ["custom.my-application"],
            "detail-type": ["myDetailType"],
        }

    return event_task.event_rule.event_pattern.apply(check_pattern)


@pulumi.runtime.test
def test_invocation_policy_is_scoped():
    def check_policy(policy):
        statements = {
            statement["Action"]: statement["Resource"]
            for statement in json.loads(policy)["Statement"]
        }
        assert statements == {
            "ecs:RunTask": (
                "arn:aws:ecs:eu-north-1:123456789012:task-definition/message-logger:1"
            ),
            "iam:PassRole": (
                "arn:aws:iam::123456789012:role/message-logger-task-execution-role"
            ),
        }

    return event_task.invocation_policy.policy.apply(check_policy)


def test_event_task_requires_a_public_ip():
    with pytest.raises(ValidationError, match="must be assigned a public IP"):
        EventTaskConfig(
            app_name="private-logger",
            subnet_ids=["subnet-1"],
            security_group_ids=["sg-1"],
            assign_public_ip=False,
            tags=TAGS,
        )
