from typing import Any

from pydantic import BaseModel, ConfigDict, PositiveInt, model_validator

from msglog_infrastructure.lib.aws.ecs.container_definition_config import (
    FargateContainerDefinitionConfig,
)
from msglog_infrastructure.lib.magic_numbers import HALF_GIGABYTE_MB, QUARTER_VCPU

# Memory (MiB) values accepted by Fargate for each CPU unit setting
FARGATE_CPU_MEMORY = {
    256: (512, 1024, 2048),
    512: tuple(range(1024, 4097, 1024)),
    1024: tuple(range(2048, 8193, 1024)),
    2048: tuple(range(4096, 16385, 1024)),
    4096: tuple(range(8192, 30721, 1024)),
}


def is_valid_fargate_size(cpu: int, memory_mib: int) -> bool:
    return memory_mib in FARGATE_CPU_MEMORY.get(cpu, ())


class FargateTaskDefinitionConfig(BaseModel):
    """Maps to 'family' property which is unique name for Task Definition."""

    task_def_name: str
    # ARN of IAM role to use for task execution role. This role allows ECS Agent to
    # make calls such as:
    # - sending logs to CloudWatch
    # - retrieving image from private ECR repository
    execution_role_arn: Any = None
    # CPU allotment for task definition
    cpu: PositiveInt = PositiveInt(QUARTER_VCPU)
    # Memory allotment for task definition
    memory_mib: PositiveInt = PositiveInt(HALF_GIGABYTE_MB)
    # List of container definitions that will be attached to task
    container_definition_configs: list[FargateContainerDefinitionConfig]
    model_config = ConfigDict(arbitrary_types_allowed=True)

    @model_validator(mode="after")
    def check_fargate_size(self):
        if not is_valid_fargate_size(self.cpu, self.memory_mib):
            msg = f"{self.memory_mib} MiB is not a valid Fargate memory setting for {self.cpu} CPU units"  # noqa: E501
            raise ValueError(msg)
        if not self.container_definition_configs:
            msg = "At least one container definition must be defined"
            raise ValueError(msg)
        return self

    def container_definitions(self) -> list[dict[str, Any]]:
        return [
            container.to_container_definition()
            for container in self.container_definition_configs
        ]
