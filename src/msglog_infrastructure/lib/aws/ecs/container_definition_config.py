from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PositiveInt

from msglog_infrastructure.lib.magic_numbers import HALF_GIGABYTE_MB


def build_container_log_options(
    log_group_name: Any,
    region: str,
    stream_prefix: str,
) -> dict[str, Any]:
    return {
        "awslogs-group": log_group_name,
        "awslogs-region": region,
        "awslogs-stream-prefix": stream_prefix,
    }


class ContainerLogConfig(BaseModel):
    # Only the awslogs driver is used; its options point at a CloudWatch log group
    log_driver: str = "awslogs"
    # Values may be plain strings or references resolved at deploy time
    options: dict[str, Any] | None = None
    model_config = ConfigDict(arbitrary_types_allowed=True)


# Only the container definition fields this deployment sets are modelled, see
# https://docs.aws.amazon.com/AmazonECS/latest/APIReference/API_ContainerDefinition.html
class FargateContainerDefinitionConfig(BaseModel):
    container_name: Annotated[str, Field(description="Container name within the task")]
    # `<repository_url>:<tag>`. The repository URL is only known once the ECR
    # repository exists, so this may be an Output or an engine reference.
    image: Any
    # Hard memory limit in MiB. The container is stopped when it goes over
    memory: Annotated[PositiveInt | None, Field(description="Memory limit (MiB)")] = (
        PositiveInt(HALF_GIGABYTE_MB)
    )
    cpu: PositiveInt | None = None
    # The message logger does not listen on a port. Left unset by default
    container_port: PositiveInt | None = None
    command: list[str] | None = None
    # The task stops when an essential container exits
    is_essential: bool = True
    environment: dict[str, str] | None = None
    log_configuration: ContainerLogConfig | None = None
    model_config = ConfigDict(arbitrary_types_allowed=True)

    def to_container_definition(self) -> dict[str, Any]:
        """Render the container definition in the shape ECS expects.

        Keys are the camelCase names from the ECS API. Values that are references
        are left in place for the caller to resolve.
        """
        definition: dict[str, Any] = {
            "name": self.container_name,
            "image": self.image,
            "essential": self.is_essential,
            "memory": self.memory,
            "cpu": self.cpu,
            "command": self.command,
            "environment": [
                {"name": key, "value": value}
                for key, value in sorted((self.environment or {}).items())
            ],
            "portMappings": [],
            "logConfiguration": None,
        }
        if self.container_port:
            definition["portMappings"] = [
                {
                    "containerPort": self.container_port,
                    "containerName": self.container_name,
                    "protocol": "tcp",
                }
            ]
        if self.log_configuration:
            definition["logConfiguration"] = {
                "logDriver": self.log_configuration.log_driver,
                "options": self.log_configuration.options,
            }
        return {key: value for key, value in definition.items() if value is not None}
