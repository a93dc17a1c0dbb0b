"""Validated configuration for the message logger deployment."""

from ipaddress import IPv4Network
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, PositiveInt, field_validator, model_validator

from msglog_infrastructure.engine.provider import VALID_LOG_RETENTION_DAYS
from msglog_infrastructure.events import (
    DEFAULT_DETAIL_TYPE,
    DEFAULT_EVENT_SOURCE,
    EventPattern,
)
from msglog_infrastructure.lib.aws.ec2_helper import zone_in_region
from msglog_infrastructure.lib.aws.ecs.task_definition_config import (
    is_valid_fargate_size,
)
from msglog_infrastructure.lib.magic_numbers import (
    DEFAULT_LOG_RETENTION_DAYS,
    HALF_GIGABYTE_MB,
    QUARTER_VCPU,
)
from msglog_infrastructure.lib.msglog_types import Application, AWSBase
from msglog_infrastructure.policy.security_group import IngressMode

VPC_MIN_PREFIX = 16
VPC_MAX_PREFIX = 24


def check_public_ip(assign_public_ip: bool) -> bool:  # noqa: FBT001
    if not assign_public_ip:
        msg = (
            "Tasks must be assigned a public IP: the public subnets have no NAT "
            "gateway, so a private task could not pull its image"
        )
        raise ValueError(msg)
    return assign_public_ip


class PublicSubnetConfig(BaseModel):
    cidr_block: IPv4Network
    availability_zone: str

    @classmethod
    def parse(cls, value: str) -> "PublicSubnetConfig":
        """Build a subnet from the `<cidr>@<availability zone>` shorthand."""
        cidr_block, _, zone = value.partition("@")
        return cls(cidr_block=cidr_block, availability_zone=zone)


def _default_subnets() -> list[PublicSubnetConfig]:
    return [
        PublicSubnetConfig.parse("10.0.1.0/24@eu-north-1a"),
        PublicSubnetConfig.parse("10.0.2.0/24@eu-north-1b"),
    ]


class MessageLoggerConfig(AWSBase):
    app_name: str = Application.message_logger.value
    vpc_cidr: IPv4Network = IPv4Network("10.0.0.0/16")
    public_subnets: list[PublicSubnetConfig] = Field(default_factory=_default_subnets)
    ingress_mode: IngressMode = IngressMode.deny_all
    log_retention_days: PositiveInt = DEFAULT_LOG_RETENTION_DAYS
    image_tag: str = "latest"
    cpu: PositiveInt = QUARTER_VCPU
    memory_mib: PositiveInt = HALF_GIGABYTE_MB
    event_source: str = DEFAULT_EVENT_SOURCE
    event_detail_type: str = DEFAULT_DETAIL_TYPE
    assign_public_ip: bool = True

    @field_validator("app_name")
    @classmethod
    def check_app_name(cls, app_name: str) -> str:
        parts = app_name.split("-")
        if not all(part.isalnum() and part == part.lower() for part in parts):
            msg = f"Application name {app_name!r} must be lowercase and hyphenated"
            raise ValueError(msg)
        return app_name

    @field_validator("public_subnets", mode="before")
    @classmethod
    def parse_subnet_shorthand(cls, subnets: Any) -> Any:
        if isinstance(subnets, list):
            return [
                PublicSubnetConfig.parse(subnet) if isinstance(subnet, str) else subnet
                for subnet in subnets
            ]
        return subnets

    @field_validator("vpc_cidr")
    @classmethod
    def check_vpc_cidr(cls, vpc_cidr: IPv4Network) -> IPv4Network:
        if not vpc_cidr.is_private:
            msg = f"The VPC CIDR block {vpc_cidr} is not an RFC1918 private range"
            raise ValueError(msg)
        if not VPC_MIN_PREFIX <= vpc_cidr.prefixlen <= VPC_MAX_PREFIX:
            msg = f"The VPC CIDR prefix must be between /{VPC_MIN_PREFIX} and /{VPC_MAX_PREFIX}"  # noqa: E501
            raise ValueError(msg)
        return vpc_cidr

    @field_validator("log_retention_days")
    @classmethod
    def check_log_retention(cls, retention: int) -> int:
        if retention not in VALID_LOG_RETENTION_DAYS:
            msg = f"{retention} is not a retention period CloudWatch Logs accepts"
            raise ValueError(msg)
        return retention

    @field_validator("assign_public_ip")
    @classmethod
    def require_public_ip(cls, assign_public_ip: bool) -> bool:  # noqa: FBT001
        return check_public_ip(assign_public_ip)

    @model_validator(mode="after")
    def check_subnets(self):
        if not self.public_subnets:
            msg = "At least one public subnet must be configured"
            raise ValueError(msg)
        for index, subnet in enumerate(self.public_subnets):
            if not subnet.cidr_block.subnet_of(self.vpc_cidr):
                msg = f"Subnet {subnet.cidr_block} is not within the VPC range {self.vpc_cidr}"  # noqa: E501
                raise ValueError(msg)
            if not zone_in_region(subnet.availability_zone, self.region):
                msg = f"{subnet.availability_zone} is not an availability zone in {self.region}"  # noqa: E501
                raise ValueError(msg)
            for other in self.public_subnets[index + 1 :]:
                if subnet.cidr_block.overlaps(other.cidr_block):
                    msg = f"Subnets {subnet.cidr_block} and {other.cidr_block} overlap"
                    raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def check_fargate_size(self):
        if not is_valid_fargate_size(self.cpu, self.memory_mib):
            msg = f"{self.memory_mib} MiB is not a valid Fargate memory setting for {self.cpu} CPU units"  # noqa: E501
            raise ValueError(msg)
        return self

    @property
    def log_group_name(self) -> str:
        return f"/ecs/{self.app_name}"

    @property
    def event_pattern(self) -> EventPattern:
        return EventPattern(source=self.event_source, detail_type=self.event_detail_type)


def load_config(path: Path | str | None = None) -> MessageLoggerConfig:
    """Load configuration from a YAML file of `MessageLoggerConfig` fields.

    Without a path the defaults are used, tagged for the production environment.
    """
    data: dict[str, Any] = {}
    if path is not None:
        data = yaml.safe_load(Path(path).read_text()) or {}
    data.setdefault(
        "tags",
        {"Application": Application.message_logger.value, "Environment": "production"},
    )
    return MessageLoggerConfig(**data)
