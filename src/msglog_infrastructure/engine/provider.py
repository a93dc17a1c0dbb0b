"""Provider boundary between the engine and a cloud control plane.

The engine only ever talks to a :class:`Provider`. :class:`SimulatedProvider` is an
in-memory control plane that generates identifiers in AWS formats and rejects the
same classes of invalid input the real APIs reject, which makes plans and applies
reproducible without credentials.
"""

import copy
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from ipaddress import IPv4Network
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from msglog_infrastructure.engine.errors import ProviderError
from msglog_infrastructure.engine.models import ResourceType
from msglog_infrastructure.lib.aws.ec2_helper import DEFAULT_REGION, zone_in_region
from msglog_infrastructure.lib.aws.ecs.task_definition_config import (
    is_valid_fargate_size,
)

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_ID = "123456789012"
VALID_LOG_RETENTION_DAYS = frozenset(
    {1, 3, 5, 7, 14, 30, 60, 90, 120, 150, 180, 365, 400, 545, 731, 1096, 1827, 2192, 2557, 2922, 3288, 3653}  # noqa: E501
)
VPC_MIN_PREFIX = 16
VPC_MAX_PREFIX = 28


class Provider(ABC):
    """Create, read, update and delete operations for declared resources."""

    @abstractmethod
    def create(
        self, resource_type: ResourceType, name: str, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        """Create a resource and return its outputs (at least `id`)."""

    @abstractmethod
    def read(
        self, resource_type: ResourceType, resource_id: str
    ) -> dict[str, Any] | None:
        """Return the current attributes of a resource, or None if it is gone."""

    @abstractmethod
    def update(
        self,
        resource_type: ResourceType,
        name: str,
        resource_id: str,
        attributes: dict[str, Any],
    ) -> dict[str, Any]:
        """Update mutable attributes in place and return the outputs."""

    @abstractmethod
    def delete(self, resource_type: ResourceType, name: str, resource_id: str) -> None:
        """Delete a resource."""


class RemoteResource(BaseModel):
    type: ResourceType
    name: str
    attributes: dict[str, Any]
    outputs: dict[str, Any]


class ControlPlaneSnapshot(BaseModel):
    region: str = DEFAULT_REGION
    account_id: str = DEFAULT_ACCOUNT_ID
    sequence: int = 0
    revisions: dict[str, int] = Field(default_factory=dict)
    resources: dict[str, RemoteResource] = Field(default_factory=dict)


def _leaf_values(value: Any) -> Iterator[Any]:
    if isinstance(value, dict):
        for item in value.values():
            yield from _leaf_values(item)
    elif isinstance(value, list):
        for item in value:
            yield from _leaf_values(item)
    else:
        yield value


def _parse_policy(document: Any, resource: str) -> dict[str, Any]:
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as exc:
            msg = f"MalformedPolicyDocument: {resource} policy is not valid JSON"
            raise ProviderError(msg, resource) from exc
    if not isinstance(document, dict) or "Statement" not in document:
        msg = f"MalformedPolicyDocument: {resource} policy has no Statement"
        raise ProviderError(msg, resource)
    statements = document["Statement"]
    if isinstance(statements, dict):
        statements = [statements]
    for statement in statements:
        if statement.get("Effect") not in {"Allow", "Deny"}:
            msg = f"MalformedPolicyDocument: {resource} statement has an invalid Effect"
            raise ProviderError(msg, resource)
        if "Action" not in statement and "NotAction" not in statement:
            msg = f"MalformedPolicyDocument: {resource} statement has no Action"
            raise ProviderError(msg, resource)
    return document


class SimulatedProvider(Provider):
    """In-memory stand-in for the AWS control plane of a single region."""

    def __init__(
        self, region: str = DEFAULT_REGION, account_id: str = DEFAULT_ACCOUNT_ID
    ):
        self._plane = ControlPlaneSnapshot(region=region, account_id=account_id)
        self._faults: dict[tuple[str, str], list[ProviderError]] = {}
        self._validators: dict[ResourceType, Callable[[str, dict[str, Any]], None]] = {
            ResourceType.vpc: self._validate_vpc,
            ResourceType.subnet: self._validate_subnet,
            ResourceType.internet_gateway: self._validate_internet_gateway,
            ResourceType.route_table: self._validate_route_table,
            ResourceType.route_table_association: self._validate_association,
            ResourceType.security_group: self._validate_security_group,
            ResourceType.iam_role: self._validate_role,
            ResourceType.iam_role_policy_attachment: self._validate_attachment,
            ResourceType.iam_role_policy: self._validate_role_policy,
            ResourceType.log_group: self._validate_log_group,
            ResourceType.ecr_repository: self._validate_repository,
            ResourceType.ecs_task_definition: self._validate_task_definition,
            ResourceType.event_rule: self._validate_event_rule,
            ResourceType.event_target: self._validate_event_target,
        }

    @property
    def region(self) -> str:
        return self._plane.region

    @property
    def account_id(self) -> str:
        return self._plane.account_id

    # Persistence

    def dump(self) -> ControlPlaneSnapshot:
        return self._plane.model_copy(deep=True)

    @classmethod
    def restore(cls, snapshot: ControlPlaneSnapshot) -> "SimulatedProvider":
        provider = cls(region=snapshot.region, account_id=snapshot.account_id)
        provider._plane = snapshot.model_copy(deep=True)  # noqa: SLF001
        return provider

    def save(self, path: Path | str) -> None:
        Path(path).write_text(self._plane.model_dump_json(indent=2))

    @classmethod
    def from_file(
        cls,
        path: Path | str,
        region: str = DEFAULT_REGION,
        account_id: str = DEFAULT_ACCOUNT_ID,
    ) -> "SimulatedProvider":
        path = Path(path)
        if not path.exists():
            return cls(region=region, account_id=account_id)
        return cls.restore(ControlPlaneSnapshot.model_validate_json(path.read_text()))

    # Test hooks

    def inject_fault(
        self,
        name: str,
        error: ProviderError,
        operation: str = "create",
        times: int = 1,
    ) -> None:
        """Make the next `times` calls of `operation` on `name` raise `error`."""
        self._faults.setdefault((operation, name), []).extend([error] * times)

    def modify_out_of_band(self, resource_id: str, **attributes: Any) -> None:
        self._plane.resources[resource_id].attributes.update(attributes)

    def delete_out_of_band(self, resource_id: str) -> None:
        del self._plane.resources[resource_id]

    def resources(self, resource_type: ResourceType | None = None) -> list[RemoteResource]:
        return [
            resource
            for resource in self._plane.resources.values()
            if resource_type is None or resource.type == resource_type
        ]

    # Provider interface

    def create(
        self, resource_type: ResourceType, name: str, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        self._raise_fault("create", name)
        self._validate(resource_type, name, attributes)
        self._check_unique_name(resource_type, name, attributes)
        outputs = self._generate_outputs(resource_type, attributes)
        self._plane.resources[outputs["id"]] = RemoteResource(
            type=resource_type,
            name=name,
            attributes=copy.deepcopy(attributes),
            outputs=outputs,
        )
        logger.debug("Created %s %s as %s", resource_type.value, name, outputs["id"])
        return dict(outputs)

    def read(
        self, resource_type: ResourceType, resource_id: str
    ) -> dict[str, Any] | None:
        resource = self._plane.resources.get(resource_id)
        if resource is None or resource.type != resource_type:
            return None
        return copy.deepcopy(resource.attributes)

    def update(
        self,
        resource_type: ResourceType,
        name: str,
        resource_id: str,
        attributes: dict[str, Any],
    ) -> dict[str, Any]:
        self._raise_fault("update", name)
        resource = self._get(resource_type, resource_id, name)
        self._validate(resource_type, name, attributes)
        resource.attributes = copy.deepcopy(attributes)
        logger.debug("Updated %s %s (%s)", resource_type.value, name, resource_id)
        return dict(resource.outputs)

    def delete(self, resource_type: ResourceType, name: str, resource_id: str) -> None:
        self._raise_fault("delete", name)
        resource = self._get(resource_type, resource_id, name)
        dependents = self._referenced_by(resource_id)
        if dependents:
            msg = f"DependencyViolation: {name} ({resource_id}) is still used by {sorted(dependents)}"  # noqa: E501
            raise ProviderError(msg, name)
        del self._plane.resources[resource_id]
        logger.debug("Deleted %s %s (%s)", resource_type.value, name, resource_id)

    # Internals

    def _raise_fault(self, operation: str, name: str) -> None:
        pending = self._faults.get((operation, name))
        if pending:
            raise pending.pop(0)

    def _get(
        self, resource_type: ResourceType, resource_id: str, name: str
    ) -> RemoteResource:
        resource = self._plane.resources.get(resource_id)
        if resource is None or resource.type != resource_type:
            msg = f"NotFound: {resource_type.value} {resource_id} does not exist"
            raise ProviderError(msg, name)
        return resource

    def _referenced_by(self, resource_id: str) -> set[str]:
        resource = self._plane.resources[resource_id]
        handles = {
            value
            for key, value in resource.outputs.items()
            if key in {"id", "arn"} and value
        }
        # Roles are attached to by name rather than by id
        if resource.type == ResourceType.iam_role:
            handles.add(resource.outputs["name"])
        if resource.type == ResourceType.event_rule:
            handles.add(resource.outputs["name"])
        return {
            other.name
            for other_id, other in self._plane.resources.items()
            if other_id != resource_id
            and handles.intersection(
                value for value in _leaf_values(other.attributes) if isinstance(value, str)
            )
        }

    def _find(self, resource_type: ResourceType, key: str, value: Any) -> RemoteResource | None:
        for resource in self._plane.resources.values():
            if resource.type == resource_type and resource.outputs.get(key) == value:
                return resource
        return None

    def _require(
        self, resource_type: ResourceType, key: str, value: Any, name: str
    ) -> RemoteResource:
        resource = self._find(resource_type, key, value)
        if resource is None:
            msg = f"InvalidParameterValue: {name} references {resource_type.value} {key}={value!r}, which does not exist"  # noqa: E501
            raise ProviderError(msg, name)
        return resource

    def _next_id(self, prefix: str) -> str:
        self._plane.sequence += 1
        return f"{prefix}-{self._plane.sequence:017x}"

    def _arn(self, service: str, resource: str, *, regional: bool = True) -> str:
        region = self.region if regional else ""
        return f"arn:aws:{service}:{region}:{self.account_id}:{resource}"

    def _check_unique_name(
        self, resource_type: ResourceType, name: str, attributes: dict[str, Any]
    ) -> None:
        if "name" not in attributes or resource_type == ResourceType.iam_role_policy:
            return
        if self._find(resource_type, "name", attributes["name"]):
            msg = f"ResourceAlreadyExists: {resource_type.value} named {attributes['name']!r} already exists"  # noqa: E501
            raise ProviderError(msg, name)

    def _generate_outputs(  # noqa: PLR0911
        self, resource_type: ResourceType, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        match resource_type:
            case ResourceType.vpc:
                vpc_id = self._next_id("vpc")
                return {"id": vpc_id, "arn": self._arn("ec2", f"vpc/{vpc_id}")}
            case ResourceType.subnet:
                subnet_id = self._next_id("subnet")
                return {"id": subnet_id, "arn": self._arn("ec2", f"subnet/{subnet_id}")}
            case ResourceType.internet_gateway:
                gateway_id = self._next_id("igw")
                return {
                    "id": gateway_id,
                    "arn": self._arn("ec2", f"internet-gateway/{gateway_id}"),
                }
            case ResourceType.route_table:
                table_id = self._next_id("rtb")
                return {"id": table_id, "arn": self._arn("ec2", f"route-table/{table_id}")}
            case ResourceType.route_table_association:
                return {"id": self._next_id("rtbassoc")}
            case ResourceType.security_group:
                group_id = self._next_id("sg")
                return {
                    "id": group_id,
                    "arn": self._arn("ec2", f"security-group/{group_id}"),
                    "name": attributes["name"],
                }
            case ResourceType.ecs_cluster:
                arn = self._arn("ecs", f"cluster/{attributes['name']}")
                return {"id": arn, "arn": arn, "name": attributes["name"]}
            case ResourceType.iam_role:
                return {
                    "id": attributes["name"],
                    "arn": self._arn("iam", f"role/{attributes['name']}", regional=False),
                    "name": attributes["name"],
                }
            case ResourceType.iam_role_policy_attachment:
                return {"id": self._next_id(f"{attributes['role']}")}
            case ResourceType.iam_role_policy:
                return {
                    "id": f"{attributes['role']}:{attributes['name']}",
                    "name": attributes["name"],
                }
            case ResourceType.log_group:
                return {
                    "id": attributes["name"],
                    "arn": self._arn("logs", f"log-group:{attributes['name']}"),
                    "name": attributes["name"],
                }
            case ResourceType.ecr_repository:
                return {
                    "id": attributes["name"],
                    "arn": self._arn("ecr", f"repository/{attributes['name']}"),
                    "name": attributes["name"],
                    "repository_url": f"{self.account_id}.dkr.ecr.{self.region}.amazonaws.com/{attributes['name']}",  # noqa: E501
                }
            case ResourceType.ecs_task_definition:
                family = attributes["family"]
                revision = self._plane.revisions.get(family, 0) + 1
                self._plane.revisions[family] = revision
                arn = self._arn("ecs", f"task-definition/{family}:{revision}")
                return {"id": arn, "arn": arn, "family": family, "revision": revision}
            case ResourceType.event_rule:
                return {
                    "id": attributes["name"],
                    "arn": self._arn("events", f"rule/{attributes['name']}"),
                    "name": attributes["name"],
                }
            case ResourceType.event_target:
                return {"id": f"{attributes['rule']}-{attributes['target_id']}"}
        msg = f"Unsupported resource type {resource_type}"
        raise ProviderError(msg)

    def _validate(
        self, resource_type: ResourceType, name: str, attributes: dict[str, Any]
    ) -> None:
        validator = self._validators.get(resource_type)
        if validator:
            validator(name, attributes)

    def _parse_cidr(self, name: str, cidr: Any) -> IPv4Network:
        try:
            return IPv4Network(cidr)
        except ValueError as exc:
            msg = f"InvalidParameterValue: {cidr!r} is not a valid IPv4 CIDR block"
            raise ProviderError(msg, name) from exc

    def _validate_vpc(self, name: str, attributes: dict[str, Any]) -> None:
        network = self._parse_cidr(name, attributes["cidr_block"])
        if not network.is_private or not (
            VPC_MIN_PREFIX <= network.prefixlen <= VPC_MAX_PREFIX
        ):
            msg = f"InvalidVpc.Range: {network} is not a valid private VPC range"
            raise ProviderError(msg, name)

    def _validate_subnet(self, name: str, attributes: dict[str, Any]) -> None:
        vpc = self._require(ResourceType.vpc, "id", attributes["vpc_id"], name)
        subnet = self._parse_cidr(name, attributes["cidr_block"])
        if not subnet.subnet_of(IPv4Network(vpc.attributes["cidr_block"])):
            msg = f"InvalidSubnet.Range: {subnet} is not within {vpc.attributes['cidr_block']}"  # noqa: E501
            raise ProviderError(msg, name)
        if not zone_in_region(attributes["availability_zone"], self.region):
            msg = f"InvalidParameterValue: {attributes['availability_zone']} is not a zone in {self.region}"  # noqa: E501
            raise ProviderError(msg, name)
        for other in self.resources(ResourceType.subnet):
            if (
                other.name != name
                and other.attributes["vpc_id"] == attributes["vpc_id"]
                and IPv4Network(other.attributes["cidr_block"]).overlaps(subnet)
            ):
                msg = f"InvalidSubnet.Conflict: {subnet} overlaps {other.name}"
                raise ProviderError(msg, name)

    def _validate_internet_gateway(self, name: str, attributes: dict[str, Any]) -> None:
        self._require(ResourceType.vpc, "id", attributes["vpc_id"], name)
        for other in self.resources(ResourceType.internet_gateway):
            if other.name != name and other.attributes["vpc_id"] == attributes["vpc_id"]:
                msg = f"Resource.AlreadyAssociated: {attributes['vpc_id']} already has an internet gateway"  # noqa: E501
                raise ProviderError(msg, name)

    def _validate_route_table(self, name: str, attributes: dict[str, Any]) -> None:
        self._require(ResourceType.vpc, "id", attributes["vpc_id"], name)
        for route in attributes.get("routes", []):
            self._parse_cidr(name, route["cidr_block"])
            self._require(
                ResourceType.internet_gateway, "id", route["gateway_id"], name
            )

    def _validate_association(self, name: str, attributes: dict[str, Any]) -> None:
        self._require(ResourceType.subnet, "id", attributes["subnet_id"], name)
        self._require(ResourceType.route_table, "id", attributes["route_table_id"], name)

    def _validate_security_group(self, name: str, attributes: dict[str, Any]) -> None:
        self._require(ResourceType.vpc, "id", attributes["vpc_id"], name)
        for rule in [*attributes.get("ingress", []), *attributes.get("egress", [])]:
            if rule["from_port"] > rule["to_port"]:
                msg = f"InvalidParameterValue: port range {rule['from_port']}-{rule['to_port']} is reversed"  # noqa: E501
                raise ProviderError(msg, name)
            for cidr in rule.get("cidr_blocks", []):
                self._parse_cidr(name, cidr)

    def _validate_role(self, name: str, attributes: dict[str, Any]) -> None:
        _parse_policy(attributes["assume_role_policy"], name)

    def _validate_attachment(self, name: str, attributes: dict[str, Any]) -> None:
        self._require(ResourceType.iam_role, "name", attributes["role"], name)
        if not str(attributes["policy_arn"]).startswith("arn:aws:iam::"):
            msg = f"InvalidInput: {attributes['policy_arn']!r} is not a policy ARN"
            raise ProviderError(msg, name)

    def _validate_role_policy(self, name: str, attributes: dict[str, Any]) -> None:
        self._require(ResourceType.iam_role, "name", attributes["role"], name)
        _parse_policy(attributes["policy"], name)

    def _validate_log_group(self, name: str, attributes: dict[str, Any]) -> None:
        if attributes["retention_in_days"] not in VALID_LOG_RETENTION_DAYS:
            msg = f"InvalidParameterException: {attributes['retention_in_days']} is not a valid retention period"  # noqa: E501
            raise ProviderError(msg, name)

    def _validate_repository(self, name: str, attributes: dict[str, Any]) -> None:
        repository_name = attributes["name"]
        if repository_name != repository_name.lower():
            msg = f"InvalidParameterException: repository name {repository_name!r} must be lowercase"  # noqa: E501
            raise ProviderError(msg, name)

    def _validate_task_definition(self, name: str, attributes: dict[str, Any]) -> None:
        if not is_valid_fargate_size(int(attributes["cpu"]), int(attributes["memory"])):
            msg = f"ClientException: invalid Fargate size {attributes['cpu']}/{attributes['memory']}"  # noqa: E501
            raise ProviderError(msg, name)
        self._require(
            ResourceType.iam_role, "arn", attributes["execution_role_arn"], name
        )
        containers = attributes["container_definitions"]
        if not containers or not all(container.get("image") for container in containers):
            msg = "ClientException: every container definition needs an image"
            raise ProviderError(msg, name)

    def _validate_event_rule(self, name: str, attributes: dict[str, Any]) -> None:
        pattern = attributes["event_pattern"]
        try:
            parsed = json.loads(pattern) if isinstance(pattern, str) else pattern
        except json.JSONDecodeError as exc:
            msg = "InvalidEventPatternException: event pattern is not valid JSON"
            raise ProviderError(msg, name) from exc
        if not isinstance(parsed, dict) or not parsed:
            msg = "InvalidEventPatternException: event pattern must be a JSON object"
            raise ProviderError(msg, name)

    def _validate_event_target(self, name: str, attributes: dict[str, Any]) -> None:
        self._require(ResourceType.event_rule, "name", attributes["rule"], name)
        self._require(ResourceType.ecs_cluster, "arn", attributes["arn"], name)
        self._require(ResourceType.iam_role, "arn", attributes["role_arn"], name)
        ecs_target = attributes["ecs_target"]
        self._require(
            ResourceType.ecs_task_definition,
            "arn",
            ecs_target["task_definition_arn"],
            name,
        )
        network = ecs_target.get("network_configuration", {})
        for subnet_id in network.get("subnets", []):
            self._require(ResourceType.subnet, "id", subnet_id, name)
        for group_id in network.get("security_groups", []):
            self._require(ResourceType.security_group, "id", group_id, name)
