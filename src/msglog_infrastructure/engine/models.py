"""Typed resource declarations and the reference values that wire them together."""

from collections.abc import Iterator, Mapping
from enum import Enum, unique
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from msglog_infrastructure.engine.errors import ResourceReferenceError

REF_KEY = "$ref"
JOIN_KEY = "$join"


@unique
class ResourceType(str, Enum):
    """Resource types understood by the engine, named by their Pulumi type token."""

    vpc = "aws:ec2/vpc:Vpc"
    subnet = "aws:ec2/subnet:Subnet"
    internet_gateway = "aws:ec2/internetGateway:InternetGateway"
    route_table = "aws:ec2/routeTable:RouteTable"
    route_table_association = "aws:ec2/routeTableAssociation:RouteTableAssociation"
    security_group = "aws:ec2/securityGroup:SecurityGroup"
    ecs_cluster = "aws:ecs/cluster:Cluster"
    iam_role = "aws:iam/role:Role"
    iam_role_policy_attachment = "aws:iam/rolePolicyAttachment:RolePolicyAttachment"
    iam_role_policy = "aws:iam/rolePolicy:RolePolicy"
    log_group = "aws:cloudwatch/logGroup:LogGroup"
    ecr_repository = "aws:ecr/repository:Repository"
    ecs_task_definition = "aws:ecs/taskDefinition:TaskDefinition"
    event_rule = "aws:cloudwatch/eventRule:EventRule"
    event_target = "aws:cloudwatch/eventTarget:EventTarget"


class Ref(BaseModel):
    """A reference to an output of another declared resource."""

    model_config = ConfigDict(frozen=True)

    target: str
    attribute: str = "id"

    def __str__(self) -> str:
        return f"{self.target}.{self.attribute}"


class Join(BaseModel):
    """String concatenation of literals and references, resolved at apply time."""

    model_config = ConfigDict(frozen=True)

    parts: tuple[Any, ...]


def iter_refs(value: Any) -> Iterator[Ref]:
    """Yield every reference nested anywhere inside an attribute value."""
    if isinstance(value, Ref):
        yield value
    elif isinstance(value, Join):
        for part in value.parts:
            yield from iter_refs(part)
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, list | tuple):
        for item in value:
            yield from iter_refs(item)


def canonicalize(value: Any) -> Any:
    """Convert an attribute value into plain JSON-compatible data.

    References stay symbolic as `{"$ref": "target.attribute"}` so that a declaration
    can be compared with its recorded state without knowing any remote identifiers.
    """
    if isinstance(value, Ref):
        return {REF_KEY: str(value)}
    if isinstance(value, Join):
        return {JOIN_KEY: [canonicalize(part) for part in value.parts]}
    if isinstance(value, Mapping):
        return {str(key): canonicalize(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [canonicalize(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    return value


def resolve(
    value: Any, outputs: Mapping[str, Mapping[str, Any]], source: str = "<unknown>"
) -> Any:
    """Substitute references with concrete values from the identifier table.

    :param value: The attribute value to resolve.
    :param outputs: Mapping of logical resource name to the outputs the provider
        returned for it.
    :param source: Name of the resource being resolved, used in error messages.

    :raises ResourceReferenceError: If a referenced resource or output is not present
        in the identifier table.
    """
    if isinstance(value, Ref):
        if value.target not in outputs:
            raise ResourceReferenceError(source, value.target)
        if value.attribute not in outputs[value.target]:
            raise ResourceReferenceError(source, value.target, value.attribute)
        return outputs[value.target][value.attribute]
    if isinstance(value, Join):
        return "".join(str(resolve(part, outputs, source)) for part in value.parts)
    if isinstance(value, Mapping):
        return {key: resolve(item, outputs, source) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [resolve(item, outputs, source) for item in value]
    if isinstance(value, Enum):
        return value.value
    return value


class ResourceDeclaration(BaseModel):
    """A named resource with its desired attributes.

    `name` is the logical identity of the resource and stays stable across applies.
    """

    type: ResourceType
    name: str = Field(pattern=r"^[a-z0-9][a-z0-9_-]*$")
    attributes: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)

    def references(self) -> list[Ref]:
        return list(iter_refs(self.attributes))

    def dependency_names(self) -> set[str]:
        return {ref.target for ref in self.references()} | set(self.depends_on)

    def canonical_attributes(self) -> dict[str, Any]:
        return canonicalize(self.attributes)
