"""Attribute schemas for each resource type the engine can plan.

A schema names the attributes a declaration must set, the attributes whose change
forces a replacement instead of an in-place update, and the outputs that other
resources may reference once the resource exists.
"""

from dataclasses import dataclass, field

from msglog_infrastructure.engine.errors import DeclarationError
from msglog_infrastructure.engine.models import ResourceDeclaration, ResourceType

ALL_ATTRIBUTES = frozenset({"*"})


@dataclass(frozen=True)
class ResourceSchema:
    type: ResourceType
    required: frozenset[str]
    immutable: frozenset[str]
    outputs: frozenset[str] = field(default_factory=lambda: frozenset({"id", "arn"}))

    def forces_replacement(self, attribute: str) -> bool:
        return self.immutable == ALL_ATTRIBUTES or attribute in self.immutable

    def validate(self, declaration: ResourceDeclaration) -> None:
        missing = self.required.difference(declaration.attributes)
        if missing:
            msg = f"Resource '{declaration.name}' ({self.type.value}) is missing required attributes: {sorted(missing)}"  # noqa: E501
            raise DeclarationError(msg)


def _schema(
    resource_type: ResourceType,
    required: set[str],
    immutable: set[str] | frozenset[str],
    outputs: set[str] | None = None,
) -> ResourceSchema:
    return ResourceSchema(
        type=resource_type,
        required=frozenset(required),
        immutable=frozenset(immutable),
        outputs=frozenset(outputs or {"id", "arn"}),
    )


RESOURCE_SCHEMAS: dict[ResourceType, ResourceSchema] = {
    schema.type: schema
    for schema in (
        _schema(ResourceType.vpc, {"cidr_block"}, {"cidr_block"}),
        _schema(
            ResourceType.subnet,
            {"vpc_id", "cidr_block", "availability_zone"},
            {"vpc_id", "cidr_block", "availability_zone"},
        ),
        _schema(ResourceType.internet_gateway, {"vpc_id"}, {"vpc_id"}),
        _schema(ResourceType.route_table, {"vpc_id"}, {"vpc_id"}),
        _schema(
            ResourceType.route_table_association,
            {"subnet_id", "route_table_id"},
            {"subnet_id", "route_table_id"},
            {"id"},
        ),
        _schema(
            ResourceType.security_group,
            {"name", "vpc_id"},
            {"name", "description", "vpc_id"},
            {"id", "arn", "name"},
        ),
        _schema(ResourceType.ecs_cluster, {"name"}, {"name"}, {"id", "arn", "name"}),
        _schema(
            ResourceType.iam_role,
            {"name", "assume_role_policy"},
            {"name"},
            {"id", "arn", "name"},
        ),
        _schema(
            ResourceType.iam_role_policy_attachment,
            {"role", "policy_arn"},
            {"role", "policy_arn"},
            {"id"},
        ),
        _schema(
            ResourceType.iam_role_policy,
            {"name", "role", "policy"},
            {"name", "role"},
            {"id", "name"},
        ),
        _schema(
            ResourceType.log_group,
            {"name", "retention_in_days"},
            {"name"},
            {"id", "arn", "name"},
        ),
        _schema(
            ResourceType.ecr_repository,
            {"name"},
            {"name"},
            {"id", "arn", "name", "repository_url"},
        ),
        _schema(
            ResourceType.ecs_task_definition,
            {
                "family",
                "cpu",
                "memory",
                "network_mode",
                "requires_compatibilities",
                "execution_role_arn",
                "container_definitions",
            },
            ALL_ATTRIBUTES,
            {"id", "arn", "family", "revision"},
        ),
        _schema(
            ResourceType.event_rule,
            {"name", "event_pattern"},
            {"name"},
            {"id", "arn", "name"},
        ),
        _schema(
            ResourceType.event_target,
            {"rule", "target_id", "arn", "role_arn", "ecs_target"},
            {"rule", "target_id"},
            {"id"},
        ),
    )
}


def schema_for(resource_type: ResourceType) -> ResourceSchema:
    try:
        return RESOURCE_SCHEMAS[resource_type]
    except KeyError as exc:
        msg = f"No schema is registered for resource type {resource_type}"
        raise DeclarationError(msg) from exc
