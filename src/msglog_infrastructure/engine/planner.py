"""Compute an ordered, idempotent set of operations from declarations and state."""

import logging
from collections.abc import Iterable
from enum import Enum, unique
from typing import Any

import networkx as nx
from pydantic import BaseModel, Field

from msglog_infrastructure.engine.errors import DriftError
from msglog_infrastructure.engine.graph import ResourceGraph
from msglog_infrastructure.engine.models import ResourceDeclaration, ResourceType
from msglog_infrastructure.engine.provider import Provider
from msglog_infrastructure.engine.schema import schema_for
from msglog_infrastructure.engine.state import ResourceState, StateSnapshot

logger = logging.getLogger(__name__)


@unique
class Action(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


class AttributeChange(BaseModel):
    attribute: str
    before: Any = None
    after: Any = None
    forces_replacement: bool = False


class Operation(BaseModel):
    """A single provider call. A replacement is a delete followed by a create."""

    action: Action
    name: str
    type: ResourceType
    replacement: bool = False
    reason: str | None = None
    changes: list[AttributeChange] = Field(default_factory=list)
    # Desired declaration for creates and updates
    declaration: ResourceDeclaration | None = None
    # Recorded state for updates and deletes
    prior: ResourceState | None = None
    # Names that must succeed before this operation may run
    requires: list[str] = Field(default_factory=list)


class Plan(BaseModel):
    operations: list[Operation] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def summary(self) -> dict[str, int]:
        replaced = {op.name for op in self.operations if op.replacement}
        return {
            "add": sum(
                op.action == Action.create and not op.replacement for op in self.operations
            ),
            "change": sum(op.action == Action.update for op in self.operations),
            "replace": len(replaced),
            "destroy": sum(
                op.action == Action.delete and not op.replacement for op in self.operations
            ),
        }


class ResourceDrift(BaseModel):
    name: str
    type: ResourceType
    missing: bool = False
    changes: list[AttributeChange] = Field(default_factory=list)


def diff_attributes(
    before: dict[str, Any], after: dict[str, Any], resource_type: ResourceType
) -> list[AttributeChange]:
    schema = schema_for(resource_type)
    return [
        AttributeChange(
            attribute=key,
            before=before.get(key),
            after=after.get(key),
            forces_replacement=schema.forces_replacement(key),
        )
        for key in sorted(set(before) | set(after))
        if before.get(key) != after.get(key)
    ]


def detect_drift(snapshot: StateSnapshot, provider: Provider) -> list[ResourceDrift]:
    """Compare each recorded resource with what the provider reports now."""
    drifts = []
    for name, state in sorted(snapshot.resources.items()):
        remote = provider.read(state.type, state.remote_id)
        if remote is None:
            drifts.append(ResourceDrift(name=name, type=state.type, missing=True))
            continue
        changes = diff_attributes(state.observed, remote, state.type)
        if changes:
            drifts.append(ResourceDrift(name=name, type=state.type, changes=changes))
    return drifts


class Planner:
    def plan(
        self,
        declarations: Iterable[ResourceDeclaration],
        snapshot: StateSnapshot,
        provider: Provider | None = None,
    ) -> Plan:
        """Diff the desired declarations against recorded state.

        :param declarations: The complete desired declaration set.
        :param snapshot: The last persisted state. Empty on a first run.
        :param provider: When given, recorded resources are read back and any drift
            aborts the plan.

        :raises ResourceReferenceError: If a reference cannot be resolved.
        :raises CycleError: If the declarations form a cycle.
        :raises DriftError: If remote state differs from recorded state.

        :returns: The ordered operations. Empty when nothing changed.
        """
        graph = ResourceGraph(declarations)

        if provider is not None:
            drifts = detect_drift(snapshot, provider)
            if drifts:
                raise DriftError(drifts)

        recorded = snapshot.resources
        creates: set[str] = set()
        updates: dict[str, list[AttributeChange]] = {}
        replacements: dict[str, str] = {}
        changes: dict[str, list[AttributeChange]] = {}

        for declaration in graph:
            name = declaration.name
            state = recorded.get(name)
            if state is None:
                creates.add(name)
                continue
            if state.type != declaration.type:
                replacements[name] = f"type changed from {state.type.value}"
                continue
            attribute_changes = diff_attributes(
                state.attributes, declaration.canonical_attributes(), declaration.type
            )
            if not attribute_changes:
                continue
            changes[name] = attribute_changes
            forcing = [
                change.attribute
                for change in attribute_changes
                if change.forces_replacement
            ]
            if forcing:
                replacements[name] = f"{', '.join(forcing)} cannot be updated in place"
            else:
                updates[name] = attribute_changes

        # Teardown follows the recorded graph, since that is what exists remotely
        recorded_graph = self._recorded_graph(snapshot)
        for name in list(replacements):
            dependents = graph.dependents(name) | nx.descendants(recorded_graph, name)
            for dependent in sorted(dependents):
                if (
                    dependent in recorded
                    and dependent in graph.names
                    and dependent not in replacements
                ):
                    replacements[dependent] = f"depends on '{name}', which is being replaced"  # noqa: E501
                    updates.pop(dependent, None)
        removed = set(recorded) - graph.names
        # Removed resources hanging off a replaced one must go before it does
        cleared_early = removed.intersection(
            set().union(*(nx.descendants(recorded_graph, name) for name in replacements))
        )
        released_later = removed - cleared_early

        operations = [
            *self._teardown(
                recorded_graph,
                snapshot,
                cleared_early | set(replacements),
                replacements,
                waits_for=cleared_early | set(replacements),
            ),
            *self._build(graph, creates, updates, replacements, changes, recorded),
            # Deletes of removed resources wait for the updates that drop references
            # to them
            *self._teardown(
                recorded_graph,
                snapshot,
                released_later,
                replacements,
                waits_for=removed | set(replacements) | set(updates),
            ),
        ]
        plan = Plan(operations=operations)
        logger.info("Planned %s", plan.summary())
        return plan

    @staticmethod
    def _recorded_graph(snapshot: StateSnapshot) -> nx.DiGraph:
        recorded_graph = nx.DiGraph()
        recorded_graph.add_nodes_from(snapshot.resources)
        for name, state in snapshot.resources.items():
            for dependency in state.dependencies:
                if dependency in snapshot.resources:
                    recorded_graph.add_edge(dependency, name)
        return recorded_graph

    def _teardown(  # noqa: PLR0913
        self,
        recorded_graph: nx.DiGraph,
        snapshot: StateSnapshot,
        doomed: set[str],
        replacements: dict[str, str],
        waits_for: set[str],
    ) -> list[Operation]:
        order = list(nx.lexicographical_topological_sort(recorded_graph))
        operations = []
        for name in reversed(order):
            if name not in doomed:
                continue
            state = snapshot.resources[name]
            operations.append(
                Operation(
                    action=Action.delete,
                    name=name,
                    type=state.type,
                    replacement=name in replacements,
                    reason=replacements.get(name, "no longer declared"),
                    prior=state,
                    requires=sorted(
                        dependent
                        for dependent in recorded_graph.successors(name)
                        if dependent in waits_for
                    ),
                )
            )
        return operations

    def _build(  # noqa: PLR0913
        self,
        graph: ResourceGraph,
        creates: set[str],
        updates: dict[str, list[AttributeChange]],
        replacements: dict[str, str],
        changes: dict[str, list[AttributeChange]],
        recorded: dict[str, ResourceState],
    ) -> list[Operation]:
        operations = []
        for name in graph.topological_order():
            declaration = graph[name]
            requires = sorted(graph.dependencies(name))
            if name in creates or name in replacements:
                is_replacement = name in replacements
                operations.append(
                    Operation(
                        action=Action.create,
                        name=name,
                        type=declaration.type,
                        replacement=is_replacement,
                        reason=replacements.get(name),
                        changes=changes.get(name, []),
                        declaration=declaration,
                        prior=recorded.get(name) if is_replacement else None,
                        # A replacement must wait for its own teardown
                        requires=[*requires, name] if is_replacement else requires,
                    )
                )
            elif name in updates:
                operations.append(
                    Operation(
                        action=Action.update,
                        name=name,
                        type=declaration.type,
                        changes=updates[name],
                        declaration=declaration,
                        prior=recorded[name],
                        requires=requires,
                    )
                )
        return operations
