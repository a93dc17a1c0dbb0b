"""Exception hierarchy for planning and applying resource graphs.

Plan-time errors (declaration, reference, cycle and drift errors) are raised before
any operation reaches a provider. Provider errors are raised per operation while
applying and never abort independent branches of the graph.
"""

from collections.abc import Sequence
from typing import Any


class GraphError(Exception):
    """Base class for errors detected while building or planning a graph."""


class DeclarationError(GraphError):
    """A declaration does not satisfy the schema of its resource type."""


class DuplicateResourceError(DeclarationError):
    def __init__(self, name: str):
        self.name = name
        msg = f"Resource '{name}' is declared more than once"
        super().__init__(msg)


class ResourceReferenceError(GraphError):
    """A declaration references a resource or output that is not declared."""

    def __init__(self, source: str, target: str, attribute: str | None = None):
        self.source = source
        self.target = target
        self.attribute = attribute
        if attribute:
            msg = f"Resource '{source}' references '{target}.{attribute}', which '{target}' does not export"  # noqa: E501
        else:
            msg = f"Resource '{source}' references undeclared resource '{target}'"
        super().__init__(msg)


class CycleError(GraphError):
    """The dependency graph contains a cycle so no apply order exists."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        msg = "Dependency cycle detected: " + " -> ".join(
            [*self.cycle, self.cycle[0]] if self.cycle else []
        )
        super().__init__(msg)


class DriftError(GraphError):
    """Remote state no longer matches the last recorded state.

    Drift is surfaced for manual reconciliation and is never overwritten by a plan.
    """

    def __init__(self, drifts: Sequence[Any]):
        self.drifts = list(drifts)
        names = ", ".join(drift.name for drift in self.drifts)
        msg = f"Remote state has drifted for: {names}"
        super().__init__(msg)


class ProviderError(Exception):
    """The provider rejected an operation."""

    def __init__(self, message: str, resource: str | None = None):
        self.resource = resource
        super().__init__(message)


class ThrottlingError(ProviderError):
    """The provider asked the caller to slow down. Safe to retry."""
