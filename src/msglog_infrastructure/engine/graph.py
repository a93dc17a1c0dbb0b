"""Dependency graph of resource declarations.

Nodes are logical resource names. An edge runs from a dependency to each resource
that references it, so a topological sort yields a valid creation order and its
reverse a valid teardown order.
"""

import logging
from collections.abc import Iterable, Iterator

import networkx as nx

from msglog_infrastructure.engine.errors import (
    CycleError,
    DuplicateResourceError,
    ResourceReferenceError,
)
from msglog_infrastructure.engine.models import ResourceDeclaration
from msglog_infrastructure.engine.schema import schema_for

logger = logging.getLogger(__name__)


class ResourceGraph:
    """An acyclic graph of declarations with every reference resolved.

    :raises DeclarationError: If a declaration is missing required attributes or
        a name is declared twice.
    :raises ResourceReferenceError: If a reference names an undeclared resource or
        an output its target does not export.
    :raises CycleError: If the references form a cycle.
    """

    def __init__(self, declarations: Iterable[ResourceDeclaration]):
        self._declarations: dict[str, ResourceDeclaration] = {}
        for declaration in declarations:
            if declaration.name in self._declarations:
                raise DuplicateResourceError(declaration.name)
            schema_for(declaration.type).validate(declaration)
            self._declarations[declaration.name] = declaration

        self._graph = nx.DiGraph()
        self._graph.add_nodes_from(self._declarations)
        for name, declaration in self._declarations.items():
            for ref in declaration.references():
                target = self._declarations.get(ref.target)
                if target is None:
                    raise ResourceReferenceError(name, ref.target)
                if ref.attribute not in schema_for(target.type).outputs:
                    raise ResourceReferenceError(name, ref.target, ref.attribute)
                self._graph.add_edge(ref.target, name)
            for dependency in declaration.depends_on:
                if dependency not in self._declarations:
                    raise ResourceReferenceError(name, dependency)
                self._graph.add_edge(dependency, name)

        if not nx.is_directed_acyclic_graph(self._graph):
            cycle = [edge[0] for edge in nx.find_cycle(self._graph)]
            raise CycleError(cycle)
        logger.debug(
            "Built resource graph with %d nodes and %d edges",
            self._graph.number_of_nodes(),
            self._graph.number_of_edges(),
        )

    def __contains__(self, name: object) -> bool:
        return name in self._declarations

    def __getitem__(self, name: str) -> ResourceDeclaration:
        return self._declarations[name]

    def __iter__(self) -> Iterator[ResourceDeclaration]:
        return (self._declarations[name] for name in self.topological_order())

    def __len__(self) -> int:
        return len(self._declarations)

    @property
    def names(self) -> set[str]:
        return set(self._declarations)

    def topological_order(self) -> list[str]:
        """Return names so that every resource follows all of its dependencies.

        Ties are broken lexicographically so that plans are reproducible.
        """
        return list(nx.lexicographical_topological_sort(self._graph))

    def generations(self) -> list[list[str]]:
        """Group resources into batches with no dependencies inside a batch."""
        return [sorted(batch) for batch in nx.topological_generations(self._graph)]

    def dependencies(self, name: str) -> set[str]:
        return set(self._graph.predecessors(name))

    def dependents(self, name: str, *, transitive: bool = True) -> set[str]:
        if transitive:
            return set(nx.descendants(self._graph, name))
        return set(self._graph.successors(name))
