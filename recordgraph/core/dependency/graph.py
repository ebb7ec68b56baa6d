"""
Implementation of the entity-type dependency graph.

Nodes are entity types, an edge (dependent, dependency) means records of the
dependent type hold foreign keys to records of the dependency type and must
therefore be committed after them. The graph produces the commit order and
refuses to order a graph that contains a cycle.
"""
import logging
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field

from recordgraph.core.fields import EntityType

# Configure logging
logger = logging.getLogger("TypeDependencyGraph")


class CycleStatus(Enum):
    """Status of cycle detection."""
    NO_CYCLE = 0
    CYCLE_DETECTED = 1


class DependencyCycleError(ValueError):
    """Raised when the type graph cannot be ordered because of a cycle."""

    def __init__(self, cycle: List[EntityType]):
        self.cycle = cycle
        super().__init__(
            "Circular dependency between entity types: " + " -> ".join(cycle)
        )


class GraphNode(BaseModel):
    """Represents an entity type in the dependency graph."""
    entity_type: EntityType
    order: int  # insertion position, used as the tie-break
    dependencies: Set[EntityType] = Field(default_factory=set)  # types this type depends on
    dependents: Set[EntityType] = Field(default_factory=set)  # types that depend on this type

    def add_dependency(self, dep: EntityType) -> None:
        """Add a dependency to this node."""
        self.dependencies.add(dep)

    def add_dependent(self, dep: EntityType) -> None:
        """Add a dependent to this node."""
        self.dependents.add(dep)

    def __str__(self) -> str:
        return f"Node({self.entity_type}, deps={len(self.dependencies)}, dependents={len(self.dependents)})"

    def __repr__(self) -> str:
        return self.__str__()


class TypeDependencyGraph(BaseModel):
    """
    Computes and maintains the commit-order graph of entity types.

    This class provides methods to:
    1. Register types and ordering constraints (idempotently)
    2. Detect cycles in the graph
    3. Get the topological sort of types (dependencies first)
    4. Query type relationships in the graph

    Nodes and edges are meant to be configured once and reused across many
    build/commit cycles; ``clear`` is the only way to forget them.
    """
    nodes: Dict[EntityType, GraphNode] = Field(default_factory=dict)  # Map of type to its node
    cycles: List[List[EntityType]] = Field(default_factory=list)      # Cycles found by detect_cycles

    def node(self, entity_type: EntityType) -> GraphNode:
        """Register a type as a graph node. Idempotent."""
        existing = self.nodes.get(entity_type)
        if existing is not None:
            return existing
        created = GraphNode(entity_type=entity_type, order=len(self.nodes))
        self.nodes[entity_type] = created
        logger.debug(f"Added node {entity_type}")
        return created

    def edge(self, dependent: EntityType, dependency: EntityType) -> None:
        """
        Register that ``dependent`` must be committed after ``dependency``.

        Both endpoints are registered as nodes. A type depending on itself
        (self-lookup) adds no ordering constraint.
        """
        self.node(dependency)
        self.node(dependent)
        if dependent == dependency:
            logger.debug(f"Ignoring self-dependency of {dependent}")
            return
        if dependency in self.nodes[dependent].dependencies:
            return
        self.nodes[dependent].add_dependency(dependency)
        self.nodes[dependency].add_dependent(dependent)
        logger.debug(f"Added edge {dependent} -> {dependency}")

    def get_node(self, entity_type: EntityType) -> Optional[GraphNode]:
        """Get a node by type."""
        return self.nodes.get(entity_type)

    def has_edge(self, dependent: EntityType, dependency: EntityType) -> bool:
        node = self.get_node(dependent)
        return node is not None and dependency in node.dependencies

    def get_dependencies(self, entity_type: EntityType) -> Set[EntityType]:
        node = self.get_node(entity_type)
        if node:
            return node.dependencies
        return set()

    def get_dependent_types(self, entity_type: EntityType) -> Set[EntityType]:
        """
        Get types that depend on this type.

        Args:
            entity_type: Type to get dependents for

        Returns:
            Set of dependent types
        """
        node = self.get_node(entity_type)
        if node:
            return node.dependents
        return set()

    def detect_cycles(self) -> CycleStatus:
        """
        Look for cycles with a depth-first walk along dependency edges.

        Detected cycles are stored in ``cycles`` as type paths whose first and
        last element are the same type.
        """
        self.cycles.clear()
        visited: Set[EntityType] = set()  # Nodes we've fully processed
        path: List[EntityType] = []       # Nodes in current path

        def find_cycles(entity_type: EntityType) -> None:
            if entity_type in visited:
                return
            if entity_type in path:
                cycle = path[path.index(entity_type):] + [entity_type]
                logger.warning(f"Detected cycle: {cycle}")
                self.cycles.append(cycle)
                return

            path.append(entity_type)
            for dep in sorted(self.nodes[entity_type].dependencies, key=self._position):
                find_cycles(dep)
            path.pop()
            visited.add(entity_type)

        for entity_type in self.nodes:
            find_cycles(entity_type)

        if self.cycles:
            logger.warning(f"Detected {len(self.cycles)} cycles in the graph")
            return CycleStatus.CYCLE_DETECTED
        return CycleStatus.NO_CYCLE

    def get_cycles(self) -> List[List[EntityType]]:
        """Get all cycles found by the last detect_cycles call."""
        return self.cycles

    def get_topological_sort(self) -> List[EntityType]:
        """
        Return every registered type in commit order (dependencies first).

        Equivalent to a topological sort along dependent -> dependency edges,
        reversed. Types without an ordering constraint between them keep
        their insertion order, so identical insertion history always gives
        an identical result.

        Raises:
            DependencyCycleError: if the graph contains a cycle
        """
        result: List[EntityType] = []
        emitted: Set[EntityType] = set()
        remaining = list(self.nodes)

        while remaining:
            ready = [
                t for t in remaining
                if self.nodes[t].dependencies <= emitted
            ]
            if not ready:
                self.detect_cycles()
                cycle = self.cycles[0] if self.cycles else remaining
                raise DependencyCycleError(cycle)
            # Emit the earliest-inserted ready type, then rescan
            chosen = ready[0]
            result.append(chosen)
            emitted.add(chosen)
            remaining.remove(chosen)

        logger.debug(f"Commit order: {result}")
        return result

    def clear(self) -> None:
        self.nodes.clear()
        self.cycles.clear()

    def _position(self, entity_type: EntityType) -> int:
        return self.nodes[entity_type].order
