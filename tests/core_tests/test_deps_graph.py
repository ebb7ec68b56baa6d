"""
Tests for the entity-type dependency graph.
These tests focus on node/edge registration, commit ordering and cycle
detection.
"""
import random

import pytest

from recordgraph.core.dependency import CycleStatus, DependencyCycleError, TypeDependencyGraph


def assert_dependencies_first(order, edges):
    position = {t: i for i, t in enumerate(order)}
    for dependent, dependency in edges:
        assert position[dependency] < position[dependent], (
            f"{dependency} should come before {dependent} in {order}"
        )


class TestDependencyGraph:
    """Tests for the TypeDependencyGraph class."""

    def test_node_is_idempotent(self):
        """Registering the same type twice keeps a single node."""
        graph = TypeDependencyGraph()
        graph.node("Account")
        graph.node("Account")

        assert list(graph.nodes) == ["Account"]

    def test_edge_registers_both_endpoints(self):
        """An edge creates missing nodes and is only recorded once."""
        graph = TypeDependencyGraph()
        graph.edge("Contact", "Account")
        graph.edge("Contact", "Account")

        assert set(graph.nodes) == {"Contact", "Account"}
        assert graph.has_edge("Contact", "Account")
        assert not graph.has_edge("Account", "Contact")
        assert graph.get_dependencies("Contact") == {"Account"}
        assert graph.get_dependent_types("Account") == {"Contact"}

    def test_commit_order_puts_dependencies_first(self):
        """Every dependency precedes the types that reference it."""
        edges = [
            ("Contact", "Account"),
            ("Opportunity", "Account"),
            ("OpportunityContactRole", "Opportunity"),
            ("OpportunityContactRole", "Contact"),
        ]
        graph = TypeDependencyGraph()
        for dependent, dependency in edges:
            graph.edge(dependent, dependency)

        order = graph.get_topological_sort()

        assert sorted(order) == sorted(graph.nodes)
        assert_dependencies_first(order, edges)

    def test_unconstrained_types_keep_insertion_order(self):
        """Ties are broken by insertion order, so the result is deterministic."""
        def build():
            graph = TypeDependencyGraph()
            graph.node("B")
            graph.node("A")
            graph.node("C")
            graph.edge("B", "C")
            return graph

        assert build().get_topological_sort() == ["A", "C", "B"]
        assert build().get_topological_sort() == build().get_topological_sort()

    def test_random_acyclic_graphs(self):
        """Any acyclic edge set is ordered dependencies-first."""
        for seed in range(25):
            rng = random.Random(seed)
            types = [f"T{i}" for i in range(10)]
            # Edges only point from a higher to a lower index, so no cycles
            edges = [
                (types[i], types[j])
                for i in range(len(types))
                for j in range(i)
                if rng.random() < 0.3
            ]
            rng.shuffle(edges)
            shuffled = list(types)
            rng.shuffle(shuffled)

            graph = TypeDependencyGraph()
            for t in shuffled:
                graph.node(t)
            for dependent, dependency in edges:
                graph.edge(dependent, dependency)

            order = graph.get_topological_sort()
            assert len(order) == len(types)
            assert_dependencies_first(order, edges)

    def test_self_dependency_adds_no_constraint(self):
        """A self-lookup registers the node but never blocks ordering."""
        graph = TypeDependencyGraph()
        graph.edge("Account", "Account")

        assert not graph.has_edge("Account", "Account")
        assert graph.get_topological_sort() == ["Account"]


class TestCycleDetection:
    """Tests for cycle handling."""

    def test_two_type_cycle_raises(self):
        """Edges (A, B) and (B, A) cannot be ordered."""
        graph = TypeDependencyGraph()
        graph.edge("A", "B")
        graph.edge("B", "A")

        with pytest.raises(DependencyCycleError) as exc_info:
            graph.get_topological_sort()

        cycle = exc_info.value.cycle
        assert set(cycle) == {"A", "B"}
        assert cycle[0] == cycle[-1]
        assert isinstance(exc_info.value, ValueError)

    def test_cycle_path_excludes_unrelated_types(self):
        """The reported cycle only names the types that form it."""
        graph = TypeDependencyGraph()
        graph.node("Standalone")
        graph.edge("A", "B")
        graph.edge("B", "C")
        graph.edge("C", "A")
        graph.edge("D", "A")

        with pytest.raises(DependencyCycleError) as exc_info:
            graph.get_topological_sort()

        assert set(exc_info.value.cycle) == {"A", "B", "C"}
        assert "A -> " in str(exc_info.value) or "B -> " in str(exc_info.value)

    def test_detect_cycles_status(self):
        """detect_cycles reports without raising."""
        acyclic = TypeDependencyGraph()
        acyclic.edge("Contact", "Account")
        assert acyclic.detect_cycles() == CycleStatus.NO_CYCLE
        assert acyclic.get_cycles() == []

        cyclic = TypeDependencyGraph()
        cyclic.edge("A", "B")
        cyclic.edge("B", "A")
        assert cyclic.detect_cycles() == CycleStatus.CYCLE_DETECTED
        assert len(cyclic.get_cycles()) == 1

    def test_clear_forgets_everything(self):
        graph = TypeDependencyGraph()
        graph.edge("A", "B")
        graph.edge("B", "A")
        graph.clear()

        assert graph.nodes == {}
        assert graph.get_topological_sort() == []
