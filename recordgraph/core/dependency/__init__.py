"""
Entity-type dependency graph implementation.

This module computes the commit order of entity types and detects circular
dependencies between them.
"""
from .graph import TypeDependencyGraph, CycleStatus, GraphNode, DependencyCycleError

__all__ = ["TypeDependencyGraph", "CycleStatus", "GraphNode", "DependencyCycleError"]
