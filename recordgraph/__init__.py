"""
recordgraph: build graphs of related records and commit them in dependency order.
"""
from recordgraph.config import Settings, configure_logging
from recordgraph.core.builder import RecordBuilder
from recordgraph.core.constraints import ExecutionPolicy, FieldConstraints, RecordTypeResolver
from recordgraph.core.dependency import CycleStatus, DependencyCycleError, TypeDependencyGraph
from recordgraph.core.discovery import DiscoveryGraph
from recordgraph.core.fields import FieldRef, Record, as_field_ref, field_name
from recordgraph.core.orchestrator import CommitOrchestrator, CommitResult, PrivilegedCommitError, PrivilegedLinkError
from recordgraph.core.reference import ExternalReference, ParentLink, SyncLink
from recordgraph.core.registry import BuildContext, BuilderRegistry, RegistrationSet
from recordgraph.storage.base import PersistenceError
from recordgraph.storage.mock import MockStore, SequentialIdGenerator


def persist_all() -> CommitResult:
    """Commit whatever is registered in the process-wide context."""
    return BuilderRegistry.persist_all()


def mock_all() -> CommitResult:
    """Simulate whatever is registered in the process-wide context."""
    return BuilderRegistry.mock_all()


__all__ = [
    "BuildContext",
    "BuilderRegistry",
    "CommitOrchestrator",
    "CommitResult",
    "CycleStatus",
    "DependencyCycleError",
    "DiscoveryGraph",
    "ExecutionPolicy",
    "ExternalReference",
    "FieldConstraints",
    "FieldRef",
    "MockStore",
    "ParentLink",
    "PersistenceError",
    "PrivilegedCommitError",
    "PrivilegedLinkError",
    "Record",
    "RecordBuilder",
    "RecordTypeResolver",
    "RegistrationSet",
    "SequentialIdGenerator",
    "Settings",
    "SyncLink",
    "TypeDependencyGraph",
    "as_field_ref",
    "configure_logging",
    "field_name",
    "mock_all",
    "persist_all",
]
