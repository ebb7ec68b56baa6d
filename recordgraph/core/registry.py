import logging
from typing import Any, Dict, Iterator, List, Optional
from uuid import UUID

from recordgraph.config import Settings, configure_logging
from recordgraph.core.constraints import ExecutionPolicy, FieldConstraints, RecordTypeResolver
from recordgraph.core.dependency.graph import TypeDependencyGraph
from recordgraph.core.discovery import DiscoveryGraph
from recordgraph.core.fields import EntityType, FieldLike

##############################
# 1) Registration set
##############################

class RegistrationSet:
    """
    Ordered, identity-based set of builders pending a commit or simulation.
    """
    def __init__(self) -> None:
        self._builders: Dict[UUID, Any] = {}

    def add(self, builder: Any) -> bool:
        """Add a builder; returns False if it was already present."""
        if builder.builder_id in self._builders:
            return False
        self._builders[builder.builder_id] = builder
        return True

    def discard(self, builder: Any) -> bool:
        return self._builders.pop(builder.builder_id, None) is not None

    def clear(self) -> None:
        self._builders.clear()

    def __contains__(self, builder: object) -> bool:
        return getattr(builder, "builder_id", None) in self._builders

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._builders.values()))

    def __len__(self) -> int:
        return len(self._builders)

    def snapshot(self) -> List[Any]:
        return list(self._builders.values())


##############################
# 2) Build context
##############################

class BuildContext:
    """
    Everything one build batch shares: registration set, dependency graph,
    discovery graph, store metadata and backends.

    Graph configuration and discovery entries outlive individual commit
    cycles; only the registration set is cleared after each cycle.
    """
    def __init__(
        self,
        settings: Optional[Settings] = None,
        constraints: Optional[FieldConstraints] = None,
        record_types: Optional[RecordTypeResolver] = None,
        policy: Optional[ExecutionPolicy] = None,
        engine: Optional[Any] = None,
        mock_store: Optional[Any] = None,
    ) -> None:
        self._logger = logging.getLogger("BuilderRegistry")
        self.settings = settings or Settings()
        self.constraints = constraints or FieldConstraints()
        self.record_types = record_types or RecordTypeResolver()
        self.policy = policy or ExecutionPolicy(allow_privileged_commit=self.settings.allow_privileged_commit)
        self.graph = TypeDependencyGraph()
        self.discovery = DiscoveryGraph()
        self.registration = RegistrationSet()
        self._engine = engine
        self._mock_store = mock_store
        self._orchestrator: Optional[Any] = None

    @property
    def engine(self) -> Any:
        """Persistence engine, built from settings on first use."""
        if self._engine is None:
            from recordgraph.storage.sql import SqlPersistenceEngine
            self._engine = SqlPersistenceEngine.from_settings(self.settings)
            self._logger.info(f"Using {type(self._engine).__name__} for commits")
        return self._engine

    def use_engine(self, engine: Any) -> None:
        self._engine = engine
        self._logger.info(f"Now using {type(engine).__name__} for commits")

    @property
    def mock_store(self) -> Any:
        if self._mock_store is None:
            from recordgraph.storage.mock import MockStore, SequentialIdGenerator
            self._mock_store = MockStore(SequentialIdGenerator(width=self.settings.id_width))
        return self._mock_store

    @property
    def orchestrator(self) -> Any:
        if self._orchestrator is None:
            from recordgraph.core.orchestrator import CommitOrchestrator
            self._orchestrator = CommitOrchestrator(self)
        return self._orchestrator

    def builder(self, entity_type: EntityType, privileged: Optional[bool] = None, **values: Any) -> Any:
        """Create a builder bound to this context."""
        from recordgraph.core.builder import RecordBuilder
        return RecordBuilder(entity_type, privileged=privileged, context=self, **values)

    def set_discoverable_field(self, type_or_field: FieldLike, field: Optional[FieldLike] = None) -> None:
        self.discovery.set_discoverable_field(type_or_field, field)

    def discover_related_builder(self, entity_type: EntityType, field: FieldLike, value: Any) -> Optional[Any]:
        return self.discovery.discover_relationship_for(entity_type, field, value)

    def depends_on(self, dependent: EntityType, dependency: EntityType) -> None:
        self.graph.edge(dependent, dependency)

    def persist_all(self) -> Any:
        return self.orchestrator.commit()

    def mock_all(self) -> Any:
        return self.orchestrator.simulate()

    def get_registry_status(self) -> Dict[str, Any]:
        return {
            "registered": len(self.registration),
            "entity_types": list(self.graph.nodes),
            "discoverable_fields": {t: sorted(f) for t, f in self.discovery.discoverable.items()},
            "indexed_values": len(self.discovery.index),
            "engine": type(self._engine).__name__ if self._engine is not None else None,
        }

    def reset(self) -> None:
        """Forget every builder, edge and discovery entry of this context."""
        self.registration.clear()
        self.graph.clear()
        self.discovery.clear()
        if self._mock_store is not None:
            self._mock_store.clear()
        self._logger.info("Build context reset")


##############################
# 3) Registry facade
##############################

class BuilderRegistry:
    """
    Process-wide convenience facade over a default BuildContext.

    Builders created without an explicit context land here, which keeps the
    "build many, commit once" ergonomics; ``use_context`` swaps in an
    isolated context per batch or per test.
    """
    _logger = logging.getLogger("BuilderRegistry")
    _context: Optional[BuildContext] = None

    @classmethod
    def current(cls) -> BuildContext:
        if cls._context is None:
            settings = Settings.from_env()
            configure_logging(settings)
            cls._context = BuildContext(settings=settings)
        return cls._context

    @classmethod
    def use_context(cls, context: BuildContext) -> None:
        cls._context = context
        cls._logger.info("Now using a new build context")

    @classmethod
    def persist_all(cls) -> Any:
        return cls.current().persist_all()

    @classmethod
    def mock_all(cls) -> Any:
        return cls.current().mock_all()

    @classmethod
    def set_discoverable_field(cls, type_or_field: FieldLike, field: Optional[FieldLike] = None) -> None:
        cls.current().set_discoverable_field(type_or_field, field)

    @classmethod
    def discover_related_builder(cls, entity_type: EntityType, field: FieldLike, value: Any) -> Optional[Any]:
        return cls.current().discover_related_builder(entity_type, field, value)

    @classmethod
    def depends_on(cls, dependent: EntityType, dependency: EntityType) -> None:
        cls.current().depends_on(dependent, dependency)

    @classmethod
    def get_registry_status(cls) -> Dict[str, Any]:
        return cls.current().get_registry_status()

    @classmethod
    def reset(cls) -> None:
        cls.current().reset()
