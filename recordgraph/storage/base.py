"""
Contracts with the persistence engine.

The orchestrator only ever talks to a ``PersistenceEngine`` through a
``UnitOfWork``: it registers new records and relationships, then asks for one
durable write in the given type order.
"""
from typing import Any, List, Protocol, runtime_checkable

from recordgraph.core.fields import EntityType, Record


class PersistenceError(RuntimeError):
    """A unit of work could not be committed; nothing from it was kept."""


@runtime_checkable
class UnitOfWork(Protocol):
    """
    Generic interface for one ordered bulk write.
    """
    def register_new(self, record: Record) -> None: ...
    def register_relationship(self, record: Record, field: str, related: Record) -> None: ...
    def register_relationship_by_external_id(
        self, record: Record, field: str, target_type: EntityType, target_field: str, external_id: Any
    ) -> None: ...
    def has_work(self) -> bool: ...
    def commit_work(self) -> None: ...


class PersistenceEngine(Protocol):
    def create_unit_of_work(self, order: List[EntityType]) -> UnitOfWork: ...


class PendingUnitOfWork:
    """
    Bookkeeping shared by unit-of-work implementations: new records and the
    relationships to fill in, in registration order.
    """
    def __init__(self, order: List[EntityType]) -> None:
        self.order = list(order)
        self.new_records: List[Record] = []
        self.relationships: List[tuple] = []      # (record, field, related record)
        self.external_lookups: List[tuple] = []   # (record, field, target type, target field, external id)

    def register_new(self, record: Record) -> None:
        self.new_records.append(record)

    def register_relationship(self, record: Record, field: str, related: Record) -> None:
        self.relationships.append((record, field, related))

    def register_relationship_by_external_id(
        self, record: Record, field: str, target_type: EntityType, target_field: str, external_id: Any
    ) -> None:
        self.external_lookups.append((record, field, target_type, target_field, external_id))

    def has_work(self) -> bool:
        return bool(self.new_records)

    def ordered_types(self) -> List[EntityType]:
        """Commit order, followed by any type the order did not mention."""
        types = list(self.order)
        for record in self.new_records:
            if record.entity_type not in types:
                types.append(record.entity_type)
        return types

    def records_of(self, entity_type: EntityType) -> List[Record]:
        return [r for r in self.new_records if r.entity_type == entity_type]

    def links_of(self, record: Record) -> List[tuple]:
        return [rel for rel in self.relationships if rel[0] is record]

    def lookups_of(self, record: Record) -> List[tuple]:
        return [lookup for lookup in self.external_lookups if lookup[0] is record]
