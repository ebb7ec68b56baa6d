"""
Narrow contracts with the backing store's metadata.

The package never decides on its own which fields are write-restricted or
which record types need the privileged commit phase. Those facts come from
the store and are handed in here declaratively.
"""
import logging
from typing import Dict, Iterable, Optional, Set, Tuple

from pydantic import BaseModel, Field

from recordgraph.core.fields import EntityType, FieldLike, as_field_ref

logger = logging.getLogger("FieldConstraints")


class FieldConstraints(BaseModel):
    """
    Declarative set of write-restricted fields and privileged entity types.

    A restricted field cannot be written directly to a record (computed,
    read-only or auto-numbered fields). Builders shelve values for such fields
    instead of failing.
    """
    restricted: Dict[EntityType, Set[str]] = Field(default_factory=dict)
    privileged_types: Set[EntityType] = Field(default_factory=set)

    def restrict(self, entity_type: EntityType, *fields: FieldLike) -> "FieldConstraints":
        names = self.restricted.setdefault(entity_type, set())
        for f in fields:
            names.add(as_field_ref(f).name)
        logger.debug(f"Restricted fields for {entity_type}: {sorted(names)}")
        return self

    def mark_privileged(self, *entity_types: EntityType) -> "FieldConstraints":
        self.privileged_types.update(entity_types)
        return self

    def is_restricted(self, entity_type: EntityType, field: FieldLike) -> bool:
        return as_field_ref(field).name in self.restricted.get(entity_type, set())

    def is_privileged_type(self, entity_type: EntityType) -> bool:
        return entity_type in self.privileged_types

    def clear(self) -> None:
        self.restricted.clear()
        self.privileged_types.clear()


class RecordTypeResolver(BaseModel):
    """Resolves a named record variant (record type) to its identifier."""
    record_types: Dict[Tuple[EntityType, str], str] = Field(default_factory=dict)

    def register(self, entity_type: EntityType, name: str, identifier: str) -> None:
        self.record_types[(entity_type, name)] = identifier

    def register_many(self, entity_type: EntityType, mapping: Dict[str, str]) -> None:
        for name, identifier in mapping.items():
            self.register(entity_type, name, identifier)

    def resolve(self, entity_type: EntityType, name: str) -> str:
        try:
            return self.record_types[(entity_type, name)]
        except KeyError:
            known = sorted(n for (t, n) in self.record_types if t == entity_type)
            raise LookupError(
                f"Unknown record type '{name}' for {entity_type}; known: {known}"
            ) from None

    def names_for(self, entity_type: EntityType) -> Iterable[str]:
        return [n for (t, n) in self.record_types if t == entity_type]


class ExecutionPolicy(BaseModel):
    """
    Environment gate deciding whether privileged records may be written.

    Simulation always may. A real commit needs an explicitly elevated context.
    """
    allow_privileged_commit: bool = False
    elevated_reason: Optional[str] = None

    def permits_privileged_commit(self, simulation: bool = False) -> bool:
        if simulation:
            return True
        return self.allow_privileged_commit

    def elevate(self, reason: str) -> None:
        logger.info(f"Privileged commits enabled: {reason}")
        self.allow_privileged_commit = True
        self.elevated_reason = reason
