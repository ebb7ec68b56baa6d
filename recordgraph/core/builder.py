############################################################
# builder.py
############################################################

"""
Record builders: one stateful helper per record that is going to be created.

Key concepts:

1. FIELD STATES:
   - unset -> applied: the value was written directly into the record
   - unset -> shelved: the field is write-restricted, the value is held aside
   - applied -> shelved only through ``assign_restricted_field_value``
   - shelved -> applied only through a full (non-protective) reclamation,
     which is what simulation and read-back use

2. DEFERRED RELATIONSHIPS:
   - ``set_parent``/``set_child``/``set_reference`` only store pending links
   - ``reclaim_relationships`` turns them into dependency-graph edges and
     discovery bookkeeping at commit/simulate time, when every related record
     exists and every value has been set

3. REGISTRATION:
   - Builders register with their context on creation and stay registered
     until a cycle commits them or they are explicitly unregistered
   - A builder whose record has an id is persisted and never registered again

Example Usage:
```python
account = RecordBuilder("Account", Name="Acme")
contact = RecordBuilder("Contact", LastName="Doe").set_parent("AccountId", account)
contact.mock()
assert contact.get_record()["AccountId"] == account.get_id()
```
"""
import logging
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from recordgraph.core.fields import EntityType, FieldLike, Record, as_field_ref
from recordgraph.core.reference import ExternalReference

logger = logging.getLogger("RecordBuilder")


class RecordBuilder(BaseModel):
    """
    Accumulates field values and relationships for a single record.

    Attributes:
        builder_id: Identity of the builder (records have no id before commit)
        entity_type: Type of the record being built
        privileged: Whether the record needs the separate privileged commit phase
        record: The record under construction
        applied_fields: Names written directly into the record
        shelved_fields: Values held aside because the field is write-restricted
        restricted_fields: Names that must never reach a real commit
        pending_parents: field -> parent builder, not yet resolved
        pending_children: (field, child builder) pairs, not yet resolved
        pending_references: external references, not yet resolved
        context: BuildContext owning the registries (not serialized)
    """
    builder_id: UUID = Field(default_factory=uuid4)
    entity_type: EntityType
    privileged: Optional[bool] = None
    record: Optional[Record] = None
    applied_fields: Set[str] = Field(default_factory=set)
    shelved_fields: Dict[str, Any] = Field(default_factory=dict)
    restricted_fields: Set[str] = Field(default_factory=set)
    pending_parents: Dict[str, "RecordBuilder"] = Field(default_factory=dict)
    pending_children: List[Tuple[str, "RecordBuilder"]] = Field(default_factory=list)
    pending_references: List[ExternalReference] = Field(default_factory=list)
    context: Any = Field(default=None, exclude=True)

    model_config = {"arbitrary_types_allowed": True}

    def __init__(
        self,
        entity_type: EntityType,
        privileged: Optional[bool] = None,
        context: Optional[Any] = None,
        **values: Any,
    ) -> None:
        super().__init__(entity_type=entity_type, privileged=privileged, context=context)
        for name, value in values.items():
            self.set(name, value)

    @model_validator(mode="after")
    def register_on_create(self) -> "RecordBuilder":
        """Bind to a context, create the record and join the registration set."""
        if self.context is None:
            # Import only at call time to avoid circular imports
            from recordgraph.core.registry import BuilderRegistry
            self.context = BuilderRegistry.current()
        if self.record is None:
            self.record = Record(entity_type=self.entity_type)
        if self.privileged is None:
            self.privileged = self.context.constraints.is_privileged_type(self.entity_type)
        self.context.graph.node(self.entity_type)
        self.context.registration.add(self)
        return self

    def __hash__(self) -> int:
        return hash(self.builder_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RecordBuilder):
            return NotImplemented
        return self.builder_id == other.builder_id

    def __repr__(self) -> str:
        return f"RecordBuilder({self.entity_type}, {str(self.builder_id)[:8]})"

    def __str__(self) -> str:
        return self.__repr__()

    ##############################
    # Accessors
    ##############################

    def get_id(self) -> Optional[Any]:
        return self.record.id

    def get_type(self) -> EntityType:
        return self.entity_type

    def is_privileged(self) -> bool:
        return bool(self.privileged)

    def is_persisted(self) -> bool:
        return self.record.id is not None

    def has_value(self, field: FieldLike) -> bool:
        name = self._name(field)
        return name in self.shelved_fields or name in self.record

    def get(self, field: FieldLike, default: Any = None) -> Any:
        """Current value of a field, whether applied or shelved."""
        name = self._name(field)
        if name in self.shelved_fields:
            return self.shelved_fields[name]
        return self.record.get(name, default)

    ##############################
    # Field values
    ##############################

    def set(self, field: FieldLike, value: Any) -> "RecordBuilder":
        """
        Write a value, shelving it if the field is write-restricted.

        Restriction is a capability check against the context's constraints;
        once a field is found restricted the builder remembers it.
        """
        name = self._name(field)
        self._forget_indexed_value(name)
        if self._is_write_restricted(name):
            logger.debug(f"{self!r}: {name} is write-restricted, shelving value")
            self._shelve(name, value)
        else:
            self.record.put(name, value)
            self.applied_fields.add(name)
            self.shelved_fields.pop(name, None)
        self.context.discovery.register_for_discovery(self.entity_type, self, name, value)
        return self

    def set_values(self, values: Dict[str, Any]) -> "RecordBuilder":
        for name, value in values.items():
            self.set(name, value)
        return self

    def assign_restricted_field_value(self, field: FieldLike, value: Any) -> "RecordBuilder":
        """
        Shelve a value the store must never receive directly.

        The value shows up in simulated output and read-back, never in a
        real commit payload.
        """
        name = self._name(field)
        self._forget_indexed_value(name)
        self.record.remove(name)
        self.applied_fields.discard(name)
        self._shelve(name, value)
        self.context.discovery.register_for_discovery(self.entity_type, self, name, value)
        return self

    def record_type(self, name: str) -> "RecordBuilder":
        """Set the record-type field to the identifier of the named variant."""
        identifier = self.context.record_types.resolve(self.entity_type, name)
        return self.set(self.context.settings.record_type_field, identifier)

    def reclaim_suspended_field_values(self, for_commit: bool) -> Record:
        """
        Fold shelved values into the record.

        With ``for_commit`` the reclamation is protective: restricted values
        stay shelved so they can never reach the persistence engine.
        """
        for name, value in list(self.shelved_fields.items()):
            if for_commit and name in self.restricted_fields:
                continue
            self.record.put(name, value)
            self.applied_fields.add(name)
            del self.shelved_fields[name]
        return self.record

    def get_record(self) -> Record:
        """The record with every shelved value folded in (restricted ones included)."""
        return self.reclaim_suspended_field_values(for_commit=False)

    def commit_payload(self) -> Record:
        """Copy of the record as a real commit may see it: no restricted fields."""
        return self.record.copy_record(exclude=self.restricted_fields)

    ##############################
    # Deferred relationships
    ##############################

    def set_parent(self, field: FieldLike, parent: "RecordBuilder") -> "RecordBuilder":
        """Link ``field`` on this record to ``parent`` once both are committed."""
        self._check_builder(parent)
        self.pending_parents[self._name(field)] = parent
        return self

    def set_child(self, field: FieldLike, child: "RecordBuilder") -> "RecordBuilder":
        """Link ``child.field`` to this record once both are committed."""
        self._check_builder(child)
        name = as_field_ref(field, child.entity_type).name
        self.pending_children.append((name, child))
        return self

    def set_reference(
        self,
        relationship_field: FieldLike,
        target_field: FieldLike,
        external_id: Any,
        target_type: Optional[EntityType] = None,
    ) -> "RecordBuilder":
        """
        Link to whichever record of the target type has ``target_field == external_id``.

        ``target_field`` must name its type, either qualified
        (``"Account.ExternalId"``) or through ``target_type``.
        """
        target = as_field_ref(target_field, target_type)
        if target.entity_type is None:
            raise ValueError(f"Cannot determine the target type of reference field {target_field!r}")
        self.pending_references.append(ExternalReference(
            relationship_field=self._name(relationship_field),
            target_type=target.entity_type,
            target_field=target.name,
            external_id=external_id,
        ))
        return self

    def reclaim_relationships(self) -> "RecordBuilder":
        """Resolve every pending link into graph edges and discovery bookkeeping."""
        for name, parent in list(self.pending_parents.items()):
            self._do_set_parent(name, parent)
        self.pending_parents.clear()

        for name, child in list(self.pending_children):
            self._do_set_child(name, child)
        self.pending_children.clear()

        for reference in list(self.pending_references):
            self._do_set_reference(reference)
        self.pending_references.clear()
        return self

    def _do_set_parent(self, name: str, parent: "RecordBuilder") -> None:
        self.context.graph.edge(self.entity_type, parent.entity_type)
        self.context.discovery.set_parent(self, name, parent)
        parent.register_including_parents()

    def _do_set_child(self, name: str, child: "RecordBuilder") -> None:
        self.context.graph.edge(child.entity_type, self.entity_type)
        self.context.discovery.set_child(self, name, child)
        child.register_including_parents()

    def _do_set_reference(self, reference: ExternalReference) -> None:
        target_type = self.context.discovery.set_reference(self, reference)
        self.context.graph.edge(self.entity_type, target_type)

    ##############################
    # Discovery
    ##############################

    def register_discoverable(self, field: FieldLike) -> "RecordBuilder":
        """Make ``field`` discoverable for this type and index the current value."""
        name = self._name(field)
        self.context.discovery.set_discoverable_field(self.entity_type, name)
        if self.has_value(name):
            self.context.discovery.register_for_discovery(self.entity_type, self, name, self.get(name))
        return self

    def discover_related_builder(
        self, entity_type: EntityType, field: FieldLike, value: Any
    ) -> Optional["RecordBuilder"]:
        return self.context.discovery.discover_relationship_for(entity_type, field, value)

    def sync_on_change(
        self, source_field: FieldLike, target: "RecordBuilder", target_field: FieldLike
    ) -> "RecordBuilder":
        """Mirror this builder's ``source_field`` into ``target.target_field`` on reclamation."""
        self._check_builder(target)
        self.context.discovery.sync_on_change(
            self, self._name(source_field), target, target._name(target_field)
        )
        return self

    ##############################
    # Registration and batch triggers
    ##############################

    def register_including_parents(self) -> "RecordBuilder":
        """Join the registration set together with every known unpersisted parent."""
        if not self.is_persisted():
            self.context.registration.add(self)
        self.context.discovery.register_parents(self, self.context.registration)
        return self

    def unregister_including_parents(self) -> "RecordBuilder":
        """Leave the registration set, taking the known parent chain along."""
        self.context.registration.discard(self)
        self.context.discovery.unregister_parents(self, self.context.registration)
        return self

    def persist(self) -> "RecordBuilder":
        """Commit everything registered in this builder's context."""
        self.register_including_parents()
        self.context.persist_all()
        return self

    def mock(self) -> "RecordBuilder":
        """Simulate a commit of everything registered in this builder's context."""
        self.register_including_parents()
        self.context.mock_all()
        return self

    ##############################
    # Helpers
    ##############################

    def _name(self, field: FieldLike) -> str:
        ref = as_field_ref(field, self.entity_type)
        if ref.entity_type != self.entity_type:
            raise ValueError(f"Field {ref.qualified()} does not belong to {self.entity_type}")
        return ref.name

    def _is_write_restricted(self, name: str) -> bool:
        if name in self.restricted_fields:
            return True
        if self.context.constraints.is_restricted(self.entity_type, name):
            self.restricted_fields.add(name)
            return True
        return False

    def _forget_indexed_value(self, name: str) -> None:
        if self.has_value(name):
            self.context.discovery.unregister_for_discovery(self.entity_type, self, name, self.get(name))

    def _shelve(self, name: str, value: Any) -> None:
        self.shelved_fields[name] = value
        self.restricted_fields.add(name)

    @staticmethod
    def _check_builder(other: Any) -> None:
        if not isinstance(other, RecordBuilder):
            raise TypeError(f"Expected a RecordBuilder, got {type(other).__name__}")


RecordBuilder.model_rebuild()
