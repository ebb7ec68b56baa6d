############################################################
# discovery.py
############################################################

"""
Discovery graph: find and link in-flight builders by field value.

Key concepts:

1. DISCOVERABLE FIELDS:
   - Per entity type, a set of field names whose assignments are indexed
   - Configured once (e.g. at startup) and reused across commit cycles

2. VALUE INDEX:
   - (entity type, field, value) -> builder that last set that value
   - Last write wins: a later builder setting the same value replaces the
     earlier registrant

3. RELATIONSHIP BOOKKEEPING:
   - Resolved parent links (child.field -> parent) per child builder
   - External references recorded per builder, checked against in-flight
     builders before commit
   - Sync links mirroring one builder's field into another's

4. UNIT OF WORK PREPARATION:
   - Pushes each builder's payload record and resolved links into the
     ordinary or privileged queue of the persistence engine
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from recordgraph.core.fields import EntityType, FieldLike, Record, as_field_ref
from recordgraph.core.reference import ExternalReference, ParentLink, SyncLink

logger = logging.getLogger("DiscoveryGraph")

IndexKey = Tuple[EntityType, str, Any]


class DiscoveryGraph(BaseModel):
    discoverable: Dict[EntityType, Set[str]] = Field(default_factory=dict)
    index: Dict[IndexKey, Any] = Field(default_factory=dict)
    parent_links: Dict[UUID, Dict[str, ParentLink]] = Field(default_factory=dict)
    references: Dict[UUID, List[ExternalReference]] = Field(default_factory=dict)
    sync_links: List[SyncLink] = Field(default_factory=list)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    ##############################
    # Discoverable fields
    ##############################

    def set_discoverable_field(self, type_or_field: FieldLike, field: Optional[FieldLike] = None) -> None:
        """
        Mark a field as discoverable. Idempotent.

        Accepts ``(entity_type, field)``, a qualified FieldRef or a
        ``"Type.Field"`` string.
        """
        if field is None:
            ref = as_field_ref(type_or_field)
            if ref.entity_type is None:
                raise ValueError(f"Discoverable field needs an entity type: {type_or_field!r}")
        else:
            if not isinstance(type_or_field, str):
                raise ValueError(f"Expected an entity type name, got {type_or_field!r}")
            ref = as_field_ref(field, type_or_field)
        self.discoverable.setdefault(ref.entity_type, set()).add(ref.name)
        logger.debug(f"Discoverable field registered: {ref.qualified()}")

    def is_discoverable(self, entity_type: EntityType, field: FieldLike) -> bool:
        return as_field_ref(field).name in self.discoverable.get(entity_type, set())

    def register_for_discovery(self, entity_type: EntityType, builder: Any, field: FieldLike, value: Any) -> None:
        """Index ``builder`` under (type, field, value) if the field is discoverable."""
        name = as_field_ref(field).name
        if not self.is_discoverable(entity_type, name):
            return
        try:
            key = (entity_type, name, value)
            hash(key)
        except TypeError:
            logger.debug(f"Value for {entity_type}.{name} is not hashable, not indexed")
            return
        previous = self.index.get(key)
        if previous is not None and previous is not builder:
            logger.debug(f"{entity_type}.{name}={value!r} now points at {builder!r} (was {previous!r})")
        self.index[key] = builder

    def unregister_for_discovery(self, entity_type: EntityType, builder: Any, field: FieldLike, value: Any) -> None:
        """Drop the (type, field, value) entry if it still points at ``builder``."""
        try:
            key = (entity_type, as_field_ref(field).name, value)
            if self.index.get(key) is builder:
                del self.index[key]
        except TypeError:
            return

    def discover_relationship_for(self, entity_type: EntityType, field: FieldLike, value: Any) -> Optional[Any]:
        """Return the builder indexed at (type, field, value), or None."""
        try:
            return self.index.get((entity_type, as_field_ref(field).name, value))
        except TypeError:
            return None

    ##############################
    # Parent / child links
    ##############################

    def set_parent(self, builder: Any, field: str, parent: Any) -> ParentLink:
        link = ParentLink(child=builder, field=field, parent=parent)
        self.parent_links.setdefault(builder.builder_id, {})[field] = link
        logger.debug(f"Recorded {link!r}")
        return link

    def set_child(self, builder: Any, field: str, child: Any) -> ParentLink:
        return self.set_parent(child, field, builder)

    def parents_of(self, builder: Any) -> List[ParentLink]:
        return list(self.parent_links.get(builder.builder_id, {}).values())

    def children_of(self, builder: Any) -> List[ParentLink]:
        return [
            link
            for links in self.parent_links.values()
            for link in links.values()
            if link.parent is builder
        ]

    def register_parents(self, builder: Any, registration: Any) -> None:
        """Register the whole known parent chain of ``builder``."""
        for parent in self._walk_parents(builder):
            if not parent.is_persisted():
                registration.add(parent)

    def unregister_parents(self, builder: Any, registration: Any) -> None:
        """Remove the whole known parent chain of ``builder`` from the registration set."""
        for parent in self._walk_parents(builder):
            registration.discard(parent)

    def _walk_parents(self, builder: Any) -> List[Any]:
        found: List[Any] = []
        seen: Set[UUID] = {builder.builder_id}
        stack = [builder]
        while stack:
            current = stack.pop()
            candidates = list(current.pending_parents.values())
            candidates.extend(link.parent for link in self.parents_of(current))
            for parent in candidates:
                if parent.builder_id in seen:
                    continue
                seen.add(parent.builder_id)
                found.append(parent)
                stack.append(parent)
        return found

    ##############################
    # External references
    ##############################

    def set_reference(self, builder: Any, reference: ExternalReference) -> EntityType:
        """Record a pending external reference; returns its target type for edge bookkeeping."""
        refs = self.references.setdefault(builder.builder_id, [])
        if reference not in refs:
            refs.append(reference)
        return reference.target_type

    def references_of(self, builder: Any) -> List[ExternalReference]:
        return list(self.references.get(builder.builder_id, []))

    def determine_pre_existing(self, builders: Iterable[Any]) -> int:
        """
        Decide, per recorded or still pending reference, whether it points at an in-flight builder.

        Returns the number of references resolved to builders.
        """
        in_flight = list(builders)
        pending = [ref for refs in self.references.values() for ref in refs]
        pending.extend(ref for builder in in_flight for ref in builder.pending_references)
        resolved = 0
        for ref in pending:
            ref.resolved_builder = self._find_target(ref, in_flight)
            if ref.resolved_builder is not None:
                resolved += 1
        logger.info(f"Resolved {resolved} external references to in-flight builders")
        return resolved

    def _find_target(self, ref: ExternalReference, in_flight: List[Any]) -> Optional[Any]:
        candidate = self.discover_relationship_for(ref.target_type, ref.target_field, ref.external_id)
        if (
            candidate is not None
            and (candidate.is_persisted() or candidate in in_flight)
            and candidate.get(ref.target_field) == ref.external_id
        ):
            return candidate
        for builder in in_flight:
            if builder.entity_type == ref.target_type and builder.get(ref.target_field) == ref.external_id:
                return builder
        return None

    ##############################
    # Sync links
    ##############################

    def sync_on_change(self, source: Any, source_field: str, target: Any, target_field: str) -> SyncLink:
        link = SyncLink(source=source, source_field=source_field, target=target, target_field=target_field)
        self.sync_links.append(link)
        return link

    def apply_sync_links(self) -> int:
        """
        Copy each source value into its target through the target's ``set`` path.

        Passes repeat until nothing changes, so chained links settle whatever
        order they were registered in. Links that keep changing each other
        are given up on after one pass per link.
        """
        total = 0
        for _ in range(len(self.sync_links) + 1):
            applied = self._apply_sync_pass()
            if not applied:
                return total
            total += applied
        logger.warning(f"Sync links did not settle after {len(self.sync_links) + 1} passes, check for cyclic links")
        return total

    def _apply_sync_pass(self) -> int:
        applied = 0
        for link in self.sync_links:
            if link.target.is_persisted() or not link.source.has_value(link.source_field):
                continue
            value = link.source.get(link.source_field)
            if link.target.has_value(link.target_field) and link.target.get(link.target_field) == value:
                continue
            link.target.set(link.target_field, value)
            applied += 1
        return applied

    ##############################
    # Unit of work
    ##############################

    def prepare_uow(
        self,
        builders: Iterable[Any],
        privileged_uow: Any,
        ordinary_uow: Any,
        for_commit: bool = True,
    ) -> Dict[UUID, Record]:
        """
        Push payload records and their resolved links into the matching queue.

        Args:
            builders: Builders taking part in this cycle
            privileged_uow: Queue for builders marked privileged
            ordinary_uow: Queue for every other builder
            for_commit: Restricted fields are left out of real commits

        Returns:
            Map of builder id to the payload record handed to the queue
        """
        ordered = list(builders)
        payloads: Dict[UUID, Record] = {}
        for builder in ordered:
            payload = builder.commit_payload() if for_commit else builder.get_record().copy_record()
            payloads[builder.builder_id] = payload
            self._queue_for(builder, privileged_uow, ordinary_uow).register_new(payload)

        def record_of(target: Any) -> Record:
            return payloads.get(target.builder_id, target.record)

        for builder in ordered:
            uow = self._queue_for(builder, privileged_uow, ordinary_uow)
            payload = payloads[builder.builder_id]
            for link in self.parents_of(builder):
                uow.register_relationship(payload, link.field, record_of(link.parent))
            for ref in self.references_of(builder):
                if ref.resolved_builder is not None:
                    uow.register_relationship(payload, ref.relationship_field, record_of(ref.resolved_builder))
                else:
                    uow.register_relationship_by_external_id(
                        payload, ref.relationship_field, ref.target_type, ref.target_field, ref.external_id
                    )
        logger.info(f"Prepared {len(payloads)} records for the unit of work")
        return payloads

    @staticmethod
    def _queue_for(builder: Any, privileged_uow: Any, ordinary_uow: Any) -> Any:
        return privileged_uow if builder.is_privileged() else ordinary_uow

    ##############################
    # Housekeeping
    ##############################

    def forget(self, builder: Any) -> None:
        """Drop the link and reference bookkeeping of a builder."""
        self.parent_links.pop(builder.builder_id, None)
        self.references.pop(builder.builder_id, None)
        self.sync_links = [link for link in self.sync_links if link.target is not builder]

    def clear(self) -> None:
        self.discoverable.clear()
        self.index.clear()
        self.parent_links.clear()
        self.references.clear()
        self.sync_links.clear()
