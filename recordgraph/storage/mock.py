"""
In-memory simulation backend.

The mock store assigns synthetic sequential identifiers and fills in
relationship fields exactly like a real commit would, without touching a
durable store.
"""
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from recordgraph.core.fields import EntityType, Record
from recordgraph.storage.base import PendingUnitOfWork


class SequentialIdGenerator:
    """Synthetic ids: three-letter type prefix plus a zero-padded sequence number."""
    def __init__(self, width: int = 12) -> None:
        self.width = width
        self._counter = 0

    def next_id(self, entity_type: EntityType) -> str:
        self._counter += 1
        prefix = (entity_type[:3] or "REC").upper().ljust(3, "X")
        return f"{prefix}{self._counter:0{self.width}d}"

    def reset(self) -> None:
        self._counter = 0


class MockStore:
    """
    Keeps every simulated record by id and by type across simulations.
    """
    def __init__(self, id_generator: Optional[SequentialIdGenerator] = None) -> None:
        self._logger = logging.getLogger("MockStore")
        self.id_generator = id_generator or SequentialIdGenerator()
        self._records: Dict[Any, Record] = {}
        self._by_type: Dict[EntityType, List[Record]] = defaultdict(list)

    def create_unit_of_work(self, order: List[EntityType]) -> "MockUnitOfWork":
        return MockUnitOfWork(self, order)

    def add(self, record: Record) -> Any:
        record.id = self.id_generator.next_id(record.entity_type)
        self._records[record.id] = record
        self._by_type[record.entity_type].append(record)
        return record.id

    def get(self, record_id: Any) -> Optional[Record]:
        return self._records.get(record_id)

    def records_of(self, entity_type: EntityType) -> List[Record]:
        return list(self._by_type.get(entity_type, []))

    def find_by_field(self, entity_type: EntityType, field: str, value: Any) -> Optional[Record]:
        for record in reversed(self._by_type.get(entity_type, [])):
            if record.get(field) == value:
                return record
        return None

    def __len__(self) -> int:
        return len(self._records)

    def clear(self) -> None:
        self._records.clear()
        self._by_type.clear()
        self.id_generator.reset()


class MockUnitOfWork(PendingUnitOfWork):
    """Unit of work that "commits" into a MockStore."""
    def __init__(self, store: MockStore, order: List[EntityType]) -> None:
        super().__init__(order)
        self.store = store
        self._logger = logging.getLogger("MockStore")

    def commit_work(self) -> None:
        # Identifiers of a whole type first, then its links, so that
        # self-references within one type resolve too
        for entity_type in self.ordered_types():
            pending = self.records_of(entity_type)
            for record in pending:
                self.store.add(record)
            for record in pending:
                self._link(record)
        self._logger.info(f"Simulated {len(self.new_records)} records")

    def _link(self, record: Record) -> None:
        for _, field, related in self.links_of(record):
            if related.id is None:
                self._logger.warning(
                    f"{record.entity_type}.{field}: related {related.entity_type} has no id yet"
                )
                continue
            record.put(field, related.id)
        for _, field, target_type, target_field, external_id in self.lookups_of(record):
            target = self.store.find_by_field(target_type, target_field, external_id)
            if target is None:
                self._logger.warning(
                    f"{record.entity_type}.{field}: no {target_type} with {target_field}={external_id!r}"
                )
                continue
            record.put(field, target.id)
