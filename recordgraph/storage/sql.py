############################################################
# sql.py
############################################################

"""
SQLAlchemy persistence engine.

Every record lands in one generic ``records`` table: the entity type, an
auto-incrementing integer id and the field values as JSON. A unit of work is
written in a single transaction, type by type in commit order; relationship
fields are filled with the ids of rows flushed earlier in the same
transaction (or committed before it). Any failure rolls the whole unit back
and clears the ids it had handed out.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic_core import to_jsonable_python
from sqlalchemy import JSON, DateTime, Integer, String, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from recordgraph.config import Settings
from recordgraph.core.fields import EntityType, Record
from recordgraph.storage.base import PendingUnitOfWork, PersistenceError


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""
    pass


class RecordRow(Base):
    """Generic table for every committed record."""
    __tablename__ = "records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String, index=True)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def to_record(self) -> Record:
        return Record(entity_type=self.entity_type, id=self.id, fields=dict(self.data or {}))


class SqlPersistenceEngine:
    """
    SQLAlchemy-backed persistence engine.

    Features:
    - One transaction per unit of work
    - Insert order follows the commit order of entity types
    - External-id lookups against rows already in the database
    """
    def __init__(self, session_factory: Callable[[], Session], engine: Optional[Engine] = None) -> None:
        self._logger = logging.getLogger("SqlPersistenceEngine")
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> "SqlPersistenceEngine":
        """Create the engine and the records table for a database URL."""
        kwargs: Dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite") and ":memory:" in url:
            # One shared connection, otherwise every session sees an empty database
            kwargs.update(connect_args={"check_same_thread": False}, poolclass=StaticPool)
        engine = create_engine(url, **kwargs)
        Base.metadata.create_all(engine)
        return cls(sessionmaker(bind=engine, expire_on_commit=False), engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlPersistenceEngine":
        return cls.from_url(settings.database_url)

    def create_unit_of_work(self, order: List[EntityType]) -> "SqlUnitOfWork":
        return SqlUnitOfWork(self, order)

    def get_session(self, existing_session: Optional[Session] = None) -> Tuple[Session, bool]:
        """
        Get a session - either the provided one or a new one.

        Returns:
            Tuple of (session, should_close_when_done)
        """
        if existing_session is not None:
            return existing_session, False
        return self._session_factory(), True

    def get(self, record_id: int, session: Optional[Session] = None) -> Optional[Record]:
        session, should_close = self.get_session(session)
        try:
            row = session.get(RecordRow, record_id)
            return row.to_record() if row is not None else None
        finally:
            if should_close:
                session.close()

    def list_by_type(self, entity_type: EntityType, session: Optional[Session] = None) -> List[Record]:
        session, should_close = self.get_session(session)
        try:
            rows = session.execute(
                select(RecordRow).where(RecordRow.entity_type == entity_type).order_by(RecordRow.id)
            ).scalars()
            return [row.to_record() for row in rows]
        finally:
            if should_close:
                session.close()

    def find_by_field(
        self, entity_type: EntityType, field: str, value: Any, session: Optional[Session] = None
    ) -> Optional[Record]:
        """Most recent record of a type whose field equals value."""
        expected = to_jsonable_python(value)
        for record in reversed(self.list_by_type(entity_type, session)):
            if record.get(field) == expected:
                return record
        return None

    def get_registry_status(self) -> Dict[str, Any]:
        url = str(self._engine.url) if self._engine is not None else None
        return {"storage": "sql", "url": url}


class SqlUnitOfWork(PendingUnitOfWork):
    """Unit of work committed by SqlPersistenceEngine in one transaction."""
    def __init__(self, engine: SqlPersistenceEngine, order: List[EntityType]) -> None:
        super().__init__(order)
        self.engine = engine
        self._logger = logging.getLogger("SqlPersistenceEngine")

    def commit_work(self) -> None:
        if not self.has_work():
            return
        session, _ = self.engine.get_session()
        assigned: List[Record] = []
        try:
            for entity_type in self.ordered_types():
                pending = self.records_of(entity_type)
                if not pending:
                    continue
                deferred = []
                for record in pending:
                    deferred.extend(self._link(record, session, allow_pending=True))
                rows = []
                for record in pending:
                    row = RecordRow(entity_type=entity_type, data=to_jsonable_python(record.fields))
                    session.add(row)
                    rows.append((record, row))
                session.flush()
                for record, row in rows:
                    record.id = row.id
                    assigned.append(record)
                # Links to rows of the same type exist only after the flush
                if deferred:
                    for record, row in rows:
                        if any(d is record for d in deferred):
                            self._link(record, session, allow_pending=False)
                            row.data = to_jsonable_python(record.fields)
                    session.flush()
                self._logger.debug(f"Inserted {len(rows)} {entity_type} records")
            session.commit()
            self._logger.info(f"Committed {len(assigned)} records")
        except Exception as e:
            session.rollback()
            for record in assigned:
                record.id = None
            self._logger.error(f"Error committing unit of work: {str(e)}")
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError(f"Commit failed: {e}") from e
        finally:
            session.close()

    def _link(self, record: Record, session: Session, allow_pending: bool) -> List[Record]:
        """
        Fill relationship fields of ``record``.

        Returns the record in a list when a link had to wait for a row of its
        own type to be flushed.
        """
        waiting: List[Record] = []
        for _, field, related in self.links_of(record):
            if related.id is None:
                if allow_pending and related.entity_type == record.entity_type:
                    waiting.append(record)
                    continue
                raise PersistenceError(
                    f"{record.entity_type}.{field} points at a {related.entity_type} "
                    f"that is not committed before it"
                )
            record.put(field, related.id)
        for _, field, target_type, target_field, external_id in self.lookups_of(record):
            target_id = self._lookup(target_type, target_field, external_id, session)
            if target_id is None:
                raise PersistenceError(
                    f"{record.entity_type}.{field}: no {target_type} with {target_field}={external_id!r}"
                )
            record.put(field, target_id)
        return waiting[:1]

    def _lookup(self, target_type: EntityType, target_field: str, external_id: Any, session: Session) -> Optional[Any]:
        for candidate in reversed(self.records_of(target_type)):
            if candidate.id is not None and candidate.get(target_field) == external_id:
                return candidate.id
        found = self.engine.find_by_field(target_type, target_field, external_id, session)
        return found.id if found is not None else None
