"""SQLAlchemy implementation of the event row storage."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Index, Integer, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..config import Settings
from .base import IS_NOT_NULL, IS_NULL, EventStore, StoreError, TransactionTooLargeError
from .batch import Operation, OperationResult, OperationType

logger = logging.getLogger(__name__)

Base = declarative_base()


class EventDB(Base):
    """Database model for event rows (main events and exceptions)."""

    __tablename__ = 'events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    calendar_id = Column(Integer, nullable=True, index=True)
    sync_id = Column(String(500), nullable=True)

    uid = Column(String(500), nullable=True)
    title = Column(Text, nullable=True)
    location = Column(Text, nullable=True)
    description = Column(Text, nullable=True)

    dtstart = Column(BigInteger, nullable=True)
    event_timezone = Column(String(100), nullable=True)
    all_day = Column(Boolean, nullable=False, default=False)
    dtend = Column(BigInteger, nullable=True)
    event_end_timezone = Column(String(100), nullable=True)
    duration = Column(String(50), nullable=True)

    rrule = Column(Text, nullable=True)
    rdate = Column(Text, nullable=True)
    exrule = Column(Text, nullable=True)
    exdate = Column(Text, nullable=True)

    original_id = Column(Integer, nullable=True, index=True)
    original_sync_id = Column(String(500), nullable=True)
    original_instance_time = Column(BigInteger, nullable=True)
    original_all_day = Column(Boolean, nullable=True)

    status = Column(String(20), nullable=True)
    availability = Column(String(20), nullable=False, default='busy')
    access_level = Column(String(20), nullable=False, default='default')

    sequence = Column(Integer, nullable=True)
    organizer = Column(String(500), nullable=True)
    is_organizer = Column(Boolean, nullable=True)
    has_attendee_data = Column(Boolean, nullable=False, default=False)

    dirty = Column(Boolean, nullable=False, default=False)
    deleted = Column(Boolean, nullable=False, default=False)
    etag = Column(String(255), nullable=True)
    schedule_tag = Column(String(255), nullable=True)
    sync_flags = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index('idx_events_sync_id', 'calendar_id', 'sync_id'),
        Index('idx_events_original_sync_id', 'calendar_id', 'original_sync_id'),
        Index('idx_events_dirty_deleted', 'dirty', 'deleted'),
        # row IDs of deleted events must not be reused
        {'sqlite_autoincrement': True},
    )


class ReminderDB(Base):
    """Database model for reminders of an event row."""

    __tablename__ = 'reminders'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey('events.id'), nullable=False, index=True)
    minutes = Column(Integer, nullable=False, default=0)
    method = Column(String(20), nullable=False, default='default')


class AttendeeDB(Base):
    """Database model for attendees of an event row."""

    __tablename__ = 'attendees'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey('events.id'), nullable=False, index=True)
    email = Column(String(500), nullable=True)
    name = Column(String(500), nullable=True)
    identity = Column(String(500), nullable=True)
    id_namespace = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default='none')
    type = Column(String(20), nullable=False, default='none')
    relationship = Column(String(20), nullable=False, default='attendee')


class ExtendedPropertyDB(Base):
    """Database model for extended properties (name/value pairs) of an event row."""

    __tablename__ = 'extended_properties'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey('events.id'), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    value = Column(Text, nullable=True)


TABLES = {
    model.__tablename__: model
    for model in (EventDB, ReminderDB, AttendeeDB, ExtendedPropertyDB)
}

DATA_TABLES = (ReminderDB, AttendeeDB, ExtendedPropertyDB)


class SqlEventStore(EventStore):
    """Event row storage in a relational database.

    Behaves like a calendar provider:

    * inserted exceptions with ``original_sync_id`` are associated with the main
      row of the same calendar (``original_id``),
    * deleting event rows deletes their data rows,
    * with ``strict_status_updates``, updates that clear a non-empty ``status``
      are rejected.
    """

    def __init__(self, settings: Settings, max_operations: Optional[int] = None):
        """Initialize the store.

        Args:
            settings: Application settings
            max_operations: Maximum number of operations per batch (unlimited if None)
        """
        self.settings = settings
        self.max_operations = max_operations
        self.strict_status_updates = settings.strict_status_updates
        self.engine = create_engine(
            settings.database_url,
            echo=settings.debug,
            pool_pre_ping=True
        )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.logger = logger.getChild('sql_store')

    def init_db(self) -> None:
        """Initialize database tables."""
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get database session."""
        return self.SessionLocal()

    def apply_batch(self, operations: List[Operation]) -> List[OperationResult]:
        if self.max_operations is not None and len(operations) > self.max_operations:
            raise TransactionTooLargeError(
                f"Batch with {len(operations)} operations exceeds limit of {self.max_operations}",
                limit=self.max_operations
            )

        session = self.get_session()
        results: List[OperationResult] = []
        try:
            for operation in operations:
                results.append(self._apply(session, operation, results))
            session.commit()
        except StoreError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Database error: {e}") from e
        finally:
            session.close()
        return results

    def query(self, table: str, selection: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        model = self._model(table)
        session = self.get_session()
        try:
            rows = self._filter(session.query(model), model, selection or {}).order_by(model.id).all()
            return [self._to_dict(row) for row in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Database error: {e}") from e
        finally:
            session.close()

    def _apply(self, session: Session, operation: Operation, results: List[OperationResult]) -> OperationResult:
        model = self._model(operation.table)
        values = dict(operation.values)
        for column, index in operation.value_backrefs.items():
            if index >= len(results) or results[index].row_id is None:
                raise StoreError(f"Invalid back-reference of {column} to operation {index}")
            values[column] = results[index].row_id

        if operation.type == OperationType.INSERT:
            return self._insert(session, model, values)
        elif operation.type == OperationType.UPDATE:
            return self._update(session, model, operation.selection, values)
        else:
            return self._delete(session, model, operation.selection)

    def _insert(self, session: Session, model, values: Dict[str, Any]) -> OperationResult:
        self._check_columns(model, values)
        values.pop('id', None)

        if model is EventDB and values.get('original_sync_id') and values.get('original_id') is None:
            main = session.query(EventDB).filter(
                EventDB.calendar_id == values.get('calendar_id'),
                EventDB.sync_id == values['original_sync_id'],
                EventDB.original_sync_id.is_(None)
            ).first()
            if main is not None:
                values['original_id'] = main.id

        row = model(**values)
        session.add(row)
        session.flush()
        return OperationResult(row_id=row.id, count=1)

    def _update(self, session: Session, model, selection: Dict[str, Any], values: Dict[str, Any]) -> OperationResult:
        self._check_columns(model, values)
        values.pop('id', None)

        rows = self._filter(session.query(model), model, selection).all()
        for row in rows:
            if (model is EventDB and self.strict_status_updates
                    and 'status' in values and values['status'] is None and row.status is not None):
                raise StoreError(f"Can't clear status of event {row.id}")
            for column, value in values.items():
                setattr(row, column, value)
        session.flush()
        return OperationResult(count=len(rows))

    def _delete(self, session: Session, model, selection: Dict[str, Any]) -> OperationResult:
        rows = self._filter(session.query(model), model, selection).all()
        if model is EventDB and rows:
            event_ids = [row.id for row in rows]
            for data_model in DATA_TABLES:
                session.query(data_model).filter(data_model.event_id.in_(event_ids)).delete(synchronize_session=False)
        for row in rows:
            session.delete(row)
        session.flush()
        return OperationResult(count=len(rows))

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise StoreError(f"Unknown table: {table}")

    def _check_columns(self, model, values: Dict[str, Any]) -> None:
        unknown = set(values) - set(model.__table__.columns.keys())
        if unknown:
            raise StoreError(f"Unknown columns for {model.__tablename__}: {', '.join(sorted(unknown))}")

    def _filter(self, query, model, selection: Dict[str, Any]):
        self._check_columns(model, selection)
        for column, value in selection.items():
            attr = getattr(model, column)
            if value is IS_NULL:
                query = query.filter(attr.is_(None))
            elif value is IS_NOT_NULL:
                query = query.filter(attr.isnot(None))
            elif isinstance(value, (list, tuple, set)):
                query = query.filter(attr.in_(list(value)))
            else:
                query = query.filter(attr == value)
        return query

    @staticmethod
    def _to_dict(row) -> Dict[str, Any]:
        return {column.name: getattr(row, column.name) for column in row.__table__.columns}
