"""Row-level access to the events of one calendar."""

import logging
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from ..exceptions import LocalStorageError
from ..models import AttendeeRow, EventEntity, EventRow, ExtendedPropertyRow, ReminderRow
from .base import EventStore, StoreError
from .batch import BatchOperation, Operation

logger = logging.getLogger(__name__)

DATA_ROW_TYPES = (ReminderRow, AttendeeRow, ExtendedPropertyRow)


class StatusUpdateWorkaround(str, Enum):
    """How an event row has to be updated so that the backend accepts the new status."""

    NO_WORKAROUND = "no_workaround"
    DONT_UPDATE_STATUS = "dont_update_status"
    REBUILD_EVENT = "rebuild_event"


class LocalCalendar:
    """Events of one calendar in an :class:`EventStore`.

    All selections are restricted to rows of this calendar.
    """

    def __init__(self, store: EventStore, calendar_id: int, max_operations_per_commit: Optional[int] = None):
        self.store = store
        self.calendar_id = calendar_id
        self.max_operations_per_commit = max_operations_per_commit
        self.logger = logger.getChild('calendar')

    def new_batch(self) -> BatchOperation:
        return BatchOperation(self.store, self.max_operations_per_commit)

    def scoped_selection(self, selection: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        result = dict(selection or {})
        result['calendar_id'] = self.calendar_id
        return result

    # create

    def add_event(self, entity: EventEntity) -> int:
        """Insert an event row with its data rows.

        Returns:
            ID of the new event row
        """
        batch = self.new_batch()
        idx = self.add_event_to_batch(batch, entity)
        batch.commit()
        return batch.get_result(idx).row_id

    def add_event_to_batch(self, batch: BatchOperation, entity: EventEntity) -> int:
        """Queue the insertion of an event row with its data rows.

        Returns:
            Back-reference index of the event row insert
        """
        values = entity.row.to_values()
        values['calendar_id'] = self.calendar_id

        idx = batch.next_backref_idx()
        batch += Operation.insert(EventRow.TABLE, values)
        for data_row in self._data_rows(entity):
            batch += Operation.insert(data_row.TABLE, data_row.to_values()).with_value_backref('event_id', idx)
        return idx

    # read

    def _query(self, table: str, selection: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            return self.store.query(table, selection)
        except StoreError as e:
            raise LocalStorageError(f"Couldn't query {table}: {e}", e)

    def get_event_row(self, id: int) -> Optional[EventRow]:
        rows = self._query(EventRow.TABLE, self.scoped_selection({'id': id}))
        return EventRow.model_validate(rows[0]) if rows else None

    def get_event(self, id: int) -> Optional[EventEntity]:
        """Event row with all data rows, or None if it doesn't exist."""
        row = self.get_event_row(id)
        if row is None:
            return None
        return self._entity(row)

    def find_event_rows(self, selection: Optional[Dict[str, Any]] = None) -> List[EventRow]:
        return list(self.iterate_event_rows(selection))

    def iterate_event_rows(self, selection: Optional[Dict[str, Any]] = None) -> Iterator[EventRow]:
        for values in self._query(EventRow.TABLE, self.scoped_selection(selection)):
            yield EventRow.model_validate(values)

    def find_events(self, selection: Optional[Dict[str, Any]] = None) -> List[EventEntity]:
        return [self._entity(row) for row in self.iterate_event_rows(selection)]

    def _entity(self, row: EventRow) -> EventEntity:
        data = {
            data_type.TABLE: [
                data_type.model_validate(values)
                for values in self._query(data_type.TABLE, {'event_id': row.id})
            ]
            for data_type in DATA_ROW_TYPES
        }
        return EventEntity(
            row=row,
            reminders=data[ReminderRow.TABLE],
            attendees=data[AttendeeRow.TABLE],
            extended_properties=data[ExtendedPropertyRow.TABLE],
        )

    # update

    def get_status_update_workaround(self, id: int, row: EventRow) -> StatusUpdateWorkaround:
        """Check whether the backend would accept the status of ``row`` for event ``id``.

        Some backends reject updates that set a status to null. When the
        status is already null, it's enough not to write it again; otherwise
        the event has to be deleted and inserted again.
        """
        if row.status is not None:
            return StatusUpdateWorkaround.NO_WORKAROUND

        existing = self.get_event_row(id)
        if existing is not None and existing.status is None:
            return StatusUpdateWorkaround.DONT_UPDATE_STATUS
        return StatusUpdateWorkaround.REBUILD_EVENT

    def update_event(self, id: int, entity: EventEntity) -> int:
        """Update an event row and replace its data rows.

        Returns:
            ID of the event row, which changes if the event had to be rebuilt
        """
        workaround = self.get_status_update_workaround(id, entity.row)
        batch = self.new_batch()
        if workaround == StatusUpdateWorkaround.REBUILD_EVENT:
            self.logger.debug(f"Rebuilding event {id} to clear its status")
            batch += Operation.delete(EventRow.TABLE, self.scoped_selection({'id': id}))
            idx = self.add_event_to_batch(batch, entity)
            batch.commit()
            return batch.get_result(idx).row_id

        self.update_event_in_batch(
            batch, id, entity,
            update_status=workaround == StatusUpdateWorkaround.NO_WORKAROUND
        )
        batch.commit()
        return id

    def update_event_in_batch(
        self,
        batch: BatchOperation,
        id: int,
        entity: EventEntity,
        update_status: bool = True
    ) -> None:
        """Queue the update of an event row and the replacement of its data rows."""
        for data_type in DATA_ROW_TYPES:
            batch += Operation.delete(data_type.TABLE, {'event_id': id})

        values = entity.row.to_values()
        values['calendar_id'] = self.calendar_id
        if not update_status:
            values.pop('status', None)
        batch += Operation.update(EventRow.TABLE, self.scoped_selection({'id': id}), values)

        for data_row in self._data_rows(entity):
            values = data_row.to_values()
            values['event_id'] = id
            batch += Operation.insert(data_row.TABLE, values)

    def update_event_row(self, id: int, values: Dict[str, Any]) -> int:
        """Update some columns of an event row.

        Returns:
            Number of updated rows
        """
        return self.update_event_rows({'id': id}, values)

    def update_event_rows(self, selection: Dict[str, Any], values: Dict[str, Any]) -> int:
        batch = self.new_batch()
        batch += Operation.update(EventRow.TABLE, self.scoped_selection(selection), values)
        return batch.commit()

    # delete

    def delete_event(self, id: int) -> int:
        """Delete an event row (the store deletes its data rows)."""
        batch = self.new_batch()
        batch += Operation.delete(EventRow.TABLE, self.scoped_selection({'id': id}))
        return batch.commit()

    @staticmethod
    def _data_rows(entity: EventEntity):
        yield from entity.reminders
        yield from entity.attendees
        yield from entity.extended_properties
