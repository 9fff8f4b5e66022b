"""Storage of recurring events together with their exceptions."""

import logging
from typing import Any, Dict, Iterator, Optional

from ..models import EventAndExceptions, EventEntity, EventRow
from .base import IS_NOT_NULL, IS_NULL
from .batch import BatchOperation, Operation
from .calendar import LocalCalendar, StatusUpdateWorkaround

logger = logging.getLogger(__name__)


class RecurringCalendar:
    """Adds, reads, updates and deletes a main event and its exceptions as one unit.

    Exceptions reference their main event by ``original_sync_id`` (the
    ``sync_id`` of the main row); the store sets ``original_id`` when they're
    inserted. So only main events with a ``sync_id`` can have exceptions.
    """

    def __init__(self, calendar: LocalCalendar):
        self.calendar = calendar
        self.logger = logger.getChild('recurring')

    def add_event_and_exceptions(self, event_and_exceptions: EventAndExceptions) -> int:
        """Insert a main event and its exceptions in one batch.

        Returns:
            ID of the main event row
        """
        batch = self.calendar.new_batch()
        idx = self._add_to_batch(batch, event_and_exceptions)
        batch.commit()
        return batch.get_result(idx).row_id

    def get_by_id(self, id: int) -> Optional[EventAndExceptions]:
        """Main event with the given ID and all its exceptions, or None if it doesn't exist."""
        main = self.calendar.get_event(id)
        if main is None:
            return None
        return EventAndExceptions(
            main=main,
            exceptions=self.calendar.find_events({'original_id': id})
        )

    def iterate_event_and_exceptions(self, selection: Optional[Dict[str, Any]] = None) -> Iterator[EventAndExceptions]:
        """All main events (matching the selection) with their exceptions."""
        main_selection = dict(selection or {})
        main_selection.update({'original_id': IS_NULL, 'original_sync_id': IS_NULL})
        for row in self.calendar.find_event_rows(main_selection):
            event_and_exceptions = self.get_by_id(row.id)
            if event_and_exceptions is not None:
                yield event_and_exceptions

    def update_event_and_exceptions(self, id: int, event_and_exceptions: EventAndExceptions) -> int:
        """Update a main event and replace all its exceptions.

        If the main row can't be updated in place (see
        :meth:`LocalCalendar.get_status_update_workaround`), the event and its
        exceptions are deleted and inserted again.

        Returns:
            ID of the main event row (changes when the event is rebuilt)
        """
        cleaned = self.clean_up(event_and_exceptions)
        workaround = self.calendar.get_status_update_workaround(id, cleaned.main.row)

        batch = self.calendar.new_batch()
        self._delete_to_batch(batch, id, include_main=workaround == StatusUpdateWorkaround.REBUILD_EVENT)

        if workaround == StatusUpdateWorkaround.REBUILD_EVENT:
            self.logger.debug(f"Rebuilding event {id} and its exceptions")
            idx = self._add_to_batch(batch, cleaned, clean=False)
            batch.commit()
            return batch.get_result(idx).row_id

        self.calendar.update_event_in_batch(
            batch, id, cleaned.main,
            update_status=workaround == StatusUpdateWorkaround.NO_WORKAROUND
        )
        for exception in cleaned.exceptions:
            self.calendar.add_event_to_batch(batch, exception)
        batch.commit()
        return id

    def delete_event_and_exceptions(self, id: int) -> int:
        """Delete a main event and all its exceptions.

        Returns:
            Number of deleted event rows
        """
        batch = self.calendar.new_batch()
        self._delete_to_batch(batch, id)
        return batch.commit()

    def _add_to_batch(self, batch: BatchOperation, event_and_exceptions: EventAndExceptions, clean: bool = True) -> int:
        if clean:
            event_and_exceptions = self.clean_up(event_and_exceptions)
        idx = self.calendar.add_event_to_batch(batch, event_and_exceptions.main)
        for exception in event_and_exceptions.exceptions:
            self.calendar.add_event_to_batch(batch, exception)
        return idx

    def _delete_to_batch(self, batch: BatchOperation, id: int, include_main: bool = True) -> None:
        batch += Operation.delete(EventRow.TABLE, self.calendar.scoped_selection({'original_id': id}))
        if include_main:
            batch += Operation.delete(EventRow.TABLE, self.calendar.scoped_selection({'id': id}))

    # clean-up

    def clean_up(self, event_and_exceptions: EventAndExceptions) -> EventAndExceptions:
        """Make sure the main event and its exceptions can be stored.

        Exceptions are dropped if the main event has no ``sync_id`` or isn't
        recurring.
        """
        main = self.clean_main_event(event_and_exceptions.main)
        sync_id = main.row.sync_id

        if not event_and_exceptions.exceptions:
            return EventAndExceptions(main=main)

        if sync_id is None:
            self.logger.warning("Main event without sync ID, ignoring exceptions")
            return EventAndExceptions(main=main)
        if not main.row.is_recurring():
            self.logger.warning("Main event isn't recurring, ignoring exceptions")
            return EventAndExceptions(main=main)

        return EventAndExceptions(
            main=main,
            exceptions=[self.clean_exception(exception, sync_id) for exception in event_and_exceptions.exceptions]
        )

    @staticmethod
    def clean_main_event(main: EventEntity) -> EventEntity:
        """Copy of the main event without references to another main event."""
        row = main.row.model_copy(update={
            'original_id': None,
            'original_sync_id': None,
            'original_instance_time': None,
            'original_all_day': None,
        })
        return main.model_copy(update={'row': row})

    @staticmethod
    def clean_exception(exception: EventEntity, main_sync_id: str) -> EventEntity:
        """Copy of an exception without recurrence fields that references the main event."""
        row = exception.row.model_copy(update={
            'rrule': None,
            'rdate': None,
            'exrule': None,
            'exdate': None,
            'original_id': None,
            'original_sync_id': main_sync_id,
        })
        return exception.model_copy(update={'row': row})

    # maintenance

    def process_deleted_exceptions(self) -> int:
        """Remove exceptions that were deleted locally.

        The main event gets an increased SEQUENCE and is marked as dirty, so
        that the deletion is uploaded with it.

        Returns:
            Number of removed exceptions
        """
        deleted = self.calendar.find_event_rows({'original_id': IS_NOT_NULL, 'deleted': True})
        if not deleted:
            return 0

        batch = self.calendar.new_batch()
        sequences: Dict[int, int] = {}
        for exception in deleted:
            main_id = exception.original_id
            if main_id not in sequences:
                main = self.calendar.get_event_row(main_id)
                sequences[main_id] = (main.sequence or 0) if main is not None else 0
            sequences[main_id] += 1
            self.logger.debug(f"Removing deleted exception {exception.id} of event {main_id}")
            batch += Operation.delete(EventRow.TABLE, self.calendar.scoped_selection({'id': exception.id}))

        for main_id, sequence in sequences.items():
            batch += Operation.update(
                EventRow.TABLE,
                self.calendar.scoped_selection({'id': main_id}),
                {'sequence': sequence, 'dirty': True}
            )
        batch.commit()
        return len(deleted)

    def process_dirty_exceptions(self) -> int:
        """Move the modification flag of locally changed exceptions to their main events.

        Every dirty exception gets an increased SEQUENCE and is marked as
        clean; its main event is marked as dirty instead.

        Returns:
            Number of processed exceptions
        """
        dirty = self.calendar.find_event_rows({'original_id': IS_NOT_NULL, 'dirty': True, 'deleted': False})
        if not dirty:
            return 0

        batch = self.calendar.new_batch()
        for exception in dirty:
            self.logger.debug(f"Marking event {exception.original_id} dirty because of exception {exception.id}")
            batch += Operation.update(
                EventRow.TABLE,
                self.calendar.scoped_selection({'id': exception.original_id}),
                {'dirty': True}
            )
            batch += Operation.update(
                EventRow.TABLE,
                self.calendar.scoped_selection({'id': exception.id}),
                {'sequence': (exception.sequence or 0) + 1, 'dirty': False}
            )
        batch.commit()
        return len(dirty)
