"""Local event repository: the interface used by a sync controller."""

import logging
from typing import Iterator, Optional, Tuple

from icalendar import Calendar

from .config import Settings
from .exceptions import LocalStorageError
from .ical import AssociatedEvents, prodid, to_calendar
from .mapping import EventBuilder, EventProcessor
from .models import EventAndExceptions
from .storage import IS_NULL, EventStore, LocalCalendar, RecurringCalendar, SequenceUpdater
from .timeutils import TimeZoneRegistry

logger = logging.getLogger(__name__)


class LocalEventRepository:
    """Stores iCalendar events of one calendar in an :class:`EventStore`.

    Mapping errors of a single event raise an :class:`InvalidResourceError`
    subclass before anything is written; storage errors raise
    :class:`LocalStorageError`.
    """

    def __init__(self, store: EventStore, settings: Settings, calendar_id: int = 1):
        self.store = store
        self.settings = settings
        self.calendar_id = calendar_id
        self.registry = TimeZoneRegistry.from_settings(settings)
        self.calendar = LocalCalendar(store, calendar_id, settings.max_operations_per_commit)
        self.recurring = RecurringCalendar(self.calendar)
        self.processor = EventProcessor(self.registry, account_name=settings.account_name)
        self.sequence_updater = SequenceUpdater()
        self.logger = logger.getChild('repository')

    def _builder(self, sync_id: Optional[str], etag: Optional[str], schedule_tag: Optional[str]) -> EventBuilder:
        return EventBuilder(
            self.registry,
            sync_id=sync_id,
            calendar_id=self.calendar_id,
            etag=etag,
            schedule_tag=schedule_tag,
            owner_account=self.settings.owner_account,
        )

    def _get_existing(self, id: int) -> EventAndExceptions:
        event_and_exceptions = self.recurring.get_by_id(id)
        if event_and_exceptions is None:
            raise LocalStorageError(f"Event {id} not found")
        return event_and_exceptions

    def add(
        self,
        associated: AssociatedEvents,
        sync_id: str,
        etag: Optional[str] = None,
        schedule_tag: Optional[str] = None
    ) -> int:
        """Store a new event (with exceptions).

        Args:
            associated: Main VEVENT and exceptions
            sync_id: Stable identity of the event (for instance its resource name)
            etag: ETag of the remote resource

        Returns:
            ID of the main event row
        """
        rows = self._builder(sync_id, etag, schedule_tag).build(associated)
        id = self.recurring.add_event_and_exceptions(rows)
        self.logger.info(f"Added event {sync_id} as {id} with {len(rows.exceptions)} exception(s)")
        return id

    def update(
        self,
        id: int,
        associated: AssociatedEvents,
        etag: Optional[str] = None,
        schedule_tag: Optional[str] = None
    ) -> int:
        """Replace a stored event (with exceptions).

        Returns:
            ID of the main event row (changes when the event has to be rebuilt)
        """
        existing = self.calendar.get_event_row(id)
        if existing is None:
            raise LocalStorageError(f"Event {id} not found")

        rows = self._builder(existing.sync_id, etag, schedule_tag).build(associated)
        new_id = self.recurring.update_event_and_exceptions(id, rows)
        self.logger.info(f"Updated event {existing.sync_id} ({id} -> {new_id})")
        return new_id

    def delete(self, id: int) -> int:
        """Delete an event with all its exceptions.

        Returns:
            Number of deleted rows
        """
        count = self.recurring.delete_event_and_exceptions(id)
        self.logger.info(f"Deleted event {id} ({count} rows)")
        return count

    def get(self, id: int) -> Optional[AssociatedEvents]:
        """Stored event as VEVENTs, or None if it doesn't exist."""
        event_and_exceptions = self.recurring.get_by_id(id)
        if event_and_exceptions is None:
            return None
        return self.processor.populate(event_and_exceptions)

    def find_by_sync_id(self, sync_id: str) -> Optional[int]:
        rows = self.calendar.find_event_rows({'sync_id': sync_id, 'original_id': IS_NULL})
        return rows[0].id if rows else None

    def iterate(self) -> Iterator[Tuple[int, EventAndExceptions]]:
        for event_and_exceptions in self.recurring.iterate_event_and_exceptions():
            yield event_and_exceptions.main.row.id, event_and_exceptions

    def prepare_upload(self, id: int) -> Tuple[Calendar, Optional[int]]:
        """Generate the iCalendar of a locally modified event.

        The SEQUENCE is increased (if needed) before the event is mapped.

        Returns:
            Tuple of (iCalendar, SEQUENCE to pass to :meth:`confirm_upload`)
        """
        event_and_exceptions = self._get_existing(id)
        sequence = self.sequence_updater.increase_sequence(event_and_exceptions.main)
        associated = self.processor.populate(event_and_exceptions)
        return to_calendar(associated, prodid(self.settings)), sequence

    def confirm_upload(
        self,
        id: int,
        sequence: Optional[int] = None,
        etag: Optional[str] = None,
        schedule_tag: Optional[str] = None
    ) -> None:
        """Mark an event as uploaded and store its new SEQUENCE and ETag."""
        values = {'dirty': False, 'etag': etag, 'schedule_tag': schedule_tag}
        if sequence is not None:
            values['sequence'] = sequence
        if not self.calendar.update_event_row(id, values):
            raise LocalStorageError(f"Event {id} not found")

    def run_sweeps(self) -> Tuple[int, int]:
        """Process locally deleted and modified exceptions.

        Returns:
            Number of (deleted, modified) exceptions that were processed
        """
        deleted = self.recurring.process_deleted_exceptions()
        dirty = self.recurring.process_dirty_exceptions()
        return deleted, dirty
