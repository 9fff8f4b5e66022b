"""Tests for storing main events together with their exceptions."""

from calsync_store.models import (
    EventAndExceptions,
    EventEntity,
    EventRow,
    EventStatus,
    ExtendedPropertyRow,
    ReminderRow,
)
from calsync_store.storage import LocalCalendar, RecurringCalendar, StatusUpdateWorkaround
from calsync_store.storage.database import SqlEventStore


def main_entity(status=EventStatus.CONFIRMED, sync_id="event-1", **values):
    fields = dict(
        uid="uid-1",
        title="Daily",
        dtstart=1704103200000,
        event_timezone="Europe/Vienna",
        duration="PT1H",
        rrule="FREQ=DAILY;COUNT=5",
        sequence=1,
    )
    fields.update(values)
    return EventEntity(
        row=EventRow(sync_id=sync_id, status=status, **fields),
        reminders=[ReminderRow(minutes=15)],
    )


def exception_entity(instance_time=1704189600000, title="Moved"):
    return EventEntity(
        row=EventRow(
            uid="uid-1",
            title=title,
            dtstart=instance_time + 3600000,
            dtend=instance_time + 7200000,
            event_timezone="Europe/Vienna",
            original_instance_time=instance_time,
            original_all_day=False,
        ),
        extended_properties=[ExtendedPropertyRow(name=ExtendedPropertyRow.URL, value="https://example.com")],
    )


def add_event(recurring, exceptions=1, **values):
    return recurring.add_event_and_exceptions(EventAndExceptions(
        main=main_entity(**values),
        exceptions=[exception_entity(1704189600000 + i * 86400000) for i in range(exceptions)],
    ))


class TestLocalCalendar:
    """Tests for row-level operations of one calendar."""

    def test_add_and_get(self, calendar):
        id = calendar.add_event(main_entity())

        entity = calendar.get_event(id)
        assert entity.row.title == "Daily"
        assert entity.row.calendar_id == 1
        assert [r.minutes for r in entity.reminders] == [15]

    def test_other_calendar_is_invisible(self, store, calendar):
        id = calendar.add_event(main_entity())
        other = LocalCalendar(store, calendar_id=2)

        assert other.get_event(id) is None
        assert other.find_event_rows() == []

    def test_update_replaces_data_rows(self, calendar):
        id = calendar.add_event(main_entity())
        updated = main_entity().model_copy(update={"reminders": [ReminderRow(minutes=5), ReminderRow(minutes=30)]})

        assert calendar.update_event(id, updated) == id
        assert sorted(r.minutes for r in calendar.get_event(id).reminders) == [5, 30]

    def test_status_workaround(self, calendar):
        confirmed = calendar.add_event(main_entity(status=EventStatus.CONFIRMED))
        without = calendar.add_event(main_entity(status=None, sync_id="event-2"))
        no_status = EventRow(status=None)

        assert calendar.get_status_update_workaround(confirmed, EventRow(status=EventStatus.TENTATIVE)) == \
            StatusUpdateWorkaround.NO_WORKAROUND
        assert calendar.get_status_update_workaround(without, no_status) == StatusUpdateWorkaround.DONT_UPDATE_STATUS
        assert calendar.get_status_update_workaround(confirmed, no_status) == StatusUpdateWorkaround.REBUILD_EVENT
        assert calendar.get_status_update_workaround(9999, no_status) == StatusUpdateWorkaround.REBUILD_EVENT

    def test_update_clearing_status_rebuilds(self, calendar):
        id = calendar.add_event(main_entity(status=EventStatus.CONFIRMED))

        new_id = calendar.update_event(id, main_entity(status=None))

        assert new_id != id
        assert calendar.get_event(id) is None
        assert calendar.get_event(new_id).row.status is None

    def test_update_event_rows(self, calendar):
        calendar.add_event(main_entity())
        calendar.add_event(main_entity(sync_id="event-2"))

        assert calendar.update_event_rows({"dirty": False}, {"dirty": True}) == 2
        assert all(row.dirty for row in calendar.find_event_rows())

    def test_delete(self, calendar):
        id = calendar.add_event(main_entity())
        assert calendar.delete_event(id) == 1
        assert calendar.get_event(id) is None


class TestRecurringCalendar:
    """Tests for RecurringCalendar."""

    def test_add_and_get(self, recurring):
        id = add_event(recurring, exceptions=2)

        event = recurring.get_by_id(id)
        assert event.main.row.id == id
        assert len(event.exceptions) == 2
        for exception in event.exceptions:
            assert exception.row.original_id == id
            assert exception.row.original_sync_id == "event-1"
            assert exception.row.rrule is None
            assert [p.name for p in exception.extended_properties] == [ExtendedPropertyRow.URL]

    def test_get_missing(self, recurring):
        assert recurring.get_by_id(12345) is None

    def test_exceptions_dropped_without_sync_id(self, recurring):
        id = add_event(recurring, sync_id=None)
        assert recurring.get_by_id(id).exceptions == []
        assert len(recurring.calendar.find_event_rows()) == 1

    def test_exceptions_dropped_when_not_recurring(self, recurring):
        id = add_event(recurring, rrule=None)
        assert recurring.get_by_id(id).exceptions == []

    def test_iterate(self, recurring):
        first = add_event(recurring, exceptions=2)
        second = add_event(recurring, exceptions=0, sync_id="event-2")

        events = list(recurring.iterate_event_and_exceptions())
        assert [e.main.row.id for e in events] == [first, second]
        assert [len(e.exceptions) for e in events] == [2, 0]

    def test_delete_removes_exceptions(self, recurring):
        id = add_event(recurring, exceptions=3)

        assert recurring.delete_event_and_exceptions(id) == 4
        assert recurring.calendar.find_event_rows() == []

    def test_update_in_place(self, recurring):
        id = add_event(recurring, exceptions=2)

        new_id = recurring.update_event_and_exceptions(id, EventAndExceptions(
            main=main_entity(title="Renamed"),
            exceptions=[exception_entity(title="Only one")],
        ))

        assert new_id == id
        event = recurring.get_by_id(id)
        assert event.main.row.title == "Renamed"
        assert [e.row.title for e in event.exceptions] == ["Only one"]
        assert len(recurring.calendar.find_event_rows()) == 2

    def test_update_clearing_status_rebuilds_event(self, recurring):
        id = add_event(recurring, exceptions=2)

        new_id = recurring.update_event_and_exceptions(id, EventAndExceptions(
            main=main_entity(status=None),
            exceptions=[exception_entity()],
        ))

        assert new_id != id
        assert recurring.get_by_id(id) is None
        event = recurring.get_by_id(new_id)
        assert event.main.row.status is None
        assert len(event.exceptions) == 1
        assert event.exceptions[0].row.original_id == new_id
        assert len(recurring.calendar.find_event_rows()) == 2

    def test_update_keeps_empty_status(self, recurring):
        id = add_event(recurring, status=None)

        new_id = recurring.update_event_and_exceptions(id, EventAndExceptions(main=main_entity(status=None)))

        assert new_id == id

    def test_rebuild_with_transaction_limit(self, settings):
        store = SqlEventStore(settings, max_operations=3)
        store.init_db()
        recurring = RecurringCalendar(LocalCalendar(store, calendar_id=1))
        id = add_event(recurring, exceptions=3)

        new_id = recurring.update_event_and_exceptions(id, EventAndExceptions(
            main=main_entity(status=None),
            exceptions=[exception_entity(), exception_entity(1704276000000)],
        ))

        event = recurring.get_by_id(new_id)
        assert len(event.exceptions) == 2
        assert all(e.row.original_id == new_id for e in event.exceptions)


class TestSweeps:
    """Tests for processing locally deleted and modified exceptions."""

    def test_deleted_exceptions(self, recurring):
        id = add_event(recurring, exceptions=3)
        exceptions = recurring.get_by_id(id).exceptions
        for exception in exceptions[:2]:
            recurring.calendar.update_event_row(exception.row.id, {"deleted": True})

        assert recurring.process_deleted_exceptions() == 2

        event = recurring.get_by_id(id)
        assert [e.row.id for e in event.exceptions] == [exceptions[2].row.id]
        assert event.main.row.sequence == 3
        assert event.main.row.dirty

    def test_no_deleted_exceptions(self, recurring):
        id = add_event(recurring)
        assert recurring.process_deleted_exceptions() == 0
        assert not recurring.get_by_id(id).main.row.dirty

    def test_dirty_exceptions(self, recurring):
        id = add_event(recurring, exceptions=2)
        exception = recurring.get_by_id(id).exceptions[0]
        recurring.calendar.update_event_row(exception.row.id, {"dirty": True, "sequence": 4})

        assert recurring.process_dirty_exceptions() == 1

        event = recurring.get_by_id(id)
        assert event.main.row.dirty
        assert event.main.row.sequence == 1
        processed = next(e for e in event.exceptions if e.row.id == exception.row.id)
        assert not processed.row.dirty
        assert processed.row.sequence == 5

    def test_deleted_exception_not_processed_as_dirty(self, recurring):
        id = add_event(recurring)
        exception = recurring.get_by_id(id).exceptions[0]
        recurring.calendar.update_event_row(exception.row.id, {"dirty": True, "deleted": True})

        assert recurring.process_dirty_exceptions() == 0
