"""Tests for mapping storage rows to VEVENTs."""

import json
from datetime import date, datetime, timedelta

import pytest
import pytz

from calsync_store.exceptions import InvalidLocalResourceError
from calsync_store.mapping import EventProcessor
from calsync_store.models import (
    AccessLevel,
    AttendeeRelationship,
    AttendeeRow,
    AttendeeStatus,
    Availability,
    EventAndExceptions,
    EventEntity,
    EventRow,
    EventStatus,
    ExtendedPropertyRow,
    ReminderMethod,
    ReminderRow,
)
from calsync_store.recurrence import date_list_values
from calsync_store.timeutils import to_millis

VIENNA = pytz.timezone("Europe/Vienna")

START = to_millis(datetime(2024, 1, 1, 9, 0, tzinfo=pytz.UTC))
DAY = 86400000


@pytest.fixture
def processor(registry):
    return EventProcessor(registry, account_name="owner@example.com")


def entity(**values):
    row_values = dict(id=1, uid="uid-1", title="Event", dtstart=START, event_timezone="Europe/Vienna")
    row_values.update(values.pop('row', {}))
    return EventEntity(row=EventRow(**row_values), **values)


def exception(instance_time, status=None, **row):
    row_values = dict(
        id=instance_time, title="Moved", dtstart=instance_time + 3600000, event_timezone="Europe/Vienna",
        original_id=1, original_instance_time=instance_time, original_all_day=False, status=status
    )
    row_values.update(row)
    return EventEntity(row=EventRow(**row_values))


class TestToComponent:
    """Tests for mapping single rows."""

    def test_basic_fields(self, processor):
        main = entity(row=dict(location="Office", description="Details", dtend=START + 3600000))
        component = processor.to_component(main, main)

        assert str(component['UID']) == "uid-1"
        assert str(component['SUMMARY']) == "Event"
        assert str(component['LOCATION']) == "Office"
        assert str(component['DESCRIPTION']) == "Details"
        assert component['DTSTART'].dt == VIENNA.localize(datetime(2024, 1, 1, 10, 0))
        assert component['DTEND'].dt == VIENNA.localize(datetime(2024, 1, 1, 11, 0))
        assert str(component['TRANSP']) == "OPAQUE"
        assert 'STATUS' not in component
        assert 'SEQUENCE' not in component
        assert 'CLASS' not in component

    def test_all_day(self, processor):
        midnight = to_millis(datetime(2024, 3, 1, tzinfo=pytz.UTC))
        main = entity(row=dict(dtstart=midnight, dtend=midnight + DAY, all_day=True, event_timezone="UTC"))
        component = processor.to_component(main, main)

        assert component['DTSTART'].dt == date(2024, 3, 1)
        assert component['DTEND'].dt == date(2024, 3, 2)

    def test_duration(self, processor):
        main = entity(row=dict(duration="PT1H30M", rrule="FREQ=DAILY;COUNT=3"))
        component = processor.to_component(main, main)

        assert component['DTEND'].dt - component['DTSTART'].dt == timedelta(hours=1, minutes=30)
        assert component['RRULE']['FREQ'] == ['DAILY']

    def test_end_not_after_start_is_ignored(self, processor):
        main = entity(row=dict(dtend=START))
        assert 'DTEND' not in processor.to_component(main, main)

    def test_missing_start(self, processor):
        main = entity(row=dict(dtstart=None))
        with pytest.raises(InvalidLocalResourceError):
            processor.to_component(main, main)

    def test_status_sequence_availability(self, processor):
        main = entity(row=dict(
            status=EventStatus.TENTATIVE, sequence=2, availability=Availability.FREE
        ))
        component = processor.to_component(main, main)

        assert str(component['STATUS']) == "TENTATIVE"
        assert component['SEQUENCE'] == 2
        assert str(component['TRANSP']) == "TRANSPARENT"

    def test_access_levels(self, processor):
        for access_level, expected in [
            (AccessLevel.PUBLIC, "PUBLIC"),
            (AccessLevel.PRIVATE, "PRIVATE"),
            (AccessLevel.CONFIDENTIAL, "CONFIDENTIAL"),
        ]:
            main = entity(row=dict(access_level=access_level))
            assert str(processor.to_component(main, main)['CLASS']) == expected

    def test_retained_classification(self, processor):
        main = entity(
            row=dict(access_level=AccessLevel.PRIVATE),
            extended_properties=[ExtendedPropertyRow(
                name=ExtendedPropertyRow.UNKNOWN_PROPERTY, value=json.dumps(["CLASS", "X-SECRET"])
            )],
        )
        component = processor.to_component(main, main)

        assert str(component['CLASS']) == "X-SECRET"

    def test_extended_properties(self, processor):
        main = entity(extended_properties=[
            ExtendedPropertyRow(name=ExtendedPropertyRow.CATEGORIES, value="Work\\Travel"),
            ExtendedPropertyRow(name=ExtendedPropertyRow.URL, value="https://example.com"),
            ExtendedPropertyRow(
                name=ExtendedPropertyRow.UNKNOWN_PROPERTY,
                value=json.dumps(["X-CUSTOM", "Custom value", {"X-PARAM": "value"}])
            ),
            ExtendedPropertyRow(name=ExtendedPropertyRow.UNKNOWN_PROPERTY, value="not json"),
        ])
        component = processor.to_component(main, main)

        assert list(component['CATEGORIES'].cats) == ["Work", "Travel"]
        assert str(component['URL']) == "https://example.com"
        assert b"X-CUSTOM;X-PARAM=value:Custom value" in component.to_ical()

    def test_organizer_only_for_group_scheduled_events(self, processor):
        main = entity(row=dict(organizer="owner@example.com"))
        assert 'ORGANIZER' not in processor.to_component(main, main)

        main = entity(
            row=dict(organizer="owner@example.com"),
            attendees=[
                AttendeeRow(email="owner@example.com", relationship=AttendeeRelationship.ORGANIZER,
                            status=AttendeeStatus.ACCEPTED),
                AttendeeRow(email="guest@example.com", name="Guest", status=AttendeeStatus.INVITED),
            ],
        )
        component = processor.to_component(main, main)

        assert str(component['ORGANIZER']) == "mailto:owner@example.com"
        owner, guest = component['ATTENDEE']
        assert owner.params['ROLE'] == "CHAIR"
        assert owner.params['PARTSTAT'] == "ACCEPTED"
        assert str(guest) == "mailto:guest@example.com"
        assert guest.params['CN'] == "Guest"
        assert guest.params['PARTSTAT'] == "NEEDS-ACTION"

    def test_organizer_of_exception_is_taken_from_main(self, processor):
        main = entity(row=dict(organizer="owner@example.com"))
        changed = exception(START + DAY, organizer="someone@example.com")
        changed.attendees.append(AttendeeRow(email="guest@example.com"))

        component = processor.to_component(changed, main)

        assert str(component['ORGANIZER']) == "mailto:owner@example.com"
        assert str(component['UID']) == "uid-1"

    def test_reminders(self, processor):
        main = entity(reminders=[
            ReminderRow(minutes=15, method=ReminderMethod.ALERT),
            ReminderRow(minutes=60, method=ReminderMethod.EMAIL),
        ])
        alarms = processor.to_component(main, main).walk('VALARM')

        assert [alarm['TRIGGER'].dt for alarm in alarms] == [timedelta(minutes=-15), timedelta(minutes=-60)]
        assert [str(alarm['ACTION']) for alarm in alarms] == ["DISPLAY", "EMAIL"]
        assert str(alarms[1]['ATTENDEE']) == "mailto:owner@example.com"

    def test_email_reminder_without_email_account(self, registry):
        processor = EventProcessor(registry, account_name="local account")
        main = entity(reminders=[ReminderRow(minutes=10, method=ReminderMethod.EMAIL)])

        alarm = processor.to_component(main, main).walk('VALARM')[0]
        assert str(alarm['ACTION']) == "DISPLAY"


class TestPopulate:
    """Tests for mapping a main event with its exceptions."""

    def test_recurring_event_with_exceptions(self, processor):
        main = entity(row=dict(rrule="FREQ=DAILY;COUNT=5", duration="PT1H"))
        associated = processor.populate(EventAndExceptions(
            main=main,
            exceptions=[exception(START + DAY), exception(START + 2 * DAY, status=EventStatus.CANCELED)],
        ))

        assert associated.uid == "uid-1"
        assert len(associated.exceptions) == 1
        moved = associated.exceptions[0]
        assert moved['RECURRENCE-ID'].dt == VIENNA.localize(datetime(2024, 1, 2, 10, 0))
        assert str(moved['UID']) == "uid-1"
        assert 'RRULE' not in moved
        assert date_list_values(associated.main, 'EXDATE') == [VIENNA.localize(datetime(2024, 1, 3, 10, 0))]

    def test_exceptions_of_non_recurring_event_are_ignored(self, processor):
        associated = processor.populate(EventAndExceptions(
            main=entity(),
            exceptions=[exception(START + DAY)],
        ))

        assert associated.exceptions == []

    def test_exception_without_start_is_ignored(self, processor):
        associated = processor.populate(EventAndExceptions(
            main=entity(row=dict(rrule="FREQ=DAILY;COUNT=5")),
            exceptions=[exception(START + DAY, dtstart=None), exception(START + 2 * DAY)],
        ))

        assert len(associated.exceptions) == 1

    def test_main_without_start(self, processor):
        with pytest.raises(InvalidLocalResourceError):
            processor.populate(EventAndExceptions(main=entity(row=dict(dtstart=None))))
