"""Tests for iCalendar helpers."""

from datetime import date

import pytest
from icalendar import Calendar, Event

from calsync_store.exceptions import InvalidICalendarError
from calsync_store.ical import AssociatedEvents, CalendarUidSplitter, events_from_ical, parse_calendar, to_calendar

ICAL = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Test//Test//EN
BEGIN:VEVENT
UID:recurring@example.com
DTSTART;VALUE=DATE:20240101
RRULE:FREQ=DAILY;COUNT=5
SUMMARY:Main
END:VEVENT
BEGIN:VEVENT
UID:recurring@example.com
RECURRENCE-ID;VALUE=DATE:20240102
DTSTART;VALUE=DATE:20240103
SEQUENCE:1
SUMMARY:Moved (old)
END:VEVENT
BEGIN:VEVENT
UID:recurring@example.com
RECURRENCE-ID;VALUE=DATE:20240102
DTSTART;VALUE=DATE:20240104
SEQUENCE:2
SUMMARY:Moved (new)
END:VEVENT
BEGIN:VEVENT
UID:recurring@example.com
RECURRENCE-ID;VALUE=DATE:20240102
DTSTART;VALUE=DATE:20240105
SEQUENCE:1
SUMMARY:Moved (outdated)
END:VEVENT
BEGIN:VEVENT
UID:single@example.com
DTSTART;VALUE=DATE:20240201
SUMMARY:Single
END:VEVENT
END:VCALENDAR
""".replace("\n", "\r\n")


def make_event(uid=None, recurrence_id=None):
    event = Event()
    if uid:
        event.add('UID', uid)
    event.add('DTSTART', date(2024, 1, 1))
    if recurrence_id:
        event.add('RECURRENCE-ID', recurrence_id)
    return event


class TestAssociatedEvents:
    """Tests for AssociatedEvents."""

    def test_valid(self):
        associated = AssociatedEvents(make_event("a"), [make_event("a", date(2024, 1, 2))])
        assert associated.uid == "a"
        assert len(associated.all_events()) == 2

    def test_main_with_recurrence_id(self):
        with pytest.raises(ValueError):
            AssociatedEvents(make_event("a", date(2024, 1, 2)))

    def test_exception_without_recurrence_id(self):
        with pytest.raises(ValueError):
            AssociatedEvents(make_event("a"), [make_event("a")])

    def test_different_uids(self):
        with pytest.raises(ValueError):
            AssociatedEvents(make_event("a"), [make_event("b", date(2024, 1, 2))])

    def test_main_without_uid(self):
        assert AssociatedEvents(make_event()).uid is None
        with pytest.raises(ValueError):
            AssociatedEvents(make_event(), [make_event(None, date(2024, 1, 2))])


class TestCalendarUidSplitter:
    """Tests for CalendarUidSplitter."""

    def test_associate_by_uid(self):
        groups = CalendarUidSplitter().associate_by_uid(parse_calendar(ICAL))

        assert set(groups) == {"recurring@example.com", "single@example.com"}
        recurring = groups["recurring@example.com"]
        assert str(recurring.main['SUMMARY']) == "Main"
        # the exception with the highest SEQUENCE wins
        assert [str(e['SUMMARY']) for e in recurring.exceptions] == ["Moved (new)"]
        assert groups["single@example.com"].exceptions == []

    def test_later_event_wins_on_equal_sequence(self):
        calendar = Calendar()
        first, second = make_event("a"), make_event("a")
        first.add('SUMMARY', 'first')
        second.add('SUMMARY', 'second')
        calendar.add_component(first)
        calendar.add_component(second)

        groups = CalendarUidSplitter().associate_by_uid(calendar)
        assert str(groups["a"].main['SUMMARY']) == "second"


class TestParsing:
    """Tests for parsing and generating iCalendars."""

    def test_events_from_ical(self):
        groups = events_from_ical(ICAL)
        assert sorted(g.uid for g in groups) == ["recurring@example.com", "single@example.com"]

    def test_missing_uid_gets_random_uid(self):
        text = ICAL.replace("UID:single@example.com\r\n", "")
        uids = [g.uid for g in events_from_ical(text)]
        assert len(uids) == 2
        assert all(uids)

    def test_invalid(self):
        with pytest.raises(InvalidICalendarError):
            events_from_ical("This is not\r\niCalendar data\r\n")

    def test_to_calendar(self):
        associated = AssociatedEvents(make_event("a"), [make_event("a", date(2024, 1, 2))])
        calendar = to_calendar(associated, "-//Test//EN")

        assert str(calendar['PRODID']) == "-//Test//EN"
        assert str(calendar['VERSION']) == "2.0"
        events = calendar.walk('VEVENT')
        assert len(events) == 2
        assert all('DTSTAMP' in event for event in events)

        reparsed = events_from_ical(calendar.to_ical().decode('utf-8'))
        assert len(reparsed) == 1
        assert len(reparsed[0].exceptions) == 1
