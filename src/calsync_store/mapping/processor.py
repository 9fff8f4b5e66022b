"""Mapping of storage rows to iCalendar VEVENTs (read path).

A VEVENT is built by a fixed sequence of field processors. Every processor
gets the event (main or exception) and the main event it belongs to and
returns the properties (name, value) it produces; it doesn't depend on other
processors.
"""

import json
import logging
import re
from datetime import timedelta
from typing import Any, Callable, List, Optional, Tuple

from icalendar import Alarm, Component, Event, vCalAddress
from icalendar.prop import vInline

from ..exceptions import InvalidLocalResourceError
from ..ical import AssociatedEvents
from ..models import (
    AccessLevel,
    AttendeeRelationship,
    AttendeeRow,
    AttendeeStatus,
    AttendeeType,
    Availability,
    EventAndExceptions,
    EventEntity,
    EventRow,
    EventStatus,
    ExtendedPropertyRow,
    ReminderMethod,
)
from ..recurrence import RecurrenceFieldsMapper
from ..timeutils import (
    TemporalValue,
    TimeZoneRegistry,
    add_duration,
    is_after,
    parse_duration,
    to_temporal_value,
)
from .reconcile import ExceptionReconciler, OverrideCandidate

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

DEFAULT_REMINDER_TEXT = "Calendar Event Reminder"

Properties = List[Tuple[str, Any]]
FieldProcessor = Callable[[EventEntity, EventEntity, "EventProcessor"], Properties]


def unknown_properties(entity: EventEntity) -> List[Tuple[str, str, dict]]:
    """Unknown properties (name, value, parameters) stored in the extended properties."""
    result = []
    for prop in entity.extended(ExtendedPropertyRow.UNKNOWN_PROPERTY):
        try:
            data = json.loads(prop.value or "")
            name, value = str(data[0]), str(data[1])
            params = data[2] if len(data) > 2 and isinstance(data[2], dict) else {}
        except (ValueError, TypeError, IndexError, KeyError) as e:
            logger.warning(f"Couldn't parse unknown property {prop.value!r}: {e}")
            continue
        result.append((name.upper(), value, params))
    return result


def process_uid(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    # exceptions always have the UID of their main event
    uid = main.row.uid or entity.row.uid
    return [('UID', uid)] if uid else []


def process_title(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    return [('SUMMARY', entity.row.title)] if entity.row.title else []


def process_location(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    return [('LOCATION', entity.row.location)] if entity.row.location else []


def process_start_time(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    return [('DTSTART', ctx.start_time(entity.row))]


def process_end_time(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    row = entity.row
    if row.dtend is None:
        return []
    start = ctx.start_time(row)
    end = to_temporal_value(row.dtend, row.event_end_timezone or row.event_timezone, row.all_day, ctx.registry)
    if not is_after(end, start, ctx.registry):
        ctx.logger.debug(f"Ignoring DTEND {end} which is not after DTSTART {start}")
        return []
    return [('DTEND', end)]


def process_duration(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    row = entity.row
    if row.dtend is not None or not row.duration:
        return []
    try:
        duration = parse_duration(row.duration)
    except ValueError as e:
        ctx.logger.warning(f"Ignoring invalid duration {row.duration!r}: {e}")
        return []
    start = ctx.start_time(row)
    end = add_duration(start, duration)
    if not is_after(end, start, ctx.registry):
        return []
    return [('DTEND', end)]


def process_recurrence_fields(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    if entity is not main:
        # only main events have recurrence fields
        return []
    recurrence = ctx.recurrence.read_fields(entity.row, ctx.start_time(entity.row))
    return ctx.recurrence.to_properties(recurrence)


def process_description(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    return [('DESCRIPTION', entity.row.description)] if entity.row.description else []


def process_access_level(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    access_level = entity.row.access_level
    if access_level == AccessLevel.PUBLIC:
        return [('CLASS', 'PUBLIC')]

    retained = [value for name, value, _ in unknown_properties(entity) if name == 'CLASS']
    if retained:
        return [('CLASS', retained[0])]

    if access_level == AccessLevel.PRIVATE:
        return [('CLASS', 'PRIVATE')]
    if access_level == AccessLevel.CONFIDENTIAL:
        return [('CLASS', 'CONFIDENTIAL')]
    return []


def process_availability(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    if entity.row.availability == Availability.FREE:
        return [('TRANSP', 'TRANSPARENT')]
    return [('TRANSP', 'OPAQUE')]


STATUS_VALUES = {
    EventStatus.CONFIRMED: 'CONFIRMED',
    EventStatus.TENTATIVE: 'TENTATIVE',
    EventStatus.CANCELED: 'CANCELLED',
}


def process_status(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    status = entity.row.status
    return [('STATUS', STATUS_VALUES[status])] if status is not None else []


def process_sequence(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    sequence = entity.row.sequence
    # 0 is the default value, so SEQUENCE:0 is not needed
    return [('SEQUENCE', sequence)] if sequence else []


def process_organizer(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    # RFC 6638 3.1: ORGANIZER of all components must be the same
    organizer = main.row.organizer
    if not entity.is_group_scheduled() or not organizer:
        return []
    return [('ORGANIZER', vCalAddress(f"mailto:{organizer}"))]


PARTSTAT_VALUES = {
    AttendeeStatus.ACCEPTED: 'ACCEPTED',
    AttendeeStatus.DECLINED: 'DECLINED',
    AttendeeStatus.TENTATIVE: 'TENTATIVE',
    AttendeeStatus.INVITED: 'NEEDS-ACTION',
}


def attendee_address(attendee: AttendeeRow) -> Optional[vCalAddress]:
    if attendee.email:
        address = vCalAddress(f"mailto:{attendee.email}")
    elif attendee.identity:
        address = vCalAddress(attendee.identity)
    else:
        return None

    if attendee.name:
        address.params['CN'] = attendee.name
    if attendee.status in PARTSTAT_VALUES:
        address.params['PARTSTAT'] = PARTSTAT_VALUES[attendee.status]

    if attendee.type == AttendeeType.RESOURCE:
        address.params['CUTYPE'] = 'RESOURCE'
    if attendee.relationship == AttendeeRelationship.ORGANIZER:
        address.params['ROLE'] = 'CHAIR'
    elif attendee.type == AttendeeType.OPTIONAL:
        address.params['ROLE'] = 'OPT-PARTICIPANT'
    elif attendee.type == AttendeeType.NONE and attendee.relationship == AttendeeRelationship.NONE:
        address.params['ROLE'] = 'NON-PARTICIPANT'
    else:
        address.params['ROLE'] = 'REQ-PARTICIPANT'
    return address


def process_attendees(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    result = []
    for attendee in entity.attendees:
        address = attendee_address(attendee)
        if address is None:
            ctx.logger.warning("Ignoring attendee without email address or identity")
            continue
        result.append(('ATTENDEE', address))
    return result


def process_categories(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    categories = []
    for prop in entity.extended(ExtendedPropertyRow.CATEGORIES):
        categories.extend(c for c in (prop.value or "").split(ExtendedPropertyRow.CATEGORIES_SEPARATOR) if c)
    return [('CATEGORIES', categories)] if categories else []


def process_unknown_properties(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    result = []
    for name, value, params in unknown_properties(entity):
        if name == 'CLASS':
            # processed by process_access_level
            continue
        try:
            result.append((name, vInline(value, params=params)))
        except ValueError as e:
            ctx.logger.warning(f"Ignoring unknown property {name}: {e}")
    return result


def process_url(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    urls = entity.extended(ExtendedPropertyRow.URL)
    if urls and urls[0].value:
        return [('URL', urls[0].value)]
    return []


def process_reminders(entity: EventEntity, main: EventEntity, ctx: "EventProcessor") -> Properties:
    text = entity.row.title or DEFAULT_REMINDER_TEXT
    result = []
    for reminder in entity.reminders:
        alarm = Alarm()
        alarm.add('TRIGGER', timedelta(minutes=-reminder.minutes))
        if reminder.method == ReminderMethod.EMAIL:
            if ctx.account_name and EMAIL_PATTERN.match(ctx.account_name):
                alarm.add('ACTION', 'EMAIL')
                # ACTION:EMAIL requires SUMMARY, DESCRIPTION and ATTENDEE
                alarm.add('SUMMARY', text)
                alarm.add('DESCRIPTION', text)
                alarm.add('ATTENDEE', vCalAddress(f"mailto:{ctx.account_name}"))
            else:
                ctx.logger.warning("Account name is not an email address; changing EMAIL reminder to DISPLAY")
                alarm.add('ACTION', 'DISPLAY')
                alarm.add('DESCRIPTION', text)
        else:
            alarm.add('ACTION', 'DISPLAY')
            alarm.add('DESCRIPTION', text)
        result.append(('VALARM', alarm))
    return result


class EventProcessor:
    """Maps stored events (main event with exceptions) to VEVENTs."""

    FIELD_PROCESSORS: Tuple[FieldProcessor, ...] = (
        process_uid,
        process_title,
        process_location,
        process_start_time,
        process_end_time,
        process_duration,
        process_recurrence_fields,
        process_description,
        process_access_level,
        process_availability,
        process_status,
        process_sequence,
        process_organizer,
        process_attendees,
        process_categories,
        process_unknown_properties,
        process_url,
        process_reminders,
    )

    def __init__(self, registry: TimeZoneRegistry, account_name: Optional[str] = None):
        self.registry = registry
        self.account_name = account_name
        self.recurrence = RecurrenceFieldsMapper(registry)
        self.reconciler = ExceptionReconciler(registry)
        self.logger = logger.getChild('processor')

    def start_time(self, row: EventRow) -> TemporalValue:
        """DTSTART of a row.

        Raises:
            InvalidLocalResourceError: if the row has no start time
        """
        if row.dtstart is None:
            raise InvalidLocalResourceError(f"Event {row.id} has no start time")
        return to_temporal_value(row.dtstart, row.event_timezone, row.all_day, self.registry)

    def original_instance_time(self, row: EventRow) -> Optional[TemporalValue]:
        if row.original_instance_time is None:
            return None
        return to_temporal_value(
            row.original_instance_time,
            row.event_timezone,
            bool(row.original_all_day),
            self.registry
        )

    def to_component(self, entity: EventEntity, main: EventEntity) -> Event:
        """Build the VEVENT of an event (without RECURRENCE-ID).

        Args:
            entity: Main event or exception
            main: Main event (``entity`` itself when a main event is mapped)

        Raises:
            InvalidLocalResourceError: if the event has no start time
        """
        component = Event()
        for field_processor in self.FIELD_PROCESSORS:
            for name, value in field_processor(entity, main, self):
                if isinstance(value, Component):
                    component.add_component(value)
                else:
                    component.add(name, value)
        return component

    def populate(self, event_and_exceptions: EventAndExceptions) -> AssociatedEvents:
        """Map a main event and its exceptions to associated VEVENTs.

        Exceptions without start time are ignored. Cancelled exceptions
        become EXDATEs of the main event.

        Raises:
            InvalidLocalResourceError: if the main event can't be mapped
        """
        main = event_and_exceptions.main
        main_component = self.to_component(main, main)

        candidates = []
        for exception in event_and_exceptions.exceptions:
            try:
                component = self.to_component(exception, main)
            except InvalidLocalResourceError as e:
                self.logger.warning(f"Ignoring invalid exception: {e}")
                continue
            candidates.append(OverrideCandidate(
                component=component,
                anchor=self.original_instance_time(exception.row),
                cancelled=exception.row.status == EventStatus.CANCELED
            ))

        exceptions = self.reconciler.reconcile(main_component, candidates)
        try:
            return AssociatedEvents(main=main_component, exceptions=exceptions)
        except ValueError as e:
            raise InvalidLocalResourceError(f"Event {main.row.id} can't be mapped: {e}")
