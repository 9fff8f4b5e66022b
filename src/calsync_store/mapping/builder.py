"""Mapping of iCalendar VEVENTs to storage rows (write path).

The event row is assembled from the partial rows returned by a fixed
sequence of row builders. A builder returns None when the component can't be
stored at all (for instance an exception without RECURRENCE-ID).
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from icalendar import Event

from ..exceptions import InvalidRemoteResourceError
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
    ReminderRow,
)
from ..recurrence import RecurrenceFieldsMapper, property_list
from ..timeutils import (
    TemporalValue,
    TimeZoneRegistry,
    add_duration,
    align_to_start,
    format_duration,
    from_temporal_value,
    is_after,
    to_utc,
)

logger = logging.getLogger(__name__)

# unknown properties longer than that are not stored
MAX_UNKNOWN_PROPERTY_SIZE = 25000

KNOWN_PROPERTY_NAMES = frozenset((
    # processed by the builders
    'UID', 'RECURRENCE-ID', 'SEQUENCE', 'SUMMARY', 'LOCATION', 'URL', 'DESCRIPTION',
    'CATEGORIES', 'COLOR', 'DTSTART', 'DTEND', 'DURATION', 'RRULE', 'RDATE', 'EXRULE',
    'EXDATE', 'CLASS', 'STATUS', 'TRANSP', 'ORGANIZER', 'ATTENDEE',
    # not worth storing
    'DTSTAMP', 'LAST-MODIFIED', 'PRODID',
))

PartialRow = Optional[Dict[str, Any]]
RowBuilder = Callable[[Event, Event, "EventBuilder"], PartialRow]


def text_value(component: Event, name: str) -> Optional[str]:
    value = component.get(name)
    if isinstance(value, list):
        value = value[0] if value else None
    return str(value) if value is not None else None


def email_of(address) -> Optional[str]:
    """Email address of a CAL-ADDRESS (mailto: URI or EMAIL parameter)."""
    if address is None:
        return None
    value = str(address)
    if value.lower().startswith('mailto:'):
        return value[7:]
    params = getattr(address, 'params', {})
    return params.get('EMAIL')


def build_uid(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    uid = text_value(component, 'UID') or text_value(main, 'UID')
    if uid is None and component is main:
        raise InvalidRemoteResourceError("Event without UID")
    return {'uid': uid}


def build_sync_reference(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    if component is main:
        return {
            'sync_id': ctx.sync_id,
            'original_sync_id': None,
            'original_instance_time': None,
            'original_all_day': None,
        }

    recurrence_id = component.get('RECURRENCE-ID')
    if recurrence_id is None:
        ctx.logger.warning("Exception without RECURRENCE-ID")
        return None
    # RECURRENCE-ID must have the type of the main DTSTART
    instance = align_to_start(recurrence_id.dt, ctx.start_time(main))
    millis, _, all_day = from_temporal_value(instance, ctx.registry)
    return {
        'sync_id': None,
        'original_sync_id': ctx.sync_id,
        'original_instance_time': millis,
        'original_all_day': all_day,
    }


def build_text_fields(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    return {
        'title': text_value(component, 'SUMMARY'),
        'location': text_value(component, 'LOCATION'),
        'description': text_value(component, 'DESCRIPTION'),
    }


def build_start_time(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    start = ctx.start_time(component)
    if start is None:
        if component is main:
            raise InvalidRemoteResourceError("Event without DTSTART")
        ctx.logger.warning("Exception without DTSTART")
        return None
    millis, tz_id, all_day = from_temporal_value(start, ctx.registry)
    return {'dtstart': millis, 'event_timezone': tz_id, 'all_day': all_day}


def end_time(component: Event, start: TemporalValue, ctx: "EventBuilder") -> TemporalValue:
    """DTEND of a component, calculated from DTEND or DURATION if needed."""
    dtend = component.get('DTEND')
    if dtend is not None:
        end = align_to_start(dtend.dt, start)
        if is_after(end, start, ctx.registry):
            return end
        ctx.logger.debug(f"Ignoring DTEND {end} which is not after DTSTART {start}")

    duration = component.get('DURATION')
    if duration is not None and isinstance(duration.dt, timedelta):
        end = add_duration(start, duration.dt)
        if is_after(end, start, ctx.registry):
            return end

    # RFC 5545 3.6.1: one day for dates, no duration for date-times
    if isinstance(start, datetime):
        return start
    return start + timedelta(days=1)


def build_end_time(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    start = ctx.start_time(component)
    end = end_time(component, start, ctx)

    if component is main and ctx.main_is_recurring():
        # recurring events have a duration instead of an end time
        if isinstance(start, datetime):
            duration = to_utc(end, ctx.registry) - to_utc(start, ctx.registry)
        else:
            duration = timedelta(days=(end - start).days)
        return {'dtend': None, 'event_end_timezone': None, 'duration': format_duration(duration)}

    millis, tz_id, _ = from_temporal_value(end, ctx.registry)
    return {'dtend': millis, 'event_end_timezone': tz_id, 'duration': None}


def build_recurrence_fields(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    if component is main:
        return dict(ctx.main_recurrence_fields)
    return {'rrule': None, 'rdate': None, 'exrule': None, 'exdate': None}


STATUS_VALUES = {
    'CONFIRMED': EventStatus.CONFIRMED,
    'TENTATIVE': EventStatus.TENTATIVE,
    'CANCELLED': EventStatus.CANCELED,
}


def build_status(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    status = (text_value(component, 'STATUS') or '').upper()
    return {'status': STATUS_VALUES.get(status)}


def build_availability(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    transp = (text_value(component, 'TRANSP') or '').upper()
    return {'availability': Availability.FREE if transp == 'TRANSPARENT' else Availability.BUSY}


def build_access_level(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    classification = text_value(component, 'CLASS')
    if classification is None:
        return {'access_level': AccessLevel.DEFAULT}
    access_levels = {
        'PUBLIC': AccessLevel.PUBLIC,
        'PRIVATE': AccessLevel.PRIVATE,
        'CONFIDENTIAL': AccessLevel.CONFIDENTIAL,
    }
    # unknown classifications are treated as private (and retained)
    return {'access_level': access_levels.get(classification.upper(), AccessLevel.PRIVATE)}


def build_sequence(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    try:
        sequence = int(component.get('SEQUENCE', 0))
    except (TypeError, ValueError):
        ctx.logger.warning(f"Ignoring invalid SEQUENCE {component.get('SEQUENCE')!r}")
        sequence = 0
    return {'sequence': sequence}


def build_organizer(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    group_scheduled = bool(property_list(component, 'ATTENDEE'))
    if not group_scheduled:
        return {'organizer': ctx.owner_account, 'is_organizer': True, 'has_attendee_data': False}

    organizer = component.get('ORGANIZER', main.get('ORGANIZER'))
    email = email_of(organizer) or ctx.owner_account
    if email is None or organizer is None:
        is_organizer = True
    else:
        is_organizer = ctx.owner_account is not None and email.lower() == ctx.owner_account.lower()
    return {'organizer': email, 'is_organizer': is_organizer, 'has_attendee_data': True}


def build_sync_state(component: Event, main: Event, ctx: "EventBuilder") -> PartialRow:
    return {
        'calendar_id': ctx.calendar_id,
        'dirty': False,
        'deleted': False,
        'etag': ctx.etag,
        'schedule_tag': ctx.schedule_tag,
        'sync_flags': ctx.flags,
    }


PARTSTAT_VALUES = {
    'NEEDS-ACTION': AttendeeStatus.INVITED,
    'ACCEPTED': AttendeeStatus.ACCEPTED,
    'DECLINED': AttendeeStatus.DECLINED,
    'TENTATIVE': AttendeeStatus.TENTATIVE,
    'DELEGATED': AttendeeStatus.NONE,
}


def build_attendee(address, organizer_email: Optional[str]) -> AttendeeRow:
    params = getattr(address, 'params', {})
    email = email_of(address)

    cutype = (params.get('CUTYPE') or 'INDIVIDUAL').upper()
    role = (params.get('ROLE') or 'REQ-PARTICIPANT').upper()
    if cutype in ('RESOURCE', 'ROOM'):
        attendee_type = AttendeeType.RESOURCE
    elif role == 'OPT-PARTICIPANT':
        attendee_type = AttendeeType.OPTIONAL
    elif role == 'NON-PARTICIPANT':
        attendee_type = AttendeeType.NONE
    else:
        attendee_type = AttendeeType.REQUIRED

    if email is not None and organizer_email is not None and email.lower() == organizer_email.lower():
        relationship = AttendeeRelationship.ORGANIZER
    elif role == 'NON-PARTICIPANT':
        relationship = AttendeeRelationship.NONE
    else:
        relationship = AttendeeRelationship.ATTENDEE

    return AttendeeRow(
        email=email,
        name=params.get('CN'),
        identity=None if email else str(address),
        status=PARTSTAT_VALUES.get((params.get('PARTSTAT') or 'NEEDS-ACTION').upper(), AttendeeStatus.NONE),
        type=attendee_type,
        relationship=relationship,
    )


def build_attendees(component: Event, main: Event, ctx: "EventBuilder") -> List[AttendeeRow]:
    organizer_email = email_of(component.get('ORGANIZER', main.get('ORGANIZER')))
    return [build_attendee(address, organizer_email) for address in property_list(component, 'ATTENDEE')]


REMINDER_METHODS = {
    'DISPLAY': ReminderMethod.ALERT,
    'AUDIO': ReminderMethod.ALERT,
    'EMAIL': ReminderMethod.EMAIL,
}


def build_reminders(component: Event, main: Event, ctx: "EventBuilder") -> List[ReminderRow]:
    start = ctx.start_time(component)
    reminders = []
    for alarm in component.walk('VALARM'):
        minutes = ctx.alarm_minutes(alarm, component, start)
        if minutes is None:
            ctx.logger.warning("Ignoring VALARM without usable TRIGGER")
            continue
        action = (text_value(alarm, 'ACTION') or '').upper()
        reminders.append(ReminderRow(minutes=minutes, method=REMINDER_METHODS.get(action, ReminderMethod.DEFAULT)))
    return reminders


def unknown_property_json(name: str, value) -> Optional[str]:
    ical = value.to_ical() if hasattr(value, 'to_ical') else str(value)
    if isinstance(ical, bytes):
        ical = ical.decode('utf-8')
    if len(ical) > MAX_UNKNOWN_PROPERTY_SIZE:
        logger.warning(f"Ignoring unknown property {name} with {len(ical)} octets (too long)")
        return None
    params = {key: str(param) for key, param in getattr(value, 'params', {}).items()}
    return json.dumps([name, ical, params] if params else [name, ical])


def build_extended_properties(component: Event, main: Event, ctx: "EventBuilder") -> List[ExtendedPropertyRow]:
    rows = []

    categories = []
    for prop in property_list(component, 'CATEGORIES'):
        categories.extend(str(category) for category in getattr(prop, 'cats', [prop]))
    if categories:
        rows.append(ExtendedPropertyRow(
            name=ExtendedPropertyRow.CATEGORIES,
            value=ExtendedPropertyRow.CATEGORIES_SEPARATOR.join(
                # the separator can't be part of a category
                category.replace(ExtendedPropertyRow.CATEGORIES_SEPARATOR, '') for category in categories
            )
        ))

    url = text_value(component, 'URL')
    if url:
        rows.append(ExtendedPropertyRow(name=ExtendedPropertyRow.URL, value=url))

    # retain classifications that can't be expressed by the access level alone
    classification = component.get('CLASS')
    if classification is not None and str(classification).upper() not in ('PUBLIC', 'PRIVATE'):
        value = unknown_property_json('CLASS', classification)
        if value is not None:
            rows.append(ExtendedPropertyRow(name=ExtendedPropertyRow.UNKNOWN_PROPERTY, value=value))

    for name, values in component.items():
        if name.upper() in KNOWN_PROPERTY_NAMES:
            continue
        for value in values if isinstance(values, list) else [values]:
            json_value = unknown_property_json(name.upper(), value)
            if json_value is not None:
                rows.append(ExtendedPropertyRow(name=ExtendedPropertyRow.UNKNOWN_PROPERTY, value=json_value))

    return rows


class EventBuilder:
    """Maps associated VEVENTs to a main event row with exception rows."""

    ROW_BUILDERS: Tuple[RowBuilder, ...] = (
        build_uid,
        build_sync_reference,
        build_text_fields,
        build_start_time,
        build_end_time,
        build_recurrence_fields,
        build_status,
        build_availability,
        build_access_level,
        build_sequence,
        build_organizer,
        build_sync_state,
    )

    def __init__(
        self,
        registry: TimeZoneRegistry,
        sync_id: Optional[str],
        calendar_id: Optional[int] = None,
        etag: Optional[str] = None,
        schedule_tag: Optional[str] = None,
        flags: int = 0,
        owner_account: Optional[str] = None
    ):
        self.registry = registry
        self.sync_id = sync_id
        self.calendar_id = calendar_id
        self.etag = etag
        self.schedule_tag = schedule_tag
        self.flags = flags
        self.owner_account = owner_account
        self.recurrence = RecurrenceFieldsMapper(registry)
        self.main_recurrence_fields: Dict[str, Optional[str]] = {}
        self.logger = logger.getChild('builder')

    @staticmethod
    def start_time(component: Event) -> Optional[TemporalValue]:
        dtstart = component.get('DTSTART')
        return dtstart.dt if dtstart is not None else None

    def main_is_recurring(self) -> bool:
        return bool(self.main_recurrence_fields.get('rrule') or self.main_recurrence_fields.get('rdate'))

    def alarm_minutes(self, alarm, component: Event, start: TemporalValue) -> Optional[int]:
        """Minutes before the start of the event when an alarm is triggered."""
        trigger = alarm.get('TRIGGER')
        if trigger is None:
            return None
        value = trigger.dt

        if isinstance(value, timedelta):
            if (trigger.params.get('RELATED') or 'START').upper() == 'END':
                end = end_time(component, start, self)
                if isinstance(start, datetime):
                    value += to_utc(end, self.registry) - to_utc(start, self.registry)
                else:
                    value += end - start
            return int(-value.total_seconds() // 60)

        if isinstance(value, datetime) and isinstance(start, datetime):
            before = to_utc(start, self.registry) - to_utc(value, self.registry)
            return int(before.total_seconds() // 60)
        return None

    def build_entity(self, component: Event, main: Event) -> Optional[EventEntity]:
        """Build the rows of one component.

        Returns:
            Event with data rows, or None if the component can't be stored
        """
        values: Dict[str, Any] = {}
        for row_builder in self.ROW_BUILDERS:
            partial = row_builder(component, main, self)
            if partial is None:
                return None
            values.update(partial)

        return EventEntity(
            row=EventRow(**values),
            reminders=build_reminders(component, main, self),
            attendees=build_attendees(component, main, self),
            extended_properties=build_extended_properties(component, main, self),
        )

    def build(self, associated: AssociatedEvents) -> EventAndExceptions:
        """Build the rows of a main event and its exceptions.

        If there's no main event, the first exception is used as main event.
        Exceptions that can't be stored are ignored.

        Raises:
            InvalidRemoteResourceError: if the main event has no UID or DTSTART
        """
        main = associated.main
        exceptions = list(associated.exceptions)
        if main is None:
            if not exceptions:
                raise InvalidRemoteResourceError("No events to store")
            self.logger.warning("Only exceptions found, using the first one as main event")
            main = Event.from_ical(exceptions.pop(0).to_ical())
            del main['RECURRENCE-ID']

        start = self.start_time(main)
        if start is None:
            raise InvalidRemoteResourceError("Event without DTSTART")
        self.main_recurrence_fields = self.recurrence.build_fields(self.recurrence.from_component(main), start)

        main_entity = self.build_entity(main, main)
        if main_entity is None:
            raise InvalidRemoteResourceError("Main event can't be stored")

        exception_entities = []
        for exception in exceptions:
            try:
                entity = self.build_entity(exception, main)
            except InvalidRemoteResourceError as e:
                self.logger.warning(f"Ignoring invalid exception: {e}")
                continue
            if entity is None:
                self.logger.warning("Ignoring exception that can't be stored")
                continue
            exception_entities.append(entity)

        return EventAndExceptions(main=main_entity, exceptions=exception_entities)
