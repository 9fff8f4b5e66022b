"""Helpers for iCalendar data (parsing and generation is done by the icalendar library)."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import pytz
from icalendar import Calendar, Event

from .exceptions import InvalidICalendarError

logger = logging.getLogger(__name__)


@dataclass
class AssociatedEvents:
    """Main VEVENT with the VEVENTs of its exceptions.

    The main event (if present) has no RECURRENCE-ID, all exceptions have
    one. All events share the same UID.
    """

    main: Optional[Event]
    exceptions: List[Event] = field(default_factory=list)

    def __post_init__(self):
        if self.main is not None and 'RECURRENCE-ID' in self.main:
            raise ValueError("Main event must not have a RECURRENCE-ID")
        for exception in self.exceptions:
            if 'RECURRENCE-ID' not in exception:
                raise ValueError("Exceptions must have a RECURRENCE-ID")

        uids = {str(event['UID']) for event in self.all_events() if 'UID' in event}
        if len(uids) > 1:
            raise ValueError(f"Events must have the same UID, got: {', '.join(sorted(uids))}")
        if self.exceptions and any('UID' not in event for event in self.all_events()):
            raise ValueError("Events with exceptions must have a UID")

    @property
    def uid(self) -> Optional[str]:
        for event in self.all_events():
            if 'UID' in event:
                return str(event['UID'])
        return None

    def all_events(self) -> List[Event]:
        return ([self.main] if self.main is not None else []) + list(self.exceptions)


def sequence_of(event: Event) -> int:
    try:
        return int(event.get('SEQUENCE', 0))
    except (TypeError, ValueError):
        return 0


def recurrence_key(event: Event) -> Optional[str]:
    """Key that identifies the instance an event replaces (None for main events)."""
    rid = event.get('RECURRENCE-ID')
    if rid is None:
        return None
    tzid = rid.params.get('TZID', '')
    return f"{tzid}:{rid.to_ical().decode('utf-8')}"


class CalendarUidSplitter:
    """Splits the VEVENTs of a calendar into groups of events with the same UID."""

    def __init__(self):
        self.logger = logger.getChild('splitter')

    def associate_by_uid(self, calendar: Calendar) -> Dict[Optional[str], AssociatedEvents]:
        """Group the VEVENTs of a calendar by UID.

        If there's more than one VEVENT with the same UID and RECURRENCE-ID,
        the one with the highest SEQUENCE is used (the later one for equal
        SEQUENCEs).

        Returns:
            Map of UID to associated events
        """
        by_uid: Dict[Optional[str], Dict[Optional[str], Event]] = {}
        for event in calendar.walk('VEVENT'):
            uid = str(event['UID']) if 'UID' in event else None
            key = recurrence_key(event)
            instances = by_uid.setdefault(uid, {})
            existing = instances.get(key)
            if existing is not None and sequence_of(existing) > sequence_of(event):
                self.logger.debug(f"Ignoring VEVENT {uid} ({key}) with lower SEQUENCE")
                continue
            instances[key] = event

        return {
            uid: AssociatedEvents(
                main=instances.get(None),
                exceptions=[event for key, event in instances.items() if key is not None]
            )
            for uid, instances in by_uid.items()
        }


def parse_calendar(text: str) -> Calendar:
    """Parse iCalendar data.

    Raises:
        InvalidICalendarError: if the data can't be parsed
    """
    try:
        return Calendar.from_ical(text)
    except Exception as e:
        raise InvalidICalendarError(f"Couldn't parse iCalendar: {e}")


def events_from_ical(text: str) -> List[AssociatedEvents]:
    """Parse iCalendar data into groups of associated VEVENTs.

    VEVENTs without UID get a random one.
    """
    calendar = parse_calendar(text)
    for event in calendar.walk('VEVENT'):
        if 'UID' not in event:
            uid = str(uuid.uuid4())
            logger.warning(f"Found VEVENT without UID, using a random one: {uid}")
            event.add('UID', uid)

    return list(CalendarUidSplitter().associate_by_uid(calendar).values())


def to_calendar(associated: AssociatedEvents, prodid: str) -> Calendar:
    """Generate a VCALENDAR with the main event and its exceptions."""
    calendar = Calendar()
    calendar.add('PRODID', prodid)
    calendar.add('VERSION', '2.0')

    now = datetime.now(pytz.UTC)
    for event in associated.all_events():
        if 'DTSTAMP' not in event:
            event.add('DTSTAMP', now)
        calendar.add_component(event)
    return calendar


def prodid(settings) -> str:
    return settings.prodid
