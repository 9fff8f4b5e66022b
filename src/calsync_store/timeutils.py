"""Conversion between storage time fields and iCalendar temporal values.

A temporal value is either a ``date`` (all-day) or a ``datetime``. The zone of
a ``datetime`` is carried by its ``tzinfo``: ``None`` means floating time,
a UTC tzinfo means UTC and any other tzinfo is a named zone.

Storage rows keep times as milliseconds since the epoch plus a timezone ID and
an all-day flag. Rows written by this module follow two rules: all-day values
are stored as UTC midnight of their date with the timezone ID "UTC", and
every date-time has a timezone ID. Rows in that form, with a resolvable
timezone ID (including UTC aliases like "Etc/UTC" or "GMT"), are read and
written back unchanged.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Sequence, Tuple, Union

import pytz
from dateutil import tz as dateutil_tz
from icalendar.prop import vDuration

logger = logging.getLogger(__name__)

TemporalValue = Union[date, datetime]

EPOCH = datetime(1970, 1, 1, tzinfo=pytz.UTC)

# timezone IDs and designators that denote UTC
UTC_IDS = ("UTC", "Etc/UTC", "GMT", "Etc/GMT", "Z")

# canonical timezone ID of UTC values (and of all-day rows)
UTC_ID = "UTC"

_DATE_FORMAT = "%Y%m%d"
_DATE_TIME_FORMAT = "%Y%m%dT%H%M%S"


class TimeZoneRegistry:
    """Resolves timezone IDs to tzinfo objects.

    Every mapper gets its registry passed at construction, so that the default
    zone (used for floating times and unknown timezone IDs) is an explicit
    setting of the caller.
    """

    def __init__(self, default_tz_id: Optional[str] = None):
        self.logger = logger.getChild('registry')
        self._cache = {}

        default = self.get(default_tz_id) if default_tz_id else None
        if default_tz_id and default is None:
            self.logger.warning(f"Unknown default timezone {default_tz_id}, using UTC")
        self.default_zone = default or pytz.UTC
        self.default_tz_id = zone_id_of(self.default_zone) or UTC_ID

    @classmethod
    def from_settings(cls, settings) -> "TimeZoneRegistry":
        return cls(settings.default_timezone)

    def get(self, tz_id: Optional[str]):
        """Get the timezone with the given ID.

        Args:
            tz_id: Timezone ID (Olson name or one of the UTC aliases)

        Returns:
            tzinfo or None if the ID is unknown
        """
        if not tz_id:
            return None
        if tz_id not in self._cache:
            try:
                # UTC aliases keep their ID (pytz zone "Etc/UTC" etc.)
                self._cache[tz_id] = pytz.timezone(tz_id)
            except pytz.UnknownTimeZoneError:
                # UTC designators that are no zone IDs, like "Z"
                self._cache[tz_id] = pytz.UTC if is_utc_id(tz_id) else None
        return self._cache[tz_id]

    def is_known(self, tz_id: Optional[str]) -> bool:
        return self.get(tz_id) is not None

    def resolve(self, tz_id: Optional[str]):
        """Get the timezone with the given ID, falling back to the default zone."""
        tz = self.get(tz_id)
        if tz is None:
            self.logger.warning(f"Unknown timezone {tz_id}, using {self.default_tz_id} instead")
            return self.default_zone
        return tz


def is_utc_id(tz_id: Optional[str]) -> bool:
    return tz_id is not None and tz_id.upper() in (i.upper() for i in UTC_IDS)


def zone_id_of(tzinfo) -> Optional[str]:
    """Timezone ID of a tzinfo (pytz, zoneinfo, dateutil or stdlib)."""
    if tzinfo is None:
        return None
    if tzinfo is timezone.utc or isinstance(tzinfo, dateutil_tz.tzutc):
        return UTC_ID
    return getattr(tzinfo, 'zone', None) or getattr(tzinfo, 'key', None) or None


def is_date_time(value) -> bool:
    return isinstance(value, datetime)


def is_date(value) -> bool:
    return isinstance(value, date) and not isinstance(value, datetime)


def is_floating(value) -> bool:
    return isinstance(value, datetime) and value.tzinfo is None


def is_utc(value) -> bool:
    """Whether the value is a date-time in UTC."""
    if not isinstance(value, datetime) or value.tzinfo is None:
        return False
    tz_id = zone_id_of(value.tzinfo)
    if tz_id is None:
        return value.utcoffset() == timedelta(0)
    return is_utc_id(tz_id)


def zone_id(value) -> Optional[str]:
    """Timezone ID of a temporal value (None for dates and floating times)."""
    if not isinstance(value, datetime):
        return None
    return zone_id_of(value.tzinfo)


def localize(naive: datetime, tzinfo) -> datetime:
    """Attach a zone to a naive date-time (pytz needs ``localize``)."""
    if tzinfo is None:
        return naive
    if hasattr(tzinfo, 'localize'):
        return tzinfo.localize(naive)
    return naive.replace(tzinfo=tzinfo)


def to_utc(value: TemporalValue, registry: TimeZoneRegistry) -> TemporalValue:
    """Convert a date-time to UTC. Floating times are interpreted in the default zone.

    Dates are returned unchanged.
    """
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        value = localize(value, registry.default_zone)
    return value.astimezone(pytz.UTC)


def to_millis(value: datetime) -> int:
    """Milliseconds since the epoch of a timezone-aware date-time."""
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_millis(millis: int) -> datetime:
    return EPOCH + timedelta(milliseconds=millis)


def to_temporal_value(
    millis: int,
    tz_id: Optional[str],
    all_day: bool,
    registry: TimeZoneRegistry
) -> TemporalValue:
    """Create a temporal value from storage time fields.

    Args:
        millis: Timestamp (milliseconds since epoch)
        tz_id: Timezone ID (ignored for all-day values)
        all_day: Whether the value is a date
        registry: Timezone registry

    Returns:
        ``date`` for all-day values, otherwise a zoned ``datetime``. A missing
        timezone ID yields UTC; an unknown one the default zone of the registry.
    """
    instant = from_millis(millis)
    if all_day:
        return instant.date()
    if tz_id is None:
        return instant
    return instant.astimezone(registry.resolve(tz_id))


def from_temporal_value(
    value: TemporalValue,
    registry: TimeZoneRegistry
) -> Tuple[int, str, bool]:
    """Create storage time fields from a temporal value.

    Returns:
        Tuple of (milliseconds since epoch, timezone ID, all-day flag)
    """
    if not isinstance(value, datetime):
        midnight = datetime.combine(value, time(), tzinfo=pytz.UTC)
        return to_millis(midnight), UTC_ID, True

    if value.tzinfo is None:
        # floating time: interpret in default zone
        return to_millis(localize(value, registry.default_zone)), registry.default_tz_id, False

    tz_id = zone_id_of(value.tzinfo)
    if tz_id is None:
        # offset-only zone without ID
        return to_millis(value), UTC_ID, False
    if not registry.is_known(tz_id):
        registry.logger.warning(f"Unknown timezone {tz_id}, storing {registry.default_tz_id} instead")
        return to_millis(value), registry.default_tz_id, False
    return to_millis(value), tz_id, False


def align_to_start(value: TemporalValue, start: TemporalValue) -> TemporalValue:
    """Align the type of a value (date or date-time) to the type of a start value.

    * date-time value, date start: the date of the value (in its own zone)
    * date value, date-time start: the date of the value at the time of the start
      (in the zone of the start)
    * otherwise the value is returned unchanged
    """
    if isinstance(value, datetime) and not isinstance(start, datetime):
        return value.date()
    if not isinstance(value, datetime) and isinstance(start, datetime):
        naive = datetime.combine(value, start.replace(tzinfo=None).time())
        return localize(naive, start.tzinfo)
    return value


def same_instant(a: TemporalValue, b: TemporalValue, registry: TimeZoneRegistry) -> bool:
    if isinstance(a, datetime) != isinstance(b, datetime):
        return False
    return to_utc(a, registry) == to_utc(b, registry)


def is_after(a: TemporalValue, b: TemporalValue, registry: TimeZoneRegistry) -> bool:
    """Whether ``a`` is strictly after ``b``. Values of different types are aligned first."""
    a = align_to_start(a, b)
    return to_utc(a, registry) > to_utc(b, registry)


def add_duration(value: TemporalValue, duration: timedelta) -> TemporalValue:
    """Add a duration to a temporal value, keeping its zone."""
    if not isinstance(value, datetime):
        return value + timedelta(days=duration.days)
    if value.tzinfo is None:
        return value + duration
    return (value.astimezone(pytz.UTC) + duration).astimezone(value.tzinfo)


def parse_duration(text: str) -> timedelta:
    """Parse an RFC 5545 duration like ``PT1H`` or ``-P1D``.

    Raises:
        ValueError: if the text is not a valid duration
    """
    parsed = vDuration.from_ical(text.strip())
    if not isinstance(parsed, timedelta):
        raise ValueError(f"Not a duration: {text}")
    return parsed


def format_duration(duration: timedelta) -> str:
    return vDuration(duration).to_ical().decode('utf-8')


def format_date_time(value: TemporalValue, registry: Optional[TimeZoneRegistry] = None) -> str:
    """Format a temporal value in iCalendar form (``YYYYMMDD``, ``YYYYMMDDTHHMMSS[Z]``).

    Named zones are formatted as local time (without zone).
    """
    if not isinstance(value, datetime):
        return value.strftime(_DATE_FORMAT)
    if is_utc(value):
        return value.strftime(_DATE_TIME_FORMAT) + "Z"
    return value.replace(tzinfo=None).strftime(_DATE_TIME_FORMAT)


def encode_date_list(values: Sequence[TemporalValue], registry: TimeZoneRegistry) -> Optional[str]:
    """Encode a list of dates/date-times for the RDATE/EXDATE storage fields.

    Format: ``[TZID;]value,value,...``. Dates are stored as UTC midnight
    (``YYYYMMDDT000000Z``); date-times in one common named zone keep their zone,
    otherwise they're converted to UTC.

    Returns:
        Encoded string or None if the list is empty
    """
    if not values:
        return None

    if all(not isinstance(v, datetime) for v in values):
        return ",".join(v.strftime(_DATE_FORMAT) + "T000000Z" for v in values)

    zones = {zone_id(v) for v in values if isinstance(v, datetime)}
    if len(zones) == 1 and all(isinstance(v, datetime) for v in values):
        tz_id = zones.pop()
        if tz_id is not None and not is_utc_id(tz_id) and registry.is_known(tz_id):
            return tz_id + ";" + ",".join(format_date_time(v) for v in values)

    utc_values = []
    for v in values:
        if not isinstance(v, datetime):
            v = datetime.combine(v, time(), tzinfo=pytz.UTC)
        utc_values.append(to_utc(v, registry))
    return ",".join(format_date_time(v) for v in utc_values)


def decode_date_list(text: str, registry: TimeZoneRegistry) -> List[TemporalValue]:
    """Decode the RDATE/EXDATE storage encoding (see :func:`encode_date_list`).

    Raises:
        ValueError: if the text can't be parsed
    """
    text = text.strip()
    tz = None
    if ";" in text:
        tz_id, text = text.split(";", 1)
        tz = registry.resolve(tz_id.strip())

    result = []
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        if len(item) == 8:
            result.append(datetime.strptime(item, _DATE_FORMAT).date())
        elif item.endswith("Z"):
            naive = datetime.strptime(item[:-1], _DATE_TIME_FORMAT)
            result.append(naive.replace(tzinfo=pytz.UTC))
        else:
            naive = datetime.strptime(item, _DATE_TIME_FORMAT)
            result.append(localize(naive, tz or registry.default_zone))
    return result
