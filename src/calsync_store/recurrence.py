"""Mapping of recurrence information between iCalendar and storage fields.

The storage keeps four recurrence fields per main row:

* ``rrule`` / ``exrule``: recurrence rules in iCalendar form, separated by newlines
* ``rdate`` / ``exdate``: date lists, see :func:`calsync_store.timeutils.encode_date_list`
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from icalendar import Event, vRecur

from .models import EventRow
from .timeutils import (
    TemporalValue,
    TimeZoneRegistry,
    align_to_start,
    decode_date_list,
    encode_date_list,
    is_after,
    localize,
    same_instant,
    to_utc,
    zone_id,
)

logger = logging.getLogger(__name__)

RULE_SEPARATOR = "\n"

RECURRENCE_PROPERTIES = ('RRULE', 'RDATE', 'EXRULE', 'EXDATE')


@dataclass
class RecurrenceSet:
    """Recurrence information of a main component."""

    rules: List[vRecur] = field(default_factory=list)
    dates: List[TemporalValue] = field(default_factory=list)
    exclusion_rules: List[vRecur] = field(default_factory=list)
    exclusion_dates: List[TemporalValue] = field(default_factory=list)

    @property
    def is_recurring(self) -> bool:
        return bool(self.rules or self.dates)


def copy_rule(rule: vRecur) -> vRecur:
    return vRecur({key: list(value) if isinstance(value, list) else value for key, value in rule.items()})


def rule_until(rule: vRecur) -> Optional[TemporalValue]:
    until = rule.get('UNTIL')
    if isinstance(until, list):
        until = until[0] if until else None
    return until


def is_unbounded(rule: vRecur) -> bool:
    """Whether a rule has neither COUNT nor UNTIL."""
    return rule.get('COUNT') is None and rule_until(rule) is None


def format_rule(rule: vRecur) -> str:
    return rule.to_ical().decode('utf-8')


def parse_rule(text: str) -> vRecur:
    """Parse a recurrence rule (without the ``RRULE:`` prefix).

    Raises:
        ValueError: if the rule can't be parsed
    """
    rule = vRecur.from_ical(text.strip())
    if not rule.get('FREQ'):
        raise ValueError(f"Recurrence rule without FREQ: {text}")
    return rule


def property_list(event: Event, name: str) -> List[Any]:
    """All values of a property that may occur more than once."""
    value = event.get(name)
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def date_list_values(event: Event, name: str) -> List[TemporalValue]:
    """Dates/date-times of all RDATE/EXDATE properties of a component.

    Periods are not supported and dropped.
    """
    result = []
    for prop in property_list(event, name):
        for item in getattr(prop, 'dts', []):
            value = item.dt
            if isinstance(value, (date, datetime)):
                result.append(value)
            else:
                logger.warning(f"Ignoring unsupported {name} value: {value!r}")
    return result


class RecurrenceFieldsMapper:
    """Maps a :class:`RecurrenceSet` to and from storage fields and VEVENT properties."""

    def __init__(self, registry: TimeZoneRegistry):
        self.registry = registry
        self.logger = logger.getChild('mapper')

    def align_until(self, rule: vRecur, start: TemporalValue) -> vRecur:
        """Align the UNTIL of a rule to the type of the start value.

        * no UNTIL: rule unchanged
        * both date-times: UNTIL converted to UTC (floating UNTIL is interpreted
          in the zone of the start)
        * date-time UNTIL, date start: date of UNTIL
        * date UNTIL, date-time start: date of UNTIL at the time/zone of the start, in UTC

        Returns:
            Aligned copy of the rule
        """
        aligned = copy_rule(rule)
        until = rule_until(rule)
        if until is None:
            return aligned

        if isinstance(until, datetime) and isinstance(start, datetime):
            if until.tzinfo is None:
                until = localize(until, start.tzinfo or self.registry.default_zone)
            until = to_utc(until, self.registry)
        elif isinstance(until, datetime):
            until = until.date()
        elif isinstance(start, datetime):
            until = to_utc(align_to_start(until, start), self.registry)

        aligned['UNTIL'] = [until]
        return aligned

    def is_valid(self, rule: vRecur, start: TemporalValue) -> bool:
        """Whether the (aligned) UNTIL of a rule is strictly after the start."""
        until = rule_until(rule)
        return until is None or is_after(until, start, self.registry)

    def align_rules(self, rules: List[vRecur], start: TemporalValue) -> List[vRecur]:
        """Align all rules and drop the ones that can't produce any instance."""
        result = []
        for rule in rules:
            aligned = self.align_until(rule, start)
            if self.is_valid(aligned, start):
                result.append(aligned)
            else:
                self.logger.warning(f"Ignoring recurrence rule with UNTIL before DTSTART: {format_rule(rule)}")
        return result

    def _parse_rules(self, text: Optional[str], field_name: str) -> List[vRecur]:
        rules = []
        if not text:
            return rules
        for line in text.split(RULE_SEPARATOR):
            if not line.strip():
                continue
            try:
                rules.append(parse_rule(line))
            except ValueError as e:
                self.logger.warning(f"Ignoring invalid {field_name} '{line}': {e}")
        return rules

    def _parse_dates(self, text: Optional[str], field_name: str, start: TemporalValue) -> List[TemporalValue]:
        if not text:
            return []
        try:
            values = decode_date_list(text, self.registry)
        except ValueError as e:
            self.logger.warning(f"Ignoring invalid {field_name} '{text}': {e}")
            return []
        return [align_to_start(value, start) for value in values]

    def read_fields(self, row: EventRow, start: TemporalValue) -> RecurrenceSet:
        """Read the recurrence fields of a storage row.

        Args:
            row: Main row
            start: DTSTART of the row

        Returns:
            Recurrence set (empty if the row isn't recurring)
        """
        rules = self.align_rules(self._parse_rules(row.rrule, 'RRULE'), start)
        dates = [
            value for value in self._parse_dates(row.rdate, 'RDATE', start)
            # DTSTART is added to RDATE when writing
            if not same_instant(value, start, self.registry)
        ]

        if not rules and not dates:
            return RecurrenceSet()

        return RecurrenceSet(
            rules=rules,
            dates=dates,
            exclusion_rules=self.align_rules(self._parse_rules(row.exrule, 'EXRULE'), start),
            exclusion_dates=self._parse_dates(row.exdate, 'EXDATE', start),
        )

    def build_fields(self, recurrence: RecurrenceSet, start: TemporalValue) -> Dict[str, Optional[str]]:
        """Build the recurrence fields of a storage row.

        Args:
            recurrence: Recurrence set of the main component
            start: DTSTART of the main component

        Returns:
            Values of the ``rrule``, ``rdate``, ``exrule`` and ``exdate`` fields
            (all None if the component isn't recurring)
        """
        fields = dict.fromkeys(('rrule', 'rdate', 'exrule', 'exdate'))

        rules = self.align_rules(recurrence.rules, start)
        dates = [align_to_start(value, start) for value in recurrence.dates]
        if not rules and not dates:
            return fields

        if dates and any(is_unbounded(rule) for rule in rules):
            self.logger.warning("Dropping RDATEs because of an RRULE without COUNT/UNTIL")
            dates = []

        if rules:
            fields['rrule'] = RULE_SEPARATOR.join(format_rule(rule) for rule in rules)
        if dates:
            # expanders ignore DTSTART when RDATE is present, so it has to be listed
            if not any(same_instant(value, start, self.registry) for value in dates):
                dates = [start] + dates
            fields['rdate'] = encode_date_list(dates, self.registry)

        exclusion_rules = self.align_rules(recurrence.exclusion_rules, start)
        if exclusion_rules:
            fields['exrule'] = RULE_SEPARATOR.join(format_rule(rule) for rule in exclusion_rules)
        exclusion_dates = [align_to_start(value, start) for value in recurrence.exclusion_dates]
        if exclusion_dates:
            fields['exdate'] = encode_date_list(exclusion_dates, self.registry)

        return fields

    def from_component(self, event: Event) -> RecurrenceSet:
        """Read RRULE, RDATE, EXRULE and EXDATE of a VEVENT."""
        return RecurrenceSet(
            rules=[rule for rule in property_list(event, 'RRULE') if isinstance(rule, vRecur)],
            dates=date_list_values(event, 'RDATE'),
            exclusion_rules=[rule for rule in property_list(event, 'EXRULE') if isinstance(rule, vRecur)],
            exclusion_dates=date_list_values(event, 'EXDATE'),
        )

    def to_properties(self, recurrence: RecurrenceSet) -> List[Tuple[str, Any]]:
        """VEVENT properties (name, value) of a recurrence set.

        Date lists are grouped by zone so that every property has one TZID.
        """
        props = []
        props.extend(('RRULE', rule) for rule in recurrence.rules)
        props.extend(('RDATE', group) for group in group_by_zone(recurrence.dates))
        props.extend(('EXRULE', rule) for rule in recurrence.exclusion_rules)
        props.extend(('EXDATE', group) for group in group_by_zone(recurrence.exclusion_dates))
        return props

    def apply_to_component(self, event: Event, recurrence: RecurrenceSet) -> None:
        """Replace the recurrence properties of a VEVENT."""
        for name in RECURRENCE_PROPERTIES:
            while name in event:
                del event[name]
        for name, value in self.to_properties(recurrence):
            event.add(name, value)


def group_by_zone(values: List[TemporalValue]) -> List[List[TemporalValue]]:
    groups: Dict[Tuple[bool, Optional[str]], List[TemporalValue]] = {}
    for value in values:
        key = (isinstance(value, datetime), zone_id(value))
        groups.setdefault(key, []).append(value)
    return list(groups.values())
