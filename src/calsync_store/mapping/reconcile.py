"""Decides which exception rows become exception VEVENTs of a main VEVENT."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from icalendar import Event

from ..recurrence import RecurrenceFieldsMapper
from ..timeutils import TemporalValue, TimeZoneRegistry, align_to_start

logger = logging.getLogger(__name__)


@dataclass
class OverrideCandidate:
    """Mapped exception row that may replace an instance of the main event.

    Attributes:
        component: VEVENT mapped from the exception row (without RECURRENCE-ID)
        anchor: Original instance time of the row (None if the row has none)
        cancelled: Whether the row cancels the instance
    """

    component: Event
    anchor: Optional[TemporalValue]
    cancelled: bool = False


class ExceptionReconciler:
    """Turns exception rows into exception VEVENTs or EXDATEs of the main VEVENT."""

    def __init__(self, registry: TimeZoneRegistry):
        self.mapper = RecurrenceFieldsMapper(registry)
        self.logger = logger.getChild('reconciler')

    def reconcile(self, main: Event, candidates: List[OverrideCandidate]) -> List[Event]:
        """Reconcile exception candidates with their main event.

        * main event not recurring: all candidates are dropped
        * candidate without original instance time: dropped
        * cancelled candidate: its instance is added to the EXDATEs of the main event
        * otherwise the candidate gets a RECURRENCE-ID and is returned

        The RECURRENCE-ID/EXDATE has the same type (date or date-time) as
        DTSTART of the main event. Candidates keep their order; duplicates are
        not merged.

        Args:
            main: Main VEVENT (modified when EXDATEs are added)
            candidates: Exception candidates

        Returns:
            Exception VEVENTs
        """
        if not candidates:
            return []

        if not self.mapper.from_component(main).is_recurring:
            self.logger.warning(f"Main event isn't recurring, ignoring {len(candidates)} exception(s)")
            return []

        dtstart = main.get('DTSTART')
        if dtstart is None:
            self.logger.warning("Main event without DTSTART, ignoring exceptions")
            return []
        start = dtstart.dt

        exceptions = []
        for candidate in candidates:
            if candidate.anchor is None:
                self.logger.warning("Ignoring exception without original instance time")
                continue

            anchor = align_to_start(candidate.anchor, start)
            if candidate.cancelled:
                self.logger.debug(f"Cancelled exception at {anchor}, adding EXDATE")
                main.add('EXDATE', [anchor])
                continue

            component = candidate.component
            if 'RECURRENCE-ID' in component:
                del component['RECURRENCE-ID']
            component.add('RECURRENCE-ID', anchor)
            exceptions.append(component)

        return exceptions
