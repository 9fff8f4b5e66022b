"""SEQUENCE handling of locally modified events."""

import logging
from typing import Optional

from ..models import EventEntity

logger = logging.getLogger(__name__)


class SequenceUpdater:
    """Calculates the SEQUENCE of an event that is about to be uploaded.

    Must be called exactly once per upload of a locally modified main event,
    before it's mapped to iCalendar.
    """

    def __init__(self):
        self.logger = logger.getChild('sequence')

    def increase_sequence(self, entity: EventEntity) -> Optional[int]:
        """Increase the SEQUENCE of the main row if needed.

        * no SEQUENCE yet (new event): row keeps the empty value, 0 is reported
        * group-scheduled, we're the organizer: increased
        * group-scheduled, we're not the organizer: unchanged (attendees must not change it)
        * not group-scheduled, SEQUENCE 0: unchanged (0 is written as no SEQUENCE at all)
        * not group-scheduled, SEQUENCE > 0: increased

        Args:
            entity: Main event; its ``row.sequence`` is updated when the SEQUENCE is increased

        Returns:
            SEQUENCE that shall be stored after a successful upload, or None if it
            shall not be changed
        """
        row = entity.row
        current = row.sequence

        if current is None:
            # first upload
            return 0

        if entity.is_group_scheduled():
            if row.is_organizer:
                row.sequence = current + 1
                self.logger.debug(f"Increased SEQUENCE of group-scheduled event {row.id} to {row.sequence}")
                return row.sequence
            self.logger.debug(f"Not changing SEQUENCE of event {row.id} because we're not the organizer")
            return None

        if current == 0:
            return None

        row.sequence = current + 1
        return row.sequence
