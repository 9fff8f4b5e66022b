"""calsync-store - Storage of recurring iCalendar events as event and exception rows."""

__version__ = "1.0.0"

from .config import Settings, load_settings
from .exceptions import (
    InvalidICalendarError,
    InvalidLocalResourceError,
    InvalidRemoteResourceError,
    InvalidResourceError,
    LocalStorageError,
)
from .ical import AssociatedEvents
from .repository import LocalEventRepository

__all__ = [
    "Settings",
    "load_settings",
    "InvalidICalendarError",
    "InvalidLocalResourceError",
    "InvalidRemoteResourceError",
    "InvalidResourceError",
    "LocalStorageError",
    "AssociatedEvents",
    "LocalEventRepository",
]
