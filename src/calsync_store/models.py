"""Data models for the row-based event storage."""

from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field


class EventStatus(str, Enum):
    """Lifecycle status of an event row."""

    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"


class Availability(str, Enum):
    """Busy/free state of an event row."""

    BUSY = "busy"
    FREE = "free"
    TENTATIVE = "tentative"


class AccessLevel(str, Enum):
    """Classification/visibility of an event row."""

    DEFAULT = "default"
    CONFIDENTIAL = "confidential"
    PRIVATE = "private"
    PUBLIC = "public"


class ReminderMethod(str, Enum):
    """How a reminder is delivered."""

    DEFAULT = "default"
    ALERT = "alert"
    EMAIL = "email"


class AttendeeStatus(str, Enum):
    """Participation status of an attendee."""

    NONE = "none"
    INVITED = "invited"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    TENTATIVE = "tentative"


class AttendeeType(str, Enum):
    """Attendee type."""

    NONE = "none"
    REQUIRED = "required"
    OPTIONAL = "optional"
    RESOURCE = "resource"


class AttendeeRelationship(str, Enum):
    """Relationship of an attendee to the event."""

    NONE = "none"
    ATTENDEE = "attendee"
    ORGANIZER = "organizer"
    PERFORMER = "performer"
    SPEAKER = "speaker"


class EventRow(BaseModel):
    """Main row of an event (or of an exception)."""

    TABLE: ClassVar[str] = "events"

    id: Optional[int] = Field(None, description="Row ID (assigned by the storage)")
    calendar_id: Optional[int] = Field(None, description="ID of the calendar the event belongs to")
    sync_id: Optional[str] = Field(None, description="Stable external identity key (for instance the resource name)")

    uid: Optional[str] = Field(None, description="iCalendar UID")
    title: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None

    dtstart: Optional[int] = Field(None, description="Start time (milliseconds since epoch)")
    event_timezone: Optional[str] = Field(None, description="Timezone ID of the start time")
    all_day: bool = False
    dtend: Optional[int] = Field(None, description="End time (milliseconds since epoch)")
    event_end_timezone: Optional[str] = Field(None, description="Timezone ID of the end time")
    duration: Optional[str] = Field(None, description="Duration (RFC 5545), used by recurring main rows")

    # recurrence fields (main rows only)
    rrule: Optional[str] = None
    rdate: Optional[str] = None
    exrule: Optional[str] = None
    exdate: Optional[str] = None

    # reference to the main row (exception rows only)
    original_id: Optional[int] = Field(None, description="Row ID of the main row (set by the storage)")
    original_sync_id: Optional[str] = Field(None, description="sync_id of the main row")
    original_instance_time: Optional[int] = Field(None, description="Start time of the replaced instance (ms)")
    original_all_day: Optional[bool] = None

    status: Optional[EventStatus] = None
    availability: Availability = Availability.BUSY
    access_level: AccessLevel = AccessLevel.DEFAULT

    # scheduling
    sequence: Optional[int] = Field(None, description="SEQUENCE (None when the event has never been uploaded)")
    organizer: Optional[str] = None
    is_organizer: Optional[bool] = None
    has_attendee_data: bool = False

    # sync state
    dirty: bool = False
    deleted: bool = False
    etag: Optional[str] = None
    schedule_tag: Optional[str] = None
    sync_flags: int = 0

    def is_exception(self) -> bool:
        """Whether this row replaces an instance of another (main) row."""
        return self.original_sync_id is not None or self.original_id is not None

    def is_recurring(self) -> bool:
        """Whether the row has recurrence rules or dates."""
        return bool(self.rrule or self.rdate)

    def to_values(self) -> Dict[str, Any]:
        """Values that are written to the storage (without row ID)."""
        return self.model_dump(mode="json", exclude={"id"})


class ReminderRow(BaseModel):
    """Reminder (alarm) data row."""

    TABLE: ClassVar[str] = "reminders"

    minutes: int = Field(0, description="Minutes before the start of the event")
    method: ReminderMethod = ReminderMethod.DEFAULT

    def to_values(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class AttendeeRow(BaseModel):
    """Attendee data row."""

    TABLE: ClassVar[str] = "attendees"

    email: Optional[str] = None
    name: Optional[str] = None
    identity: Optional[str] = None
    id_namespace: Optional[str] = None
    status: AttendeeStatus = AttendeeStatus.NONE
    type: AttendeeType = AttendeeType.NONE
    relationship: AttendeeRelationship = AttendeeRelationship.ATTENDEE

    def to_values(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class ExtendedPropertyRow(BaseModel):
    """Extended property data row (name/value pair)."""

    TABLE: ClassVar[str] = "extended_properties"

    # names of extended properties that are created by the mapping
    CATEGORIES: ClassVar[str] = "categories"
    URL: ClassVar[str] = "url"
    UNKNOWN_PROPERTY: ClassVar[str] = "unknown-property"

    # categories are stored as one value, separated by this character
    CATEGORIES_SEPARATOR: ClassVar[str] = "\\"

    name: str
    value: Optional[str] = None

    def to_values(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class EventEntity(BaseModel):
    """Event row together with its data rows."""

    row: EventRow
    reminders: List[ReminderRow] = Field(default_factory=list)
    attendees: List[AttendeeRow] = Field(default_factory=list)
    extended_properties: List[ExtendedPropertyRow] = Field(default_factory=list)

    def is_group_scheduled(self) -> bool:
        """Events with attendees are group-scheduled."""
        return bool(self.attendees)

    def extended(self, name: str) -> List[ExtendedPropertyRow]:
        """Extended properties with the given name."""
        return [prop for prop in self.extended_properties if prop.name == name]


class EventAndExceptions(BaseModel):
    """Main event row with all rows of its exceptions.

    This is the unit that is inserted, updated and deleted as a whole.
    """

    main: EventEntity
    exceptions: List[EventEntity] = Field(default_factory=list)
