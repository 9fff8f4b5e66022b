"""Row storage of events."""

from .base import IS_NOT_NULL, IS_NULL, EventStore, StoreError, TransactionTooLargeError
from .batch import BatchOperation, Operation, OperationResult, OperationType
from .calendar import LocalCalendar, StatusUpdateWorkaround
from .recurring import RecurringCalendar
from .sequence import SequenceUpdater

__all__ = [
    "IS_NOT_NULL",
    "IS_NULL",
    "EventStore",
    "StoreError",
    "TransactionTooLargeError",
    "BatchOperation",
    "Operation",
    "OperationResult",
    "OperationType",
    "LocalCalendar",
    "StatusUpdateWorkaround",
    "RecurringCalendar",
    "SequenceUpdater",
]
