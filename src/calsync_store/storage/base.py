"""Abstract row storage used by the event mapping."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .batch import Operation, OperationResult


class _Condition:
    """Selection value that is not compared by equality."""

    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return self.name


# selection values: column must be (not) NULL
IS_NULL = _Condition("IS_NULL")
IS_NOT_NULL = _Condition("IS_NOT_NULL")


class StoreError(Exception):
    """The storage backend failed to execute a request."""
    pass


class TransactionTooLargeError(StoreError):
    """A batch contains more operations (or data) than the backend accepts at once."""

    def __init__(self, message: str, limit: Optional[int] = None):
        super().__init__(message)
        self.limit = limit


class EventStore(ABC):
    """Row storage for events and their data rows.

    Tables are ``events``, ``reminders``, ``attendees`` and
    ``extended_properties``. Data rows reference their event row with
    ``event_id``.

    A selection maps column names to values that have to match (equality),
    to a list/tuple of allowed values, or to :data:`IS_NULL` / :data:`IS_NOT_NULL`.
    """

    @abstractmethod
    def apply_batch(self, operations: List["Operation"]) -> List["OperationResult"]:
        """Apply a list of operations as one transaction (all or nothing).

        Values of an operation may reference the row ID that was produced by
        an earlier insert of the same list (``Operation.value_backrefs``).

        Returns:
            One result per operation

        Raises:
            TransactionTooLargeError: if the batch is too large to be applied at once
            StoreError: if the backend failed
        """

    @abstractmethod
    def query(self, table: str, selection: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Query the rows of a table that match the selection.

        Returns:
            Column values of the matching rows (including ``id``), ordered by ID
        """
