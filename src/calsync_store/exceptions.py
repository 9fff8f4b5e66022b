"""Exceptions raised while mapping and storing events."""

from typing import Optional


class InvalidResourceError(Exception):
    """Base exception for resources that can't be mapped.

    Raised only when a required field is missing or unusable, so that the
    affected event (and its exceptions) can be skipped without aborting the
    processing of other events.
    """
    pass


class InvalidLocalResourceError(InvalidResourceError):
    """A storage row can't be mapped to an iCalendar component."""
    pass


class InvalidRemoteResourceError(InvalidResourceError):
    """An iCalendar component can't be mapped to storage rows."""
    pass


class InvalidICalendarError(InvalidRemoteResourceError):
    """iCalendar data can't be parsed at all."""
    pass


class LocalStorageError(Exception):
    """The local storage backend failed to execute a request.

    The original backend error is available as ``cause`` (and ``__cause__``).
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause
