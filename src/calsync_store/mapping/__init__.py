"""Mapping between iCalendar VEVENTs and storage rows."""

from .builder import EventBuilder
from .processor import EventProcessor
from .reconcile import ExceptionReconciler, OverrideCandidate

__all__ = ["EventBuilder", "EventProcessor", "ExceptionReconciler", "OverrideCandidate"]
