"""Batch of row operations that is committed to the storage at once."""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from ..exceptions import LocalStorageError
from .base import EventStore, StoreError, TransactionTooLargeError

logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    """Type of a row operation."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class Operation:
    """Row operation (insert, update or delete) on one table.

    ``value_backrefs`` maps column names to the index of an earlier insert
    operation in the same batch; the column is set to the row ID produced by
    that insert.
    """

    type: OperationType
    table: str
    values: Dict[str, Any] = field(default_factory=dict)
    selection: Dict[str, Any] = field(default_factory=dict)
    value_backrefs: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def insert(cls, table: str, values: Dict[str, Any]) -> "Operation":
        return cls(OperationType.INSERT, table, values=dict(values))

    @classmethod
    def update(cls, table: str, selection: Dict[str, Any], values: Dict[str, Any]) -> "Operation":
        return cls(OperationType.UPDATE, table, values=dict(values), selection=dict(selection))

    @classmethod
    def delete(cls, table: str, selection: Dict[str, Any]) -> "Operation":
        return cls(OperationType.DELETE, table, selection=dict(selection))

    def with_value_backref(self, column: str, index: int) -> "Operation":
        """Set a column to the row ID of the insert at ``index``."""
        self.value_backrefs[column] = index
        return self


@dataclass
class OperationResult:
    """Result of one operation: the ID of an inserted row and the number of affected rows."""

    row_id: Optional[int] = None
    count: int = 0


class BatchOperation:
    """Collects row operations and commits them to an :class:`EventStore`.

    Operations may reference inserts that were added before them by index
    (:meth:`next_backref_idx`). When the store limits the number of operations
    per transaction, the queue is committed in several chunks and the
    back-references are rewritten accordingly.

    Usage::

        batch = BatchOperation(store)
        idx = batch.next_backref_idx()
        batch += Operation.insert("events", values)
        batch += Operation.insert("reminders", {"minutes": 15}).with_value_backref("event_id", idx)
        batch.commit()
        event_id = batch.get_result(idx).row_id
    """

    def __init__(self, store: EventStore, max_operations_per_commit: Optional[int] = None):
        if max_operations_per_commit is not None and max_operations_per_commit < 1:
            raise ValueError("max_operations_per_commit must be at least 1")
        self.store = store
        self.max_operations_per_commit = max_operations_per_commit
        self.queue: List[Operation] = []
        self.results: Dict[int, OperationResult] = {}
        self.logger = logger.getChild('batch')

    def next_backref_idx(self) -> int:
        """Index the next added operation will have (to be used as back-reference)."""
        return len(self.queue)

    def add(self, operation: Operation) -> "BatchOperation":
        for column, index in operation.value_backrefs.items():
            if index >= len(self.queue):
                raise ValueError(f"Back-reference of {column} to operation {index} which doesn't exist yet")
        self.queue.append(operation)
        return self

    def __iadd__(self, operation: Operation) -> "BatchOperation":
        return self.add(operation)

    def __len__(self) -> int:
        return len(self.queue)

    def commit(self) -> int:
        """Commit all queued operations.

        Returns:
            Number of affected rows

        Raises:
            LocalStorageError: if the store failed or a single operation is too large
        """
        self.results = {}
        if not self.queue:
            return 0

        self.logger.debug(f"Committing {len(self.queue)} operations")
        chunk = self.max_operations_per_commit or len(self.queue)
        try:
            for start in range(0, len(self.queue), chunk):
                self._run_batch(start, min(start + chunk, len(self.queue)))
        finally:
            self.queue = []

        return sum(result.count for result in self.results.values())

    def get_result(self, index: int) -> Optional[OperationResult]:
        """Result of the operation with the given index (after :meth:`commit`)."""
        return self.results.get(index)

    def _run_batch(self, start: int, end: int) -> None:
        """Apply the operations ``[start, end)`` of the queue in one transaction.

        Splits the range in halves if the store reports that it's too large.
        """
        operations = [self._rewrite(self.queue[i], start) for i in range(start, end)]
        try:
            results = self.store.apply_batch(operations)
        except TransactionTooLargeError as e:
            if end - start <= 1:
                raise LocalStorageError(
                    "Can't transfer data to storage (too large data row can't be split)", e
                )
            middle = start + (end - start) // 2
            self.logger.warning(
                f"Transaction too large, splitting operations {start}-{end - 1} at {middle}"
            )
            self._run_batch(start, middle)
            self._run_batch(middle, end)
            return
        except StoreError as e:
            raise LocalStorageError(f"Couldn't apply batch operations: {e}", e)

        for offset, result in enumerate(results):
            self.results[start + offset] = result

    def _rewrite(self, operation: Operation, start: int) -> Operation:
        """Make the back-references of an operation relative to a chunk that begins at ``start``.

        Back-references into the chunk are shifted, back-references to earlier
        chunks are replaced by the row IDs they produced.
        """
        if not operation.value_backrefs:
            return operation

        values = dict(operation.values)
        backrefs = {}
        for column, index in operation.value_backrefs.items():
            if index < start:
                result = self.results.get(index)
                if result is None or result.row_id is None:
                    raise LocalStorageError(f"Back-reference to operation {index} without row ID")
                values[column] = result.row_id
            else:
                backrefs[column] = index - start
        return replace(operation, values=values, value_backrefs=backrefs)
