"""Shared fixtures for the tests."""

from typing import List

import pytest
from pydantic_settings import SettingsConfigDict

from calsync_store.config import Settings
from calsync_store.repository import LocalEventRepository
from calsync_store.storage import EventStore, LocalCalendar, Operation, OperationResult, OperationType, RecurringCalendar
from calsync_store.storage.base import TransactionTooLargeError
from calsync_store.storage.database import SqlEventStore
from calsync_store.timeutils import TimeZoneRegistry


class TestSettings(Settings):
    """Settings that ignore the environment file of the working directory."""

    __test__ = False

    model_config = SettingsConfigDict(env_file=None, case_sensitive=False, extra="ignore")


@pytest.fixture
def settings(tmp_path):
    return TestSettings(
        data_dir=tmp_path,
        database_url=f"sqlite:///{tmp_path}/test.db",
        default_timezone="Europe/Vienna",
        owner_account="owner@example.com",
        account_name="owner@example.com",
    )


@pytest.fixture
def registry():
    return TimeZoneRegistry("Europe/Vienna")


@pytest.fixture
def store(settings):
    store = SqlEventStore(settings)
    store.init_db()
    return store


@pytest.fixture
def calendar(store):
    return LocalCalendar(store, calendar_id=1)


@pytest.fixture
def recurring(calendar):
    return RecurringCalendar(calendar)


@pytest.fixture
def repository(store, settings):
    return LocalEventRepository(store, settings, calendar_id=1)


class RecordingStore(EventStore):
    """In-memory store that records batches and can reject large ones."""

    __test__ = False

    def __init__(self, max_operations=None, fail_single_ops=False):
        self.max_operations = max_operations
        self.fail_single_ops = fail_single_ops
        self.batches: List[List[Operation]] = []
        self.next_id = 100

    def apply_batch(self, operations):
        if self.max_operations is not None and len(operations) > self.max_operations:
            raise TransactionTooLargeError("too many operations", limit=self.max_operations)
        if self.fail_single_ops:
            raise TransactionTooLargeError("row too large")

        self.batches.append(operations)
        results = []
        for operation in operations:
            for column, index in operation.value_backrefs.items():
                assert index < len(results), f"Back-reference {index} out of chunk"
            if operation.type == OperationType.INSERT:
                self.next_id += 1
                results.append(OperationResult(row_id=self.next_id, count=1))
            else:
                results.append(OperationResult(count=1))
        return results

    def query(self, table, selection=None):
        return []


@pytest.fixture
def recording_store():
    return RecordingStore()
