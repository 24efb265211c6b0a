"""
Store contracts for runs and records, with in-memory implementations.

The in-memory stores back tests and single-process deployments without
a results database; the PostgreSQL stores in `postgres.py` implement the
same contracts.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Iterable
from dataclasses import replace

from .models import (
    MatchStatus,
    ReconciliationRecord,
    ReconciliationRun,
    RecordKey,
    RecordMatchStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

SAMPLED_STATUSES = (
    RecordMatchStatus.SOURCE_ONLY,
    RecordMatchStatus.TARGET_ONLY,
    RecordMatchStatus.BOTH_MISMATCHED,
)


class AggregationError(RuntimeError):
    """Raised when the grouped match-status query returns an unknown label."""


class RecordStore(ABC):
    """Persistence for reconciliation records, scoped by run id."""

    @abstractmethod
    def save_all(self, records: Iterable[ReconciliationRecord]) -> list[ReconciliationRecord]:
        """Insert records; an existing record keeps any hash slot the new one leaves unset."""

    @abstractmethod
    def find_by_keys(self, run_id: int, migration_keys: Iterable[str]) -> list[ReconciliationRecord]:
        """Find the records of a run for the given migration keys."""

    @abstractmethod
    def update_all(self, records: Iterable[ReconciliationRecord]) -> list[ReconciliationRecord]:
        """Write back records previously returned by a find."""

    @abstractmethod
    def aggregate_match_status(self, run_id: int) -> MatchStatus:
        """Count the records of a run per match status."""

    @abstractmethod
    def sample_keys_by_status(
        self, run_id: int, limit: int = 10
    ) -> dict[RecordMatchStatus, list[str]]:
        """Return up to `limit` example keys for each non-matching status."""

    def save(self, record: ReconciliationRecord) -> ReconciliationRecord:
        return self.save_all([record])[0]

    def find_by_key(self, run_id: int, migration_key: str) -> ReconciliationRecord | None:
        found = self.find_by_keys(run_id, [migration_key])
        return found[0] if found else None

    def update(self, record: ReconciliationRecord) -> ReconciliationRecord:
        return self.update_all([record])[0]


class RunStore(ABC):
    """Persistence for reconciliation runs."""

    @abstractmethod
    def save(self, run: ReconciliationRun) -> ReconciliationRun:
        """Persist a new run, assigning its id and timestamps."""

    @abstractmethod
    def update(self, run: ReconciliationRun) -> ReconciliationRun:
        """Persist changes to an existing run."""

    @abstractmethod
    def find_by_id(self, run_id: int) -> ReconciliationRun | None:
        """Look up a run by id."""

    @abstractmethod
    def find_recent_by_dataset(self, dataset_id: str, limit: int = 10) -> list[ReconciliationRun]:
        """Most recently completed runs of a dataset, newest first."""


class InMemoryRecordStore(RecordStore):
    """Thread-safe record store backed by a dictionary."""

    def __init__(self):
        self._records: dict[RecordKey, ReconciliationRecord] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def save_all(self, records):
        saved = []
        with self._lock:
            for record in records:
                existing = self._records.get(record.key)
                if existing is None:
                    stored = replace(record, id=next(self._ids))
                else:
                    # Fill whichever hash slot the incoming record carries
                    stored = replace(
                        record,
                        id=existing.id,
                        source_data=record.source_data if record.source_data is not None else existing.source_data,
                        target_data=record.target_data if record.target_data is not None else existing.target_data,
                    )
                self._records[record.key] = stored
                saved.append(replace(stored))
        return saved

    def find_by_keys(self, run_id, migration_keys):
        with self._lock:
            found = [
                self._records.get(RecordKey(run_id, key))
                for key in dict.fromkeys(migration_keys)
            ]
        return [replace(record) for record in found if record is not None]

    def update_all(self, records):
        updated = []
        with self._lock:
            for record in records:
                if record.key not in self._records:
                    raise KeyError(f"No record for run {record.run_id} and key [{record.migration_key}]")
                self._records[record.key] = replace(record)
                updated.append(record)
        return updated

    def _records_for(self, run_id: int) -> list[ReconciliationRecord]:
        with self._lock:
            return [record for key, record in self._records.items() if key.run_id == run_id]

    def aggregate_match_status(self, run_id):
        counts = Counter(record.match_status for record in self._records_for(run_id))
        return MatchStatus.from_counts(counts)

    def sample_keys_by_status(self, run_id, limit=10):
        samples = {status: [] for status in SAMPLED_STATUSES}
        for record in self._records_for(run_id):
            keys = samples.get(record.match_status)
            if keys is not None and len(keys) < limit:
                keys.append(record.migration_key)
        return samples

    def count(self, run_id: int | None = None) -> int:
        with self._lock:
            if run_id is None:
                return len(self._records)
            return sum(1 for key in self._records if key.run_id == run_id)


class InMemoryRunStore(RunStore):
    """Thread-safe run store backed by a dictionary."""

    def __init__(self):
        self._runs: dict[int, ReconciliationRun] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def save(self, run):
        now = utcnow()
        with self._lock:
            run.id = next(self._ids)
            run.created_time = run.created_time or now
            run.updated_time = now
            self._runs[run.id] = run.copy()
        return run

    def update(self, run):
        with self._lock:
            if run.id not in self._runs:
                raise KeyError(f"No run with id {run.id}")
            run.updated_time = utcnow()
            self._runs[run.id] = run.copy()
        return run

    def find_by_id(self, run_id):
        with self._lock:
            run = self._runs.get(run_id)
        return run.copy() if run else None

    def find_recent_by_dataset(self, dataset_id, limit=10):
        with self._lock:
            runs = [run.copy() for run in self._runs.values() if run.dataset_id == dataset_id]

        # Pending runs have no completion time and sort last
        runs.sort(
            key=lambda run: (run.completed_time is not None, run.completed_time or run.created_time, run.id),
            reverse=True,
        )
        return runs[:limit]
