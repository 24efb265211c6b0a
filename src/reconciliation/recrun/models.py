"""
Data model for reconciliation runs and their per-key records.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from reconciliation.hashing import ColumnMeta
from utils.errors import extract_failure_cause


def utcnow() -> datetime:
    return datetime.now(UTC)


class RunStatus(str, Enum):
    """Lifecycle status of a reconciliation run"""

    PENDING = "Pending"
    SUCCESSFUL = "Successful"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self != RunStatus.PENDING


class RecordMatchStatus(str, Enum):
    """Classification of a single migration key within a run"""

    SOURCE_ONLY = "SourceOnly"
    TARGET_ONLY = "TargetOnly"
    BOTH_MATCHED = "BothMatched"
    BOTH_MISMATCHED = "BothMismatched"

    @classmethod
    def of(cls, source_data: str | None, target_data: str | None) -> "RecordMatchStatus":
        if target_data is None:
            return cls.SOURCE_ONLY
        if source_data is None:
            return cls.TARGET_ONLY
        if source_data == target_data:
            return cls.BOTH_MATCHED
        return cls.BOTH_MISMATCHED


class RunStateError(RuntimeError):
    """Raised when a run in a terminal status is transitioned again."""


@dataclass(frozen=True)
class MatchStatus:
    """
    Per-bucket counts of the migration keys observed in a run.

    Totals are derived from the four buckets and never stored.
    """

    source_only: int = 0
    target_only: int = 0
    both_matched: int = 0
    both_mismatched: int = 0

    def __post_init__(self):
        for name in ("source_only", "target_only", "both_matched", "both_mismatched"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @property
    def source_total(self) -> int:
        return self.source_only + self.both_matched + self.both_mismatched

    @property
    def target_total(self) -> int:
        return self.target_only + self.both_matched + self.both_mismatched

    @property
    def total(self) -> int:
        return self.source_total + self.target_only

    @classmethod
    def from_counts(cls, counts: dict[RecordMatchStatus, int]) -> "MatchStatus":
        return cls(
            source_only=counts.get(RecordMatchStatus.SOURCE_ONLY, 0),
            target_only=counts.get(RecordMatchStatus.TARGET_ONLY, 0),
            both_matched=counts.get(RecordMatchStatus.BOTH_MATCHED, 0),
            both_mismatched=counts.get(RecordMatchStatus.BOTH_MISMATCHED, 0),
        )

    def as_counts(self) -> dict[str, int]:
        return {
            RecordMatchStatus.SOURCE_ONLY.value: self.source_only,
            RecordMatchStatus.TARGET_ONLY.value: self.target_only,
            RecordMatchStatus.BOTH_MATCHED.value: self.both_matched,
            RecordMatchStatus.BOTH_MISMATCHED.value: self.both_mismatched,
        }


@dataclass(frozen=True)
class RecordKey:
    run_id: int
    migration_key: str


@dataclass
class ReconciliationRecord:
    """Source and target hashes of one migration key within one run"""

    run_id: int
    migration_key: str
    source_data: str | None = None
    target_data: str | None = None
    id: int | None = None

    @property
    def key(self) -> RecordKey:
        return RecordKey(self.run_id, self.migration_key)

    @property
    def match_status(self) -> RecordMatchStatus:
        return RecordMatchStatus.of(self.source_data, self.target_data)


@dataclass
class ReconciliationRun:
    """
    One execution of the pipeline for one dataset.

    Created as Pending; moved exactly once to Successful or Failed.
    """

    dataset_id: str
    id: int | None = None
    created_time: datetime | None = None
    updated_time: datetime | None = None
    completed_time: datetime | None = None
    status: RunStatus = RunStatus.PENDING
    summary: MatchStatus | None = None
    source_meta: tuple[ColumnMeta, ...] = ()
    target_meta: tuple[ColumnMeta, ...] = ()
    failure_cause: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def _ensure_pending(self) -> None:
        if self.status.is_terminal:
            raise RunStateError(
                f"Run {self.id} for dataset [{self.dataset_id}] is already {self.status.value}"
            )

    def with_meta(self, source_meta, target_meta) -> "ReconciliationRun":
        self._ensure_pending()
        self.source_meta = tuple(source_meta)
        self.target_meta = tuple(target_meta)
        return self

    def as_successful(self, summary: MatchStatus) -> "ReconciliationRun":
        self._ensure_pending()
        self.summary = summary
        self.completed_time = utcnow()
        self.status = RunStatus.SUCCESSFUL
        return self

    def as_failed(self, cause: BaseException) -> "ReconciliationRun":
        self._ensure_pending()
        self.failure_cause = extract_failure_cause(cause)
        self.completed_time = utcnow()
        self.status = RunStatus.FAILED
        return self

    @property
    def completed_duration_seconds(self) -> float | None:
        if self.created_time is None or self.completed_time is None:
            return None
        return (self.completed_time - self.created_time).total_seconds()

    def copy(self) -> "ReconciliationRun":
        return replace(self, metadata=dict(self.metadata))

    def __str__(self) -> str:
        return f"ReconciliationRun(id={self.id}, dataset_id={self.dataset_id}, status={self.status.value})"
