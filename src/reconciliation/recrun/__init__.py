"""
Reconciliation runs and per-key records

A run is created Pending, receives one record per migration key from
the source and target load phases, and is finalised as Successful (with
a MatchStatus summary) or Failed (with the extracted failure cause).
"""

from .models import (
    MatchStatus,
    ReconciliationRecord,
    ReconciliationRun,
    RecordKey,
    RecordMatchStatus,
    RunStateError,
    RunStatus,
)
from .service import RecRunService
from .stores import (
    AggregationError,
    InMemoryRecordStore,
    InMemoryRunStore,
    RecordStore,
    RunStore,
)

__all__ = [
    "MatchStatus",
    "ReconciliationRecord",
    "ReconciliationRun",
    "RecordKey",
    "RecordMatchStatus",
    "RunStateError",
    "RunStatus",
    "RecRunService",
    "AggregationError",
    "RecordStore",
    "RunStore",
    "InMemoryRecordStore",
    "InMemoryRunStore",
]
