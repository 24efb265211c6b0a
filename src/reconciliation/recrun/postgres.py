"""
PostgreSQL implementations of the run and record stores.

Records are keyed by (reconciliation_run_id, migration_key); saves are
upserts that fill whichever hash slot the incoming record carries, and
match-status aggregation is pushed down as a single grouped query so
large runs are never loaded into memory.
"""

import logging
from collections.abc import Iterable

from opentelemetry import trace
from psycopg2.extras import Json, execute_batch, execute_values

from reconciliation.hashing import ColumnMeta
from utils.db_pool import BaseConnectionPool
from utils.retry import retry_database_operation
from utils.tracing import trace_function, trace_operation

from .models import (
    MatchStatus,
    ReconciliationRecord,
    ReconciliationRun,
    RecordMatchStatus,
    RunStatus,
    utcnow,
)
from .stores import SAMPLED_STATUSES, AggregationError, RecordStore, RunStore

logger = logging.getLogger(__name__)

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS reconciliation_run
(
    id              SERIAL PRIMARY KEY,
    dataset_id      VARCHAR(255)             NOT NULL,
    created_time    TIMESTAMP WITH TIME ZONE NOT NULL,
    updated_time    TIMESTAMP WITH TIME ZONE NOT NULL,
    completed_time  TIMESTAMP WITH TIME ZONE,
    status          VARCHAR(20)              NOT NULL,
    source_only     INTEGER,
    target_only     INTEGER,
    both_matched    INTEGER,
    both_mismatched INTEGER,
    source_meta     JSONB                    NOT NULL DEFAULT '[]',
    target_meta     JSONB                    NOT NULL DEFAULT '[]',
    failure_cause   TEXT,
    metadata        JSONB                    NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS ix_reconciliation_run_dataset
    ON reconciliation_run (dataset_id, completed_time DESC);

CREATE TABLE IF NOT EXISTS reconciliation_record
(
    id                    SERIAL PRIMARY KEY,
    reconciliation_run_id INTEGER NOT NULL REFERENCES reconciliation_run (id),
    migration_key         TEXT    NOT NULL,
    source_data           VARCHAR(64),
    target_data           VARCHAR(64),
    CONSTRAINT ux_reconciliation_record_key UNIQUE (reconciliation_run_id, migration_key)
);
"""

RECORD_COLUMNS = "id, reconciliation_run_id, migration_key, source_data, target_data"

RUN_COLUMNS = (
    "id, dataset_id, created_time, updated_time, completed_time, status, "
    "source_only, target_only, both_matched, both_mismatched, "
    "source_meta, target_meta, failure_cause, metadata"
)

UPSERT_RECORDS = f"""
    INSERT INTO reconciliation_record (reconciliation_run_id, migration_key, source_data, target_data)
    VALUES %s
    ON CONFLICT (reconciliation_run_id, migration_key) DO UPDATE SET
        source_data = COALESCE(EXCLUDED.source_data, reconciliation_record.source_data),
        target_data = COALESCE(EXCLUDED.target_data, reconciliation_record.target_data)
    RETURNING {RECORD_COLUMNS}
"""

COUNT_RECORDS_BY_STATUS = f"""
    WITH matching_data AS
        (SELECT migration_key,
            CASE
                WHEN target_data IS NULL       THEN '{RecordMatchStatus.SOURCE_ONLY.value}'
                WHEN source_data IS NULL       THEN '{RecordMatchStatus.TARGET_ONLY.value}'
                WHEN source_data = target_data THEN '{RecordMatchStatus.BOTH_MATCHED.value}'
                ELSE                                '{RecordMatchStatus.BOTH_MISMATCHED.value}'
            END AS match_status
        FROM reconciliation_record
        WHERE reconciliation_run_id = %s)
    SELECT match_status, count(*) AS "count"
    FROM matching_data
    GROUP BY match_status
"""

SAMPLE_RECORDS_BY_STATUS = f"""
    (SELECT {RECORD_COLUMNS} FROM reconciliation_record
     WHERE reconciliation_run_id = %(run_id)s AND target_data IS NULL
     ORDER BY migration_key LIMIT %(limit)s)
    UNION ALL
    (SELECT {RECORD_COLUMNS} FROM reconciliation_record
     WHERE reconciliation_run_id = %(run_id)s AND source_data IS NULL
     ORDER BY migration_key LIMIT %(limit)s)
    UNION ALL
    (SELECT {RECORD_COLUMNS} FROM reconciliation_record
     WHERE reconciliation_run_id = %(run_id)s AND source_data <> target_data
     ORDER BY migration_key LIMIT %(limit)s)
"""


def _record_from_row(row) -> ReconciliationRecord:
    record_id, run_id, migration_key, source_data, target_data = row
    return ReconciliationRecord(
        id=record_id,
        run_id=run_id,
        migration_key=migration_key,
        source_data=source_data,
        target_data=target_data,
    )


def _meta_to_json(columns: Iterable[ColumnMeta]) -> Json:
    return Json([column.to_dict() for column in columns])


def _run_from_row(row) -> ReconciliationRun:
    (
        run_id, dataset_id, created_time, updated_time, completed_time, status,
        source_only, target_only, both_matched, both_mismatched,
        source_meta, target_meta, failure_cause, metadata,
    ) = row

    summary = None
    if source_only is not None:
        summary = MatchStatus(source_only, target_only, both_matched, both_mismatched)

    return ReconciliationRun(
        id=run_id,
        dataset_id=dataset_id,
        created_time=created_time,
        updated_time=updated_time,
        completed_time=completed_time,
        status=RunStatus(status),
        summary=summary,
        source_meta=tuple(ColumnMeta.from_dict(c) for c in source_meta or []),
        target_meta=tuple(ColumnMeta.from_dict(c) for c in target_meta or []),
        failure_cause=failure_cause,
        metadata=dict(metadata or {}),
    )


@trace_function("reconciliation.create_schema")
def create_schema(pool: BaseConnectionPool) -> None:
    """Create the run and record tables if they do not exist."""
    with pool.acquire() as conn:
        with conn.cursor() as cursor:
            cursor.execute(SCHEMA_DDL)
    logger.info("Reconciliation schema is in place")


class PostgresRecordStore(RecordStore):
    """Record store backed by the reconciliation_record table."""

    def __init__(self, pool: BaseConnectionPool):
        self.pool = pool

    @retry_database_operation(max_retries=3, base_delay=0.5)
    def save_all(self, records):
        # One statement cannot upsert the same key twice; the last one wins
        by_key = {record.key: record for record in records}
        if not by_key:
            return []

        values = [
            (r.run_id, r.migration_key, r.source_data, r.target_data)
            for r in by_key.values()
        ]
        with self.pool.acquire() as conn:
            with conn.cursor() as cursor:
                rows = execute_values(
                    cursor, UPSERT_RECORDS, values, page_size=len(values), fetch=True
                )
        return [_record_from_row(row) for row in rows]

    @retry_database_operation(max_retries=3, base_delay=0.5)
    def find_by_keys(self, run_id, migration_keys):
        keys = list(dict.fromkeys(migration_keys))
        if not keys:
            return []

        with self.pool.acquire() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    f"SELECT {RECORD_COLUMNS} FROM reconciliation_record "
                    "WHERE reconciliation_run_id = %s AND migration_key = ANY(%s)",
                    (run_id, keys),
                )
                rows = cursor.fetchall()
        return [_record_from_row(row) for row in rows]

    @retry_database_operation(max_retries=3, base_delay=0.5)
    def update_all(self, records):
        records = list(records)
        if not records:
            return []

        with self.pool.acquire() as conn:
            with conn.cursor() as cursor:
                execute_batch(
                    cursor,
                    "UPDATE reconciliation_record SET source_data = %s, target_data = %s "
                    "WHERE reconciliation_run_id = %s AND migration_key = %s",
                    [
                        (r.source_data, r.target_data, r.run_id, r.migration_key)
                        for r in records
                    ],
                )
        return records

    def aggregate_match_status(self, run_id):
        with trace_operation(
            "reconciliation.aggregate",
            kind=trace.SpanKind.CLIENT,
            run_id=run_id,
        ):
            with self.pool.acquire() as conn:
                with conn.cursor() as cursor:
                    cursor.execute(COUNT_RECORDS_BY_STATUS, (run_id,))
                    rows = cursor.fetchall()

        counts = {}
        for label, count in rows:
            try:
                counts[RecordMatchStatus(label)] = int(count)
            except ValueError as e:
                raise AggregationError(
                    f"Unexpected match status [{label}] aggregating run {run_id}"
                ) from e
        return MatchStatus.from_counts(counts)

    def sample_keys_by_status(self, run_id, limit=10):
        with self.pool.acquire() as conn:
            with conn.cursor() as cursor:
                cursor.execute(SAMPLE_RECORDS_BY_STATUS, {"run_id": run_id, "limit": limit})
                rows = cursor.fetchall()

        samples = {status: [] for status in SAMPLED_STATUSES}
        for row in rows:
            record = _record_from_row(row)
            samples[record.match_status].append(record.migration_key)
        return samples


class PostgresRunStore(RunStore):
    """Run store backed by the reconciliation_run table."""

    def __init__(self, pool: BaseConnectionPool):
        self.pool = pool

    @staticmethod
    def _summary_values(run: ReconciliationRun) -> tuple:
        if run.summary is None:
            return (None, None, None, None)
        s = run.summary
        return (s.source_only, s.target_only, s.both_matched, s.both_mismatched)

    @retry_database_operation(max_retries=3, base_delay=0.5)
    def save(self, run):
        now = utcnow()
        created_time = run.created_time or now

        with self.pool.acquire() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO reconciliation_run
                        (dataset_id, created_time, updated_time, completed_time, status,
                         source_only, target_only, both_matched, both_mismatched,
                         source_meta, target_meta, failure_cause, metadata)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        run.dataset_id, created_time, now, run.completed_time, run.status.value,
                        *self._summary_values(run),
                        _meta_to_json(run.source_meta), _meta_to_json(run.target_meta),
                        run.failure_cause, Json(run.metadata),
                    ),
                )
                (run.id,) = cursor.fetchone()

        run.created_time = created_time
        run.updated_time = now
        return run

    @retry_database_operation(max_retries=3, base_delay=0.5)
    def update(self, run):
        now = utcnow()

        with self.pool.acquire() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    UPDATE reconciliation_run SET
                        updated_time = %s, completed_time = %s, status = %s,
                        source_only = %s, target_only = %s, both_matched = %s, both_mismatched = %s,
                        source_meta = %s, target_meta = %s, failure_cause = %s, metadata = %s
                    WHERE id = %s
                    """,
                    (
                        now, run.completed_time, run.status.value,
                        *self._summary_values(run),
                        _meta_to_json(run.source_meta), _meta_to_json(run.target_meta),
                        run.failure_cause, Json(run.metadata),
                        run.id,
                    ),
                )
                if cursor.rowcount == 0:
                    raise KeyError(f"No run with id {run.id}")

        run.updated_time = now
        return run

    def find_by_id(self, run_id):
        with self.pool.acquire() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    f"SELECT {RUN_COLUMNS} FROM reconciliation_run WHERE id = %s",
                    (run_id,),
                )
                row = cursor.fetchone()
        return _run_from_row(row) if row else None

    def find_recent_by_dataset(self, dataset_id, limit=10):
        with self.pool.acquire() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    f"SELECT {RUN_COLUMNS} FROM reconciliation_run WHERE dataset_id = %s "
                    "ORDER BY completed_time DESC NULLS LAST, id DESC LIMIT %s",
                    (dataset_id, limit),
                )
                rows = cursor.fetchall()
        return [_run_from_row(row) for row in rows]
