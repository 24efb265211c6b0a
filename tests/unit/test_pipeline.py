"""
Unit tests for the dataset reconciliation pipeline

Tests verify:
- Source-then-target loading and match-status aggregation
- Failed runs are persisted before the error reaches the caller
- Duplicate keys, column metadata and metrics
"""

import pytest

from conftest import FakeLoader, make_dataset, make_rows
from reconciliation.hashing import ColumnMeta, ColumnType, HashingStrategy
from reconciliation.pipeline import DataLoadException, DatasetNotFoundError
from reconciliation.recrun import MatchStatus, RecordMatchStatus, RunStatus


class TestRunFor:
    """Test DatasetRecService.run_for"""

    def test_source_and_target_overlap(self, service_factory, record_store, run_store):
        """Test one key per match bucket"""
        dataset = make_dataset(
            source_rows=make_rows([("1", "a"), ("2", "b")]),
            target_rows=make_rows([("2", "b"), ("3", "c")]),
        )
        service = service_factory(dataset)

        run = service.run_for(dataset.id, {"trigger": "api"})

        assert run.status == RunStatus.SUCCESSFUL
        assert run.summary == MatchStatus(source_only=1, target_only=1, both_matched=1, both_mismatched=0)
        assert run.summary.total == 3
        assert run.metadata == {"trigger": "api"}
        assert run_store.find_by_id(run.id).status == RunStatus.SUCCESSFUL
        assert record_store.find_by_key(run.id, "1").match_status == RecordMatchStatus.SOURCE_ONLY
        assert record_store.find_by_key(run.id, "3").match_status == RecordMatchStatus.TARGET_ONLY

    def test_changed_value_is_mismatched(self, service_factory):
        dataset = make_dataset(
            source_rows=make_rows([("1", "a")]),
            target_rows=make_rows([("1", "z")]),
        )

        run = service_factory(dataset).run_for(dataset.id)

        assert run.summary == MatchStatus(both_mismatched=1)

    def test_empty_sides(self, service_factory):
        dataset = make_dataset()

        run = service_factory(dataset).run_for(dataset.id)

        assert run.status == RunStatus.SUCCESSFUL
        assert run.summary.total == 0
        assert run.source_meta == ()

    def test_many_batches(self, service_factory):
        rows = make_rows([(str(i), f"v{i}") for i in range(25)])
        dataset = make_dataset(source_rows=rows, target_rows=rows[5:])

        run = service_factory(dataset, batch_size=3, batch_concurrency=2).run_for(dataset.id)

        assert run.summary == MatchStatus(source_only=5, both_matched=20)

    def test_queries_each_side_once(self, service_factory):
        source, target = FakeLoader(), FakeLoader()
        dataset = make_dataset(source_loader=source, target_loader=target)

        service_factory(dataset).run_for(dataset.id)

        assert source.queries == ["SELECT * FROM source_table"]
        assert target.queries == ["SELECT * FROM target_table"]
        assert (source.released, target.released) == (1, 1)

    def test_unknown_dataset(self, service_factory, run_store):
        service = service_factory(make_dataset())

        with pytest.raises(DatasetNotFoundError, match=r"Dataset with id \[missing\] not found!"):
            service.run_for("missing")

        assert run_store.find_recent_by_dataset("missing") == []

    def test_duplicate_target_keys_last_wins(self, service_factory):
        dataset = make_dataset(
            source_rows=make_rows([("1", "new")]),
            target_rows=make_rows([("1", "old"), ("1", "new")]),
        )

        run = service_factory(dataset).run_for(dataset.id)

        assert run.summary == MatchStatus(both_matched=1)

    def test_duplicate_source_keys_last_wins(self, service_factory):
        dataset = make_dataset(
            source_rows=make_rows([("1", "old"), ("2", "b"), ("1", "new")]),
            target_rows=make_rows([("1", "new"), ("2", "b")]),
        )

        run = service_factory(dataset, batch_size=10).run_for(dataset.id)

        assert run.summary == MatchStatus(both_matched=2)

    def test_rerun_creates_independent_run(self, service_factory, record_store):
        target = FakeLoader(make_rows([("1", "a"), ("2", "b")]))
        dataset = make_dataset(source_rows=make_rows([("1", "a"), ("2", "b")]), target_loader=target)
        service = service_factory(dataset)

        first = service.run_for(dataset.id)
        first_record = record_store.find_by_key(first.id, "2")
        target.rows = make_rows([("1", "a"), ("2", "changed"), ("3", "c")])
        second = service.run_for(dataset.id)

        assert second.id != first.id
        assert first.summary == MatchStatus(both_matched=2)
        assert second.summary == MatchStatus(target_only=1, both_matched=1, both_mismatched=1)
        assert record_store.find_by_key(first.id, "2") == first_record
        assert record_store.find_by_key(first.id, "3") is None
        assert record_store.aggregate_match_status(first.id) == first.summary

    def test_captures_column_meta(self, service_factory):
        target_columns = (ColumnMeta("MigrationKey", ColumnType.STRING), ColumnMeta("value", ColumnType.STRING, "text"))
        dataset = make_dataset(
            source_rows=make_rows([("1", "a")]),
            target_rows=make_rows([("1", "a")], columns=target_columns),
        )

        run = service_factory(dataset).run_for(dataset.id)

        assert run.source_meta == (ColumnMeta("value", ColumnType.STRING),)
        assert run.target_meta == (ColumnMeta("value", ColumnType.STRING, "text"),)

    @pytest.mark.parametrize("strategy,expected", [
        (HashingStrategy.TYPE_LENIENT, MatchStatus(both_matched=1)),
        (HashingStrategy.TYPE_STRICT, MatchStatus(both_mismatched=1)),
    ])
    def test_integer_width_by_strategy(self, service_factory, strategy, expected):
        """Test an INT32 source column against an INT64 target column"""
        key = ColumnMeta("MigrationKey", ColumnType.STRING)
        dataset = make_dataset(
            source_rows=make_rows([("1", 5)], columns=(key, ColumnMeta("n", ColumnType.INT32))),
            target_rows=make_rows([("1", 5)], columns=(key, ColumnMeta("n", ColumnType.INT64))),
            strategy=strategy,
        )

        run = service_factory(dataset).run_for(dataset.id)

        assert run.summary == expected


class TestRunFailure:
    """Test runs that fail while loading"""

    def test_source_query_fails(self, service_factory, run_store):
        target = FakeLoader()
        dataset = make_dataset(
            source_loader=FakeLoader(error=ConnectionError("could not connect to server")),
            target_loader=target,
        )

        with pytest.raises(DataLoadException):
            service_factory(dataset).run_for(dataset.id)

        (run,) = run_store.find_recent_by_dataset(dataset.id)
        assert run.status == RunStatus.FAILED
        assert run.failure_cause.startswith("Failed to load data from source(ref=source-db)")
        assert "rootCause=[could not connect to server]" in run.failure_cause
        assert run.summary is None
        assert target.queries == []

    def test_target_fails_mid_stream(self, service_factory, run_store):
        target = FakeLoader(make_rows([("1", "a"), ("2", "b")]), error=RuntimeError("cursor lost"), fail_after=1)
        dataset = make_dataset(source_rows=make_rows([("1", "a")]), target_loader=target)

        with pytest.raises(DataLoadException, match=r"target\(ref=target-db\)"):
            service_factory(dataset).run_for(dataset.id)

        (run,) = run_store.find_recent_by_dataset(dataset.id)
        assert run.status == RunStatus.FAILED
        assert "cursor lost" in run.failure_cause
        assert target.released == 1

    def test_target_failure_keeps_source_meta(self, service_factory, run_store):
        dataset = make_dataset(
            source_rows=make_rows([("1", "a")]),
            target_loader=FakeLoader(error=RuntimeError("relation does not exist")),
        )

        with pytest.raises(DataLoadException):
            service_factory(dataset).run_for(dataset.id)

        (run,) = run_store.find_recent_by_dataset(dataset.id)
        assert run.status == RunStatus.FAILED
        assert run.source_meta == (ColumnMeta("value", ColumnType.STRING),)
        assert run.target_meta == ()

    def test_final_update_failure_marks_run_failed(self, service_factory, run_store, monkeypatch):
        update = run_store.update
        calls = []

        def update_failing_once(run):
            calls.append(run.status)
            if len(calls) == 1:
                raise ConnectionError("results db went away")
            return update(run)

        monkeypatch.setattr(run_store, "update", update_failing_once)
        dataset = make_dataset(source_rows=make_rows([("1", "a")]))

        with pytest.raises(ConnectionError):
            service_factory(dataset).run_for(dataset.id)

        assert calls == [RunStatus.SUCCESSFUL, RunStatus.FAILED]
        (run,) = run_store.find_recent_by_dataset(dataset.id)
        assert run.status == RunStatus.FAILED
        assert run.failure_cause == "results db went away"
        assert run.summary is None

    def test_record_store_failure(self, service_factory, record_store, run_store, monkeypatch):
        def broken_save_all(records):
            raise OSError("disk full")

        monkeypatch.setattr(record_store, "save_all", broken_save_all)
        dataset = make_dataset(source_rows=make_rows([("1", "a")]))

        with pytest.raises(DataLoadException):
            service_factory(dataset).run_for(dataset.id)

        (run,) = run_store.find_recent_by_dataset(dataset.id)
        assert run.failure_cause.endswith("rootCause=[disk full]")


class TestRunMetrics:
    """Test Prometheus metrics recorded by runs"""

    def test_successful_run(self, service_factory, registry):
        dataset = make_dataset(
            source_rows=make_rows([("1", "a"), ("2", "b")]),
            target_rows=make_rows([("2", "b")]),
        )

        service_factory(dataset).run_for(dataset.id)

        labels = {"dataset_id": dataset.id}
        assert registry.get_sample_value("reconciliation_runs_total", {**labels, "status": "success"}) == 1.0
        assert registry.get_sample_value("reconciliation_rows_hashed_total", {**labels, "role": "source"}) == 2.0
        assert registry.get_sample_value("reconciliation_rows_hashed_total", {**labels, "role": "target"}) == 1.0
        assert registry.get_sample_value("reconciliation_match_status", {**labels, "status": "SourceOnly"}) == 1.0
        assert registry.get_sample_value("reconciliation_match_status", {**labels, "status": "BothMatched"}) == 1.0

    def test_failed_run(self, service_factory, registry):
        dataset = make_dataset(source_loader=FakeLoader(error=RuntimeError("nope")))

        with pytest.raises(DataLoadException):
            service_factory(dataset).run_for(dataset.id)

        assert registry.get_sample_value(
            "reconciliation_runs_total", {"dataset_id": dataset.id, "status": "failed"}
        ) == 1.0
