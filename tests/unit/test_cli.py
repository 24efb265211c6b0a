"""
Unit tests for CLI module

Tests for argument parsing, command execution and exit codes. Datasets
are bound to fake loaders and results go to the in-memory stores.
"""

import argparse
import json
from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeLoader, make_dataset, make_rows
from reconciliation.cli import (
    COMMANDS,
    build_service,
    cmd_datasets,
    cmd_init_db,
    cmd_run,
    cmd_schedule,
    cmd_serve,
    create_parser,
    main,
)
from reconciliation.dataset import ConfigurationError, ReconciliationConfiguration, StoreSettings, StoreType
from reconciliation.recrun import InMemoryRunStore


def make_config(*datasets, **kwargs):
    return ReconciliationConfiguration(datasets={d.id: d for d in datasets}, **kwargs)


def run_args(dataset, output_format="console", output=None):
    return argparse.Namespace(dataset=dataset, format=output_format, output=output)


@pytest.fixture
def matching():
    rows = make_rows([("1", "a"), ("2", "b")])
    return make_dataset("matching", source_rows=rows, target_rows=rows)


@pytest.fixture
def drifting():
    return make_dataset(
        "drifting",
        source_rows=make_rows([("1", "a")]),
        target_rows=make_rows([("1", "b")]),
        cron_expression="30 1 * * *",
    )


class TestParser:
    """Tests for create_parser"""

    def test_run_command(self):
        args = create_parser().parse_args(["--config", "rec.yml", "run", "--dataset", "a,b", "--format", "json"])

        assert args.command == "run"
        assert args.config == "rec.yml"
        assert args.dataset == "a,b"
        assert args.format == "json"
        assert args.output is None

    def test_run_requires_dataset(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["run"])

    def test_serve_defaults(self):
        args = create_parser().parse_args(["serve"])

        assert (args.host, args.port, args.metrics_port) == ("0.0.0.0", 8080, 9091)

    def test_invalid_format(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["run", "--dataset", "a", "--format", "xml"])


class TestCmdRun:
    """Tests for cmd_run"""

    def test_all_matched_exits_zero(self, matching, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cmd_run(run_args("matching"), make_config(matching))

        assert exc_info.value.code == 0
        output = capsys.readouterr().out
        assert "Status: PASS" in output
        assert "Dataset: matching" in output

    def test_mismatch_exits_one(self, matching, drifting, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cmd_run(run_args("matching, drifting", "json"), make_config(matching, drifting))

        assert exc_info.value.code == 1
        report = json.loads(capsys.readouterr().out)
        assert report["status"] == "FAIL"
        assert [run["datasetId"] for run in report["runs"]] == ["matching", "drifting"]
        assert report["runs"][1]["summary"]["bothMismatchedSampleKeys"] == ["1"]

    def test_failed_run_is_reported(self, matching, capsys):
        broken = make_dataset("broken", source_loader=FakeLoader(error=RuntimeError("no route to host")))

        with pytest.raises(SystemExit) as exc_info:
            cmd_run(run_args("broken,matching", "json"), make_config(broken, matching))

        assert exc_info.value.code == 1
        report = json.loads(capsys.readouterr().out)
        assert report["status"] == "ERROR"
        assert report["runs"][0]["status"] == "Failed"
        assert "no route to host" in report["runs"][0]["failureCause"]

    def test_unknown_dataset_exits_two(self, matching):
        with pytest.raises(SystemExit) as exc_info:
            cmd_run(run_args("matching,ghost"), make_config(matching))

        assert exc_info.value.code == 2

    def test_blank_dataset_list_exits_two(self, matching):
        with pytest.raises(SystemExit) as exc_info:
            cmd_run(run_args(" , "), make_config(matching))

        assert exc_info.value.code == 2

    def test_csv_requires_output(self, matching):
        with pytest.raises(SystemExit) as exc_info:
            cmd_run(run_args("matching", "csv"), make_config(matching))

        assert exc_info.value.code == 2

    def test_csv_output(self, matching, tmp_path):
        output = tmp_path / "report.csv"

        with pytest.raises(SystemExit):
            cmd_run(run_args("matching", "csv", str(output)), make_config(matching))

        assert output.read_text().splitlines()[1].startswith("matching,1,Successful,2,2")

    def test_json_output_file(self, matching, tmp_path):
        output = tmp_path / "reports" / "report.json"

        with pytest.raises(SystemExit):
            cmd_run(run_args("matching", "json", str(output)), make_config(matching))

        assert json.loads(output.read_text())["status"] == "PASS"


class TestCmdDatasets:
    def test_lists_sorted_datasets(self, matching, drifting, capsys):
        cmd_datasets(argparse.Namespace(), make_config(matching, drifting))

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "drifting: (source-db -> target-db) [TypeLenient]"
        assert lines[1].startswith("  schedule: [30 1 * * *], next run [")
        assert lines[2] == "matching: (source-db -> target-db) [TypeLenient]"

    def test_no_datasets(self, capsys):
        cmd_datasets(argparse.Namespace(), make_config())

        assert "No datasets configured" in capsys.readouterr().out


class TestCmdSchedule:
    """Tests for cmd_schedule"""

    @patch("reconciliation.cli.commands.trigger_on_start")
    @patch("reconciliation.cli.commands.ReconciliationScheduler")
    def test_registers_scheduled_datasets(self, mock_scheduler_class, mock_trigger, matching, drifting):
        scheduler = mock_scheduler_class.return_value
        config = make_config(matching, drifting, trigger_on_start=["matching"])

        cmd_schedule(argparse.Namespace(), config)

        mock_scheduler_class.assert_called_once_with(blocking=True)
        scheduler.add_dataset_job.assert_called_once()
        assert scheduler.add_dataset_job.call_args[0][0].id == "drifting"
        assert mock_trigger.call_args[0][1] == ["matching"]
        scheduler.start.assert_called_once()

    @patch("reconciliation.cli.commands.ReconciliationScheduler")
    def test_nothing_scheduled(self, mock_scheduler_class, matching):
        cmd_schedule(argparse.Namespace(), make_config(matching))

        mock_scheduler_class.return_value.start.assert_not_called()


class TestCmdServe:
    """Tests for cmd_serve"""

    @patch("reconciliation.cli.commands.uvicorn")
    @patch("reconciliation.cli.commands.ReconciliationScheduler")
    @patch("reconciliation.cli.commands.initialize_metrics")
    def test_serves_app(self, mock_metrics, mock_scheduler_class, mock_uvicorn, drifting):
        mock_metrics.return_value = {"reconciliation": MagicMock()}
        args = argparse.Namespace(host="127.0.0.1", port=8081, metrics_port=9100)

        cmd_serve(args, make_config(drifting))

        mock_metrics.assert_called_once_with(port=9100)
        app = mock_uvicorn.run.call_args[0][0]
        assert {route.path for route in app.routes} >= {"/datasets", "/runs", "/runs/{run_id}", "/health"}
        assert mock_uvicorn.run.call_args.kwargs["port"] == 8081
        mock_scheduler_class.return_value.start.assert_called_once()
        mock_scheduler_class.return_value.stop.assert_called_once()

    @patch("reconciliation.cli.commands.uvicorn")
    @patch("reconciliation.cli.commands.ReconciliationScheduler")
    @patch("reconciliation.cli.commands.initialize_metrics")
    def test_scheduler_stopped_when_server_fails(self, mock_metrics, mock_scheduler_class, mock_uvicorn, matching):
        mock_uvicorn.run.side_effect = OSError("address already in use")
        args = argparse.Namespace(host="127.0.0.1", port=8081, metrics_port=0)

        with pytest.raises(OSError):
            cmd_serve(args, make_config(matching))

        mock_metrics.assert_not_called()
        mock_scheduler_class.return_value.stop.assert_called_once()


class TestCmdInitDb:
    def test_requires_postgres_store(self, matching):
        with pytest.raises(SystemExit) as exc_info:
            cmd_init_db(argparse.Namespace(), make_config(matching))

        assert exc_info.value.code == 2

    @patch("reconciliation.cli.commands.create_schema")
    def test_creates_schema(self, mock_create_schema, matching):
        loader = MagicMock()
        config = make_config(
            matching,
            loaders={"results": loader},
            store=StoreSettings(StoreType.POSTGRESQL, "results"),
        )

        cmd_init_db(argparse.Namespace(), config)

        mock_create_schema.assert_called_once_with(loader.pool)


class TestBuildService:
    def test_uses_configured_stores(self, matching):
        service, run_store, record_store = build_service(make_config(matching))

        assert isinstance(run_store, InMemoryRunStore)
        assert service.record_store is record_store
        assert set(service.datasets) == {"matching"}


class TestMain:
    """Tests for main entry point"""

    @patch("reconciliation.cli.configure_from_env")
    def test_no_command_prints_help(self, mock_configure, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 1
        assert "usage: reconcile" in capsys.readouterr().out

    @patch("reconciliation.cli.configure_from_env")
    @patch("reconciliation.cli.load_configuration")
    def test_invalid_configuration_exits_two(self, mock_load, mock_configure):
        mock_load.side_effect = ConfigurationError("Cannot read configuration file [x.yml]")

        with pytest.raises(SystemExit) as exc_info:
            main(["--config", "x.yml", "datasets"])

        assert exc_info.value.code == 2

    @patch("reconciliation.cli.shutdown_tracing")
    @patch("reconciliation.cli.initialize_tracing")
    @patch("reconciliation.cli.configure_from_env")
    @patch("reconciliation.cli.load_configuration")
    def test_dispatches_and_closes(self, mock_load, mock_configure, mock_init, mock_shutdown):
        command = MagicMock()

        with patch.dict(COMMANDS, {"datasets": command}):
            main(["--log-level", "DEBUG", "--config", "rec.yml", "datasets"])

        mock_configure.assert_called_once_with("DEBUG")
        mock_load.assert_called_once_with("rec.yml")
        command.assert_called_once()
        mock_load.return_value.close.assert_called_once()
        mock_init.assert_not_called()

    @patch("reconciliation.cli.shutdown_tracing")
    @patch("reconciliation.cli.initialize_tracing")
    @patch("reconciliation.cli.configure_from_env")
    @patch("reconciliation.cli.load_configuration")
    def test_traced_command_shuts_down_tracing(self, mock_load, mock_configure, mock_init, mock_shutdown):
        command = MagicMock(side_effect=SystemExit(1))

        with patch.dict(COMMANDS, {"run": command}):
            with pytest.raises(SystemExit):
                main(["run", "--dataset", "a"])

        mock_init.assert_called_once()
        mock_shutdown.assert_called_once()
        mock_load.return_value.close.assert_called_once()
