"""
CLI command implementations.

- run: One-time reconciliation of one or more datasets
- datasets: List configured datasets
- schedule: Blocking cron scheduler for scheduled datasets
- serve: HTTP API with background scheduler and metrics endpoint
- init-db: Create the results tables
"""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from reconciliation.api import create_app
from reconciliation.dataset import ReconciliationConfiguration, StoreType
from reconciliation.pipeline import DatasetNotFoundError
from reconciliation.recrun import RunStatus
from reconciliation.recrun.postgres import create_schema
from reconciliation.report import (
    export_report_csv,
    export_report_json,
    format_report_console,
    format_report_json,
    generate_report,
)
from reconciliation.scheduler import ReconciliationScheduler, register_datasets, trigger_on_start
from utils.errors import extract_failure_cause
from utils.metrics import initialize_metrics

from .context import build_service

logger = logging.getLogger(__name__)


def cmd_run(args: argparse.Namespace, config: ReconciliationConfiguration) -> None:
    """
    Run a one-time reconciliation

    Exits 0 when every dataset matched, 1 on mismatches or failed runs and
    2 for unknown datasets.

    Args:
        args: Parsed command-line arguments
        config: Loaded configuration
    """
    dataset_ids = [d.strip() for d in args.dataset.split(',') if d.strip()]
    unknown = [d for d in dataset_ids if config.get(d) is None]
    if unknown or not dataset_ids:
        logger.error(f"Unknown dataset(s): {', '.join(unknown) or args.dataset}")
        sys.exit(2)

    if args.format == "csv" and not args.output:
        logger.error("Output file required for CSV format")
        sys.exit(2)

    service, run_store, record_store = build_service(config)
    logger.info(f"Reconciling {len(dataset_ids)} dataset(s): {', '.join(dataset_ids)}")

    runs = []
    for dataset_id in dataset_ids:
        try:
            runs.append(service.run_for(dataset_id, {"trigger": "cli"}))
        except DatasetNotFoundError as e:
            logger.error(str(e))
        except Exception as e:
            logger.error(f"Reconciliation of dataset [{dataset_id}] failed: {extract_failure_cause(e)}")
            # The pipeline persisted the run as Failed before raising
            runs.extend(run_store.find_recent_by_dataset(dataset_id, limit=1))

    samples = {
        run.id: record_store.sample_keys_by_status(run.id)
        for run in runs
        if run.status == RunStatus.SUCCESSFUL
    }
    report = generate_report(runs, samples)

    if args.format == "csv":
        export_report_csv(report, args.output)
        logger.info(f"Report saved to {args.output}")
    elif args.format == "json":
        if args.output:
            Path(args.output).parent.mkdir(parents=True, exist_ok=True)
            export_report_json(report, args.output)
            logger.info(f"Report saved to {args.output}")
        else:
            print(format_report_json(report))
    else:
        print(format_report_console(report))

    if report["status"] == "PASS":
        logger.info("Reconciliation completed successfully")
        sys.exit(0)

    logger.warning(f"Reconciliation finished with status {report['status']}")
    sys.exit(1)


def cmd_datasets(args: argparse.Namespace, config: ReconciliationConfiguration) -> None:
    """Print the configured datasets sorted by id"""
    datasets = config.sorted_datasets()
    if not datasets:
        print("No datasets configured")
        return

    for dataset in datasets:
        print(f"{dataset.id}: {dataset.datasource_descriptor} [{dataset.hashing_strategy.value}]")
        if not dataset.schedule.empty:
            print(f"  schedule: {dataset.schedule.summary}")


def cmd_schedule(args: argparse.Namespace, config: ReconciliationConfiguration) -> None:
    """
    Run the cron schedules of all scheduled datasets (blocking)

    Args:
        args: Parsed command-line arguments
        config: Loaded configuration
    """
    logger.info("Setting up reconciliation scheduler")
    service, _, _ = build_service(config)

    scheduler = ReconciliationScheduler(blocking=True)
    registered = register_datasets(scheduler, service, config.scheduled_datasets())
    if registered == 0 and not config.trigger_on_start:
        logger.warning("No datasets have a schedule; nothing to do")
        return

    trigger_on_start(service, config.trigger_on_start, background=True)

    logger.info("Starting scheduler (press Ctrl+C to stop)")
    scheduler.start()


def cmd_serve(args: argparse.Namespace, config: ReconciliationConfiguration) -> None:
    """
    Serve the HTTP API

    Scheduled datasets run on a background scheduler in the same process;
    startup datasets run once in a background thread.

    Args:
        args: Parsed command-line arguments
        config: Loaded configuration
    """
    metrics = None
    if args.metrics_port:
        metrics = initialize_metrics(port=args.metrics_port)["reconciliation"]

    service, run_store, record_store = build_service(config, metrics=metrics)

    scheduler = ReconciliationScheduler(blocking=False)
    register_datasets(scheduler, service, config.scheduled_datasets())
    scheduler.start()

    trigger_on_start(service, config.trigger_on_start, background=True)

    app = create_app(service, run_store, record_store)
    logger.info(f"Serving reconciliation API on {args.host}:{args.port}")
    try:
        uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    finally:
        scheduler.stop()


def cmd_init_db(args: argparse.Namespace, config: ReconciliationConfiguration) -> None:
    """Create the results tables in the configured PostgreSQL store"""
    if config.store.type != StoreType.POSTGRESQL:
        logger.error("init-db requires a store of type postgresql")
        sys.exit(2)

    pool = config.loaders[config.store.datasource_ref].pool
    create_schema(pool)
    logger.info(f"Results schema created in datasource [{config.store.datasource_ref}]")
