"""
Command-line argument parser configuration.

This module sets up the argument parser for the reconcile CLI tool,
defining all commands and their options.
"""

import argparse


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="reconcile",
        description="Dataset reconciliation between a source and a target datasource",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List the configured datasets and their schedules
  reconcile --config reconciliation.yml datasets

  # Run one dataset and print a console report
  reconcile --config reconciliation.yml run --dataset customers

  # Run several datasets and save a JSON report
  reconcile run --dataset customers,orders --format json --output report.json

  # Run the cron schedules of all scheduled datasets (blocking)
  reconcile schedule

  # Serve the HTTP API with scheduling and Prometheus metrics
  reconcile serve --port 8080 --metrics-port 9091

  # Create the results tables in the configured store database
  reconcile init-db
        """
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Logging level (default: $LOG_LEVEL or INFO)'
    )
    parser.add_argument(
        '--config',
        help='Configuration file (default: $RECONCILIATION_CONFIG)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # ========== Run command ==========
    run_parser = subparsers.add_parser('run', help='Run reconciliation for datasets once')
    run_parser.add_argument(
        '--dataset',
        required=True,
        help='Comma-separated list of dataset ids to reconcile'
    )
    run_parser.add_argument(
        '--format',
        choices=['console', 'json', 'csv'],
        default='console',
        help='Output format (default: console)'
    )
    run_parser.add_argument(
        '--output',
        help='Output file path for report (required for csv)'
    )

    # ========== Datasets command ==========
    subparsers.add_parser('datasets', help='List configured datasets')

    # ========== Schedule command ==========
    subparsers.add_parser(
        'schedule',
        help='Run scheduled datasets on their cron expressions (blocking)'
    )

    # ========== Serve command ==========
    serve_parser = subparsers.add_parser('serve', help='Serve the HTTP API')
    serve_parser.add_argument(
        '--host',
        default='0.0.0.0',
        help='Bind address (default: 0.0.0.0)'
    )
    serve_parser.add_argument(
        '--port',
        type=int,
        default=8080,
        help='HTTP port (default: 8080)'
    )
    serve_parser.add_argument(
        '--metrics-port',
        type=int,
        default=9091,
        help='Prometheus metrics port, 0 to disable (default: 9091)'
    )

    # ========== Init-db command ==========
    subparsers.add_parser('init-db', help='Create the results tables in the store database')

    return parser
