"""
Command-line interface for dataset reconciliation.

Available commands:
- run: Execute one-time reconciliation
- datasets: List configured datasets
- schedule: Run scheduled datasets on their cron expressions
- serve: Serve the HTTP API
- init-db: Create the results tables
"""

import logging
import sys

from reconciliation.dataset import ConfigurationError, load_configuration
from utils.logging import configure_from_env
from utils.tracing import initialize_tracing, shutdown_tracing

from .commands import cmd_datasets, cmd_init_db, cmd_run, cmd_schedule, cmd_serve
from .context import build_service
from .parser import create_parser

logger = logging.getLogger(__name__)

COMMANDS = {
    'run': cmd_run,
    'datasets': cmd_datasets,
    'schedule': cmd_schedule,
    'serve': cmd_serve,
    'init-db': cmd_init_db,
}

TRACED_COMMANDS = ('run', 'schedule', 'serve')


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the reconcile CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_from_env(args.log_level)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_configuration(args.config)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    if args.command in TRACED_COMMANDS:
        initialize_tracing()

    try:
        command(args, config)
    finally:
        config.close()
        if args.command in TRACED_COMMANDS:
            shutdown_tracing()


__all__ = [
    'main',
    'build_service',
    'cmd_run',
    'cmd_datasets',
    'cmd_schedule',
    'cmd_serve',
    'cmd_init_db',
    'create_parser',
]


if __name__ == '__main__':
    main()
