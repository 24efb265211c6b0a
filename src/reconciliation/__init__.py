"""
Dataset reconciliation between a source and a target datasource

A dataset pairs a source query with a target query. Every row is hashed
by migration key and the per-key hashes are compared to tell which rows
match, differ, or exist on only one side.

Components:
- hashing: Row hashing strategies
- dataset: Dataset definitions, datasource loaders and configuration
- recrun: Runs, records and their stores
- pipeline: Streaming load, hash and persist of a dataset run
- scheduler: Cron scheduling of dataset runs
- api: HTTP API
- report: Report generation for finished runs
- cli: The `reconcile` command

Usage:
    from reconciliation.dataset import load_configuration
    from reconciliation.cli.context import build_service

    config = load_configuration("reconciliation.yml")
    service, run_store, record_store = build_service(config)
    run = service.run_for("customers")
"""

__version__ = "1.0.0"
__all__ = ["hashing", "dataset", "recrun", "pipeline", "scheduler", "api", "report", "cli"]
