"""
Reconciliation scheduler module

Cron scheduling of dataset runs using APScheduler.
"""

from .jobs import register_datasets, scheduled_trigger, trigger_on_start
from .scheduler import ReconciliationScheduler

__all__ = [
    "ReconciliationScheduler",
    "register_datasets",
    "scheduled_trigger",
    "trigger_on_start",
]
