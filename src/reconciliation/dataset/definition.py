"""
Dataset and data-load definitions resolved from configuration.

Definitions are immutable once configuration has loaded; each side of a
dataset is bound to the loader of its datasource and a resolved query.
"""

from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from apscheduler.triggers.cron import CronTrigger

from reconciliation.hashing import HashingStrategy, Row

if TYPE_CHECKING:
    from collections.abc import Iterator

    from .loader import DatasourceLoader


class ConfigurationError(Exception):
    """Invalid or unresolvable reconciliation configuration."""


class DataLoadRole(str, Enum):
    SOURCE = "Source"
    TARGET = "Target"


@dataclass(frozen=True)
class Defaults:
    """
    Global defaults applied to every dataset.

    Attributes:
        batch_size: Rows hashed and persisted per batch
        batch_concurrency: Batches processed concurrently per load phase
        hashing_strategy: Strategy for datasets without an override
        query_file_base_dir: Directory searched for <dataset>-<role>.sql files
    """

    batch_size: int = 1000
    batch_concurrency: int = 5
    hashing_strategy: HashingStrategy = HashingStrategy.TYPE_LENIENT
    query_file_base_dir: Path = Path("queries")

    def __post_init__(self):
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")
        if self.batch_concurrency < 1:
            raise ConfigurationError(
                f"batch_concurrency must be positive, got {self.batch_concurrency}"
            )


@dataclass(frozen=True)
class Schedule:
    """Optional cron schedule of a dataset (minute hour day month day_of_week)."""

    cron_expression: str | None = None

    def __post_init__(self):
        if self.cron_expression is not None:
            self.trigger()

    @property
    def empty(self) -> bool:
        return self.cron_expression is None

    def trigger(self) -> CronTrigger:
        """
        Build the APScheduler trigger for this schedule.

        Raises:
            ConfigurationError: If the expression is not a valid 5-part cron expression
        """
        parts = (self.cron_expression or "").split()
        if len(parts) != 5:
            raise ConfigurationError(
                f"Cron expression [{self.cron_expression}] must have 5 parts: "
                "minute hour day month day_of_week"
            )

        minute, hour, day, month, day_of_week = parts
        try:
            return CronTrigger(
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=day_of_week,
            )
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid cron expression [{self.cron_expression}]: {e}"
            ) from e

    def next_trigger_time(self, now: datetime | None = None) -> datetime | None:
        if self.empty:
            return None
        trigger = self.trigger()
        return trigger.get_next_fire_time(None, now or datetime.now(trigger.timezone))

    @property
    def summary(self) -> str:
        if self.empty:
            return ""
        return f"[{self.cron_expression}], next run [{self.next_trigger_time()}]"


def resolve_query_statement(
    dataset_id: str,
    role: DataLoadRole,
    query: str | None,
    query_file: str | Path | None,
    query_file_base_dir: Path,
) -> str:
    """
    Resolve the query text for one side of a dataset.

    A literal query wins; otherwise the query file is read, defaulting to
    `<query_file_base_dir>/<dataset_id>-<role>.sql`.

    Raises:
        ConfigurationError: If no query can be read
    """
    if query:
        return query

    path = Path(query_file) if query_file else (
        query_file_base_dir / f"{dataset_id}-{role.value.lower()}.sql"
    )
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot load query: {e}") from e


@dataclass(frozen=True)
class DataLoadDefinition:
    """One side of a dataset: where its rows come from and how to query them."""

    dataset_id: str
    role: DataLoadRole
    datasource_ref: str
    query_statement: str
    loader: "DatasourceLoader" = field(compare=False, repr=False)

    @property
    def datasource_descriptor(self) -> str:
        return f"{self.role.value}(ref={self.datasource_ref})"

    def run_query(self) -> AbstractContextManager["Iterator[Row]"]:
        """Stream the rows of this side; the connection is released on exit."""
        return self.loader.stream(self.query_statement)


@dataclass(frozen=True)
class DatasetDefinition:
    """A reconciliation unit: a source and target side compared by migration key."""

    id: str
    source: DataLoadDefinition
    target: DataLoadDefinition
    hashing_strategy: HashingStrategy = HashingStrategy.TYPE_LENIENT
    schedule: Schedule = field(default_factory=Schedule)

    @property
    def datasource_descriptor(self) -> str:
        return f"({self.source.datasource_ref} -> {self.target.datasource_ref})"

    def __str__(self) -> str:
        return self.id
