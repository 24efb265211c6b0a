"""
Response and request bodies of the reconciliation HTTP API.

Field names are camelCase on the wire; the `from_*` constructors build
them from the domain objects.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reconciliation.dataset import DatasetDefinition, Schedule
from reconciliation.hashing import ColumnMeta
from reconciliation.recrun import ReconciliationRun, RecordMatchStatus


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RunCreationParams(ApiModel):
    """Request body of POST /runs"""

    dataset_id: str = Field(..., alias="datasetId", description="Id of the dataset to run")

    @field_validator("dataset_id")
    @classmethod
    def validate_dataset_id(cls, v):
        if not v or not v.strip():
            raise ValueError("datasetId must not be blank")
        return v.strip()


class ColumnMetaApiModel(ApiModel):
    name: str = Field(..., description="Column name as returned by the dataset query")
    type: str = Field(
        ...,
        description="Declared column type used for hashing; differing types explain mismatched hashes",
    )

    @classmethod
    def from_column(cls, column: ColumnMeta) -> "ColumnMetaApiModel":
        return cls(name=column.name, type=column.type_name)


class IndividualDbMeta(ApiModel):
    cols: list[ColumnMetaApiModel] = Field(default_factory=list)

    @classmethod
    def from_columns(cls, columns) -> "IndividualDbMeta":
        return cls(cols=[ColumnMetaApiModel.from_column(c) for c in columns])


class IndividualDbRunSummary(ApiModel):
    """Results relating only to the source or only to the target"""

    meta: IndividualDbMeta
    total_count: int = Field(..., alias="totalCount")
    only_here_count: int = Field(..., alias="onlyHereCount")
    only_here_sample_keys: Optional[list[str]] = Field(None, alias="onlyHereSampleKeys")


class RunSummary(ApiModel):
    total_count: int = Field(..., alias="totalCount")
    both_matched_count: int = Field(..., alias="bothMatchedCount")
    both_mismatched_count: int = Field(..., alias="bothMismatchedCount")
    both_mismatched_sample_keys: Optional[list[str]] = Field(None, alias="bothMismatchedSampleKeys")
    source: IndividualDbRunSummary
    target: IndividualDbRunSummary


class RunApiModel(ApiModel):
    """A reconciliation run as returned by the API"""

    id: int
    dataset_id: str = Field(..., alias="datasetId")
    created_time: Optional[datetime] = Field(None, alias="createdTime")
    completed_time: Optional[datetime] = Field(None, alias="completedTime")
    completed_duration_seconds: Optional[float] = Field(None, alias="completedDurationSeconds")
    status: str
    failure_cause: Optional[str] = Field(None, alias="failureCause")
    metadata: dict[str, Any] = Field(default_factory=dict)
    summary: Optional[RunSummary] = None

    @classmethod
    def from_run(
        cls,
        run: ReconciliationRun,
        samples: Optional[dict[RecordMatchStatus, list[str]]] = None,
    ) -> "RunApiModel":
        """
        Build the API view of a run.

        Args:
            run: Run to describe
            samples: Example migration keys per non-matching status; sample
                fields are left out when not given
        """
        summary = None
        if run.summary is not None:
            status = run.summary
            summary = RunSummary(
                total_count=status.total,
                both_matched_count=status.both_matched,
                both_mismatched_count=status.both_mismatched,
                source=IndividualDbRunSummary(
                    meta=IndividualDbMeta.from_columns(run.source_meta),
                    total_count=status.source_total,
                    only_here_count=status.source_only,
                ),
                target=IndividualDbRunSummary(
                    meta=IndividualDbMeta.from_columns(run.target_meta),
                    total_count=status.target_total,
                    only_here_count=status.target_only,
                ),
            )
            if samples is not None:
                summary.both_mismatched_sample_keys = samples.get(RecordMatchStatus.BOTH_MISMATCHED, [])
                summary.source.only_here_sample_keys = samples.get(RecordMatchStatus.SOURCE_ONLY, [])
                summary.target.only_here_sample_keys = samples.get(RecordMatchStatus.TARGET_ONLY, [])

        return cls(
            id=run.id,
            dataset_id=run.dataset_id,
            created_time=run.created_time,
            completed_time=run.completed_time,
            completed_duration_seconds=run.completed_duration_seconds,
            status=run.status.value,
            failure_cause=run.failure_cause,
            metadata=dict(run.metadata),
            summary=summary,
        )


class DatasourceApiModel(ApiModel):
    ref: str = Field(..., description="Logical name of the datasource")


class ScheduleApiModel(ApiModel):
    cron_expression: str = Field(..., alias="cronExpression")
    next_trigger_time: Optional[datetime] = Field(None, alias="nextTriggerTime")

    @classmethod
    def from_schedule(cls, schedule: Schedule) -> "ScheduleApiModel":
        return cls(
            cron_expression=schedule.cron_expression,
            next_trigger_time=schedule.next_trigger_time(),
        )


class DatasetApiModel(ApiModel):
    """A configured dataset available for triggering"""

    id: str
    source: DatasourceApiModel
    target: DatasourceApiModel
    hashing_strategy: str = Field(..., alias="hashingStrategy")
    schedule: Optional[ScheduleApiModel] = None

    @classmethod
    def from_dataset(cls, dataset: DatasetDefinition) -> "DatasetApiModel":
        return cls(
            id=dataset.id,
            source=DatasourceApiModel(ref=dataset.source.datasource_ref),
            target=DatasourceApiModel(ref=dataset.target.datasource_ref),
            hashing_strategy=dataset.hashing_strategy.value,
            schedule=None if dataset.schedule.empty else ScheduleApiModel.from_schedule(dataset.schedule),
        )
