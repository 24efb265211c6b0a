"""
FastAPI application exposing datasets and reconciliation runs.

Handlers are plain functions: FastAPI runs them in its threadpool, so a
POST /runs blocks only its own worker while the pipeline runs.
"""

import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, status

from reconciliation.pipeline import DatasetNotFoundError, DatasetRecService
from reconciliation.recrun import RecordStore, RunStore
from utils.errors import extract_failure_cause

from .models import DatasetApiModel, RunApiModel, RunCreationParams

logger = logging.getLogger(__name__)

RECENT_RUNS_LIMIT = 10
SAMPLE_KEYS_LIMIT = 10


def create_datasets_router(service: DatasetRecService) -> APIRouter:
    router = APIRouter(prefix="/datasets", tags=["Datasets"])

    @router.get("", response_model=list[DatasetApiModel])
    def get_datasets():
        """Retrieve all pre-configured datasets, sorted by id"""
        return [
            DatasetApiModel.from_dataset(service.datasets[dataset_id])
            for dataset_id in sorted(service.datasets)
        ]

    return router


def create_runs_router(
    service: DatasetRecService,
    run_store: RunStore,
    record_store: RecordStore,
) -> APIRouter:
    router = APIRouter(prefix="/runs", tags=["Runs"])

    @router.post("", response_model=RunApiModel)
    def create_run(params: RunCreationParams):
        """Trigger a run for a dataset and wait for it to complete"""
        logger.info(f"Received request to create run for dataset [{params.dataset_id}]")
        try:
            run = service.run_for(params.dataset_id, {"trigger": "api"})
        except DatasetNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
        except Exception as e:
            logger.error(f"Run for dataset [{params.dataset_id}] failed: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=extract_failure_cause(e),
            ) from e

        return RunApiModel.from_run(run)

    @router.get("/{run_id}", response_model=RunApiModel)
    def get_run(run_id: int):
        """Retrieve a run with example keys for each non-matching status"""
        logger.info(f"Finding run [{run_id}]")
        run = run_store.find_by_id(run_id)
        if run is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Run with id [{run_id}] not found!",
            )

        samples = record_store.sample_keys_by_status(run_id, limit=SAMPLE_KEYS_LIMIT)
        return RunApiModel.from_run(run, samples)

    @router.get("", response_model=list[RunApiModel])
    def get_runs(dataset_id: str = Query(..., alias="datasetId", min_length=1)):
        """Retrieve the most recent runs of a dataset"""
        logger.info(f"Finding runs for dataset [{dataset_id}]")
        runs = run_store.find_recent_by_dataset(dataset_id, limit=RECENT_RUNS_LIMIT)
        return [RunApiModel.from_run(run) for run in runs]

    return router


def create_app(
    service: DatasetRecService,
    run_store: RunStore,
    record_store: RecordStore,
    title: Optional[str] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        service: Pipeline service; its datasets are the ones listed and runnable
        run_store: Store the run endpoints read from
        record_store: Store the sampled keys are read from
        title: OpenAPI title
    """
    app = FastAPI(title=title or "Dataset Reconciliation")
    app.include_router(create_datasets_router(service))
    app.include_router(create_runs_router(service, run_store, record_store))

    @app.get("/health", tags=["Health"])
    def health():
        return {"status": "ok", "datasets": len(service.datasets)}

    return app
