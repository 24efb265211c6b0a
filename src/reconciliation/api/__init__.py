"""
HTTP API for listing datasets and triggering and inspecting runs
"""

from .app import create_app
from .models import DatasetApiModel, RunApiModel, RunCreationParams

__all__ = ["create_app", "DatasetApiModel", "RunApiModel", "RunCreationParams"]
