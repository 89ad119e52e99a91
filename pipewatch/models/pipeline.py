"""
Pipeline Models
Immutable snapshot rows for pipelines and pipeline groups.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class PipelineSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    status: str = ""
    last_run_status: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    creator: str = ""


class PipelineGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
