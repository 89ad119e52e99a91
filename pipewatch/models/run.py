"""
Run Models
Pydantic models for a pipeline run and its ordered stages.
"""
from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict

from pipewatch.core.constants import TERMINAL_STATUSES, RunStatus
from pipewatch.models.job import JobRecord


class RunRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline_id: str
    status: RunStatus = RunStatus.UNKNOWN
    raw_status: str = ""
    trigger_mode: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def display_status(self) -> str:
        return self.raw_status or self.status.value


class Stage(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    index: str = ""
    jobs: List[JobRecord] = []


class RunDetail(BaseModel):
    """A run plus its stages in server order."""

    model_config = ConfigDict(frozen=True)

    run: RunRecord
    stages: List[Stage] = []

    @property
    def jobs(self) -> List[JobRecord]:
        return [job for stage in self.stages for job in stage.jobs]


def advance_status(previous: RunStatus, observed: RunStatus) -> RunStatus:
    """
    Fold a freshly observed status into the last known one.

    Run status only moves forward: UNKNOWN may become anything, an active
    status may become anything, but once terminal a run stays terminal. A
    terminal-to-active flip from the server is treated as a stale read.
    """
    if previous in TERMINAL_STATUSES and observed not in TERMINAL_STATUSES:
        return previous
    if observed == RunStatus.UNKNOWN:
        return previous
    return observed


class AutoRefreshState(BaseModel):
    """
    What the status bar shows about polling.

    ``remaining`` is set once a terminal status has been observed and counts
    the hysteresis polls still to come.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool
    remaining: int | None = None
