import asyncio
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from pipewatch.core.constants import RunStatus
from pipewatch.models.job import JobRecord
from pipewatch.models.page import Page
from pipewatch.models.pipeline import PipelineSummary
from pipewatch.models.run import RunDetail, RunRecord, Stage


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_pipeline(pid: str, name: Optional[str] = None, status: str = "", last_run_status: str = "") -> PipelineSummary:
    return PipelineSummary(id=pid, name=name or f"pipeline-{pid}", status=status, last_run_status=last_run_status)


def make_detail(status: RunStatus, stages: Optional[Dict[str, List[str]]] = None, run_id: str = "77") -> RunDetail:
    """RunDetail with ``stages`` given as {stage name: [job ids]} in order."""
    stages = stages if stages is not None else {"Build": ["1"]}
    return RunDetail(
        run=RunRecord(run_id=run_id, pipeline_id="1001", status=status, raw_status=status.value),
        stages=[
            Stage(name=name, index=str(i), jobs=[JobRecord(id=j, name=f"job-{j}", status="SUCCESS") for j in jobs])
            for i, (name, jobs) in enumerate(stages.items())
        ],
    )


def paged(items: List[Any], total_pages: Optional[int] = None):
    """A ``list_pipelines(page, per_page, status_filter)`` side effect serving ``items`` in slices."""

    def _fetch(page: int = 1, per_page: int = 30, status_filter: Any = ()) -> Page:
        start = (page - 1) * per_page
        return Page(items[start:start + per_page], page, per_page, total_pages)

    return _fetch


async def until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


# ---------------------------------------------------------------------------
# Presentation surface
# ---------------------------------------------------------------------------

class RecordingSurface:
    """Presentation surface that records every call in order."""

    def __init__(self) -> None:
        self.events: List[tuple] = []

    def on_view_changed(self, view):
        self.events.append(("view", view))

    def on_collection_page(self, page):
        self.events.append(("page", page))

    def on_collection_error(self, key, error):
        self.events.append(("collection_error", key, error))

    def on_transcript_reset(self, header):
        self.events.append(("reset", header))

    def on_transcript_append(self, entry):
        self.events.append(("append", entry))

    def on_status_changed(self, status, auto_refresh):
        self.events.append(("status", status, auto_refresh))

    def on_error(self, error):
        self.events.append(("error", error))

    def on_notice(self, message):
        self.events.append(("notice", message))

    def of(self, name: str) -> List[tuple]:
        return [e for e in self.events if e[0] == name]

    def appended(self) -> list:
        return [e[1] for e in self.of("append")]


@pytest.fixture
def surface():
    return RecordingSurface()


@pytest.fixture
def gateway():
    """Gateway double; every method is an AsyncMock tests can reprogram."""
    gw = MagicMock()
    gw.list_pipelines = AsyncMock(side_effect=paged([]))
    gw.list_pipelines_in_group = AsyncMock(side_effect=lambda group_id, page, per_page, statuses=(): Page([], page, per_page))
    gw.list_groups = AsyncMock(return_value=[])
    gw.list_runs = AsyncMock(side_effect=lambda pid, page, per_page: Page([], page, per_page))
    gw.get_run_detail = AsyncMock(return_value=make_detail(RunStatus.SUCCESS))
    gw.get_job_log = AsyncMock(return_value="log line\n")
    gw.get_deployment_log = AsyncMock()
    gw.get_latest_repositories = AsyncMock(return_value={})
    gw.trigger_run = AsyncMock(return_value="777")
    gw.stop_run = AsyncMock(return_value=None)
    return gw
