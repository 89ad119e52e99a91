"""
Interfaces
==========
The two seams the synchronization core talks through.

    RunGateway           : what the Live Run Monitor and Navigation
                           Coordinator need from the remote service
                           (implemented by PipelineGateway)
    PresentationSurface  : what they publish to (implemented by the
                           Textual app; tests use a recorder)

The surface only receives plain data. It never starts fetches itself; user
commands go to the NavigationCoordinator.
"""
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

from pipewatch.core.constants import RunStatus
from pipewatch.core.errors import PipewatchError
from pipewatch.models.job import DeployMachine, DeployOrder, MachineLog
from pipewatch.models.page import Page
from pipewatch.models.pipeline import PipelineGroup, PipelineSummary
from pipewatch.models.run import AutoRefreshState, RunDetail, RunRecord
from pipewatch.models.transcript import TranscriptEntry


@runtime_checkable
class RunGateway(Protocol):
    async def list_pipelines(
        self, page: int = 1, per_page: int = 30, status_filter: Sequence[str] = ()
    ) -> Page[PipelineSummary]: ...

    async def list_pipelines_in_group(
        self, group_id: int, page: int = 1, per_page: int = 30, status_filter: Sequence[str] = ()
    ) -> Page[PipelineSummary]: ...

    async def list_groups(self, per_page: int = 30) -> List[PipelineGroup]: ...

    async def list_runs(self, pipeline_id: str, page: int = 1, per_page: int = 30) -> Page[RunRecord]: ...

    async def get_run_detail(self, pipeline_id: str, run_id: str) -> RunDetail: ...

    async def get_latest_repositories(self, pipeline_id: str) -> Dict[str, str]: ...

    async def get_job_log(self, pipeline_id: str, run_id: str, job_id: str) -> str: ...

    async def get_deployment_log(
        self, pipeline_id: str, deploy_order_id: str
    ) -> Tuple[DeployOrder, List[Tuple[DeployMachine, Union[MachineLog, Exception]]]]: ...

    async def trigger_run(self, pipeline_id: str, params: Optional[Dict[str, Any]] = None) -> str: ...

    async def stop_run(self, pipeline_id: str, run_id: str) -> None: ...


class PresentationSurface(Protocol):
    def on_view_changed(self, view: Any) -> None: ...

    def on_collection_page(self, page: Any) -> None: ...

    def on_collection_error(self, key: Any, error: PipewatchError) -> None: ...

    def on_transcript_reset(self, header: str) -> None: ...

    def on_transcript_append(self, entry: TranscriptEntry) -> None: ...

    def on_status_changed(self, status: RunStatus, auto_refresh: AutoRefreshState) -> None: ...

    def on_error(self, error: PipewatchError) -> None: ...

    def on_notice(self, message: str) -> None: ...
