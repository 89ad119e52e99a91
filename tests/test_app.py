import asyncio
from unittest.mock import AsyncMock

from textual.widgets import DataTable, Log

from pipewatch.core.config import ConsoleSettings
from pipewatch.core.constants import RunStatus
from pipewatch.state.view_state import LogView, RunHistory
from pipewatch.ui.app import PipewatchApp
from tests.conftest import make_detail, make_pipeline, paged, until


def _make_app(gateway):
    gateway.close = AsyncMock()
    settings = ConsoleSettings(token="t", organization_id="o", poll_interval_ms=60_000, inter_job_pause_ms=0)
    return PipewatchApp(settings, gateway=gateway)


def test_pipelines_are_listed_on_start(gateway):
    async def run_test():
        gateway.list_pipelines = AsyncMock(side_effect=paged([make_pipeline("1", "api-build"), make_pipeline("2", "web")]))
        app = _make_app(gateway)

        async with app.run_test() as pilot:
            table = app.query_one("#collection", DataTable)
            await until(lambda: table.row_count == 2)
            await pilot.press("q")

    asyncio.run(run_test())


def test_selecting_pipeline_then_run_opens_log_view(gateway):
    async def run_test():
        gateway.list_pipelines = AsyncMock(side_effect=paged([make_pipeline("1001", "api-build")]))
        gateway.list_runs = AsyncMock(side_effect=lambda pid, page, per_page: paged([])(page, per_page))
        gateway.get_run_detail = AsyncMock(return_value=make_detail(RunStatus.SUCCESS))
        app = _make_app(gateway)

        async with app.run_test() as pilot:
            table = app.query_one("#collection", DataTable)
            await until(lambda: table.row_count == 1)
            await pilot.press("enter")
            await until(lambda: isinstance(app.navigator.state, RunHistory))

            await app.navigator.open_run("1001", "77", pipeline_name="api-build")
            await until(lambda: "Pipeline Run Logs" in "\n".join(app.query_one("#transcript", Log).lines))
            assert isinstance(app.navigator.state, LogView)

    asyncio.run(run_test())
