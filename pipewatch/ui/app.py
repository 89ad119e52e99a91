"""Textual console for pipewatch.

The app is the presentation surface: the navigation coordinator, loader and
run monitor publish into the ``on_*`` methods below (always through the
update bus, on the app's own event loop), and key bindings turn into
coordinator commands. The app never fetches anything itself.
"""

import logging
from typing import Any, Dict, List, Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import DataTable, Footer, Header, Input, Log, Static

from pipewatch.agents.navigator import NavigationCoordinator
from pipewatch.core import output_formatter as fmt
from pipewatch.core.config import ConsoleSettings
from pipewatch.core.constants import RUN_HISTORY_PAGE_SIZE, RunStatus
from pipewatch.core.errors import PipewatchError
from pipewatch.core.update_bus import UpdateBus
from pipewatch.executor.external_viewer import open_in_editor, open_in_pager
from pipewatch.gateway.client import PipelineGateway, build_run_params
from pipewatch.models.run import AutoRefreshState
from pipewatch.models.transcript import TranscriptEntry
from pipewatch.services.cache_loader import CollectionKey, CollectionPage
from pipewatch.state.view_state import (
    GroupList,
    LogView,
    PipelineList,
    PipelinesInGroup,
    RunHistory,
    ViewState,
)
from pipewatch.ui.screens import RunPipelineModal

logger = logging.getLogger(__name__)

PIPELINE_COLUMNS = ("Name", "Last Run", "Creator", "Updated")
GROUP_COLUMNS = ("Name", "ID")
RUN_COLUMNS = ("Run", "Status", "Trigger", "Start", "End", "Duration")


class PipewatchApp(App[None]):
    """Interactive console over one organization's pipelines."""

    TITLE = "pipewatch"
    CSS = """
    #view-title {
        height: 1;
        background: $primary;
        padding: 0 1;
    }

    #collection {
        height: 1fr;
    }

    #transcript {
        height: 1fr;
        border: solid $secondary;
    }

    #status-bar {
        height: 1;
        background: $surface-darken-1;
        padding: 0 1;
    }

    #search {
        dock: bottom;
    }

    .hidden {
        display: none;
    }
    """

    BINDINGS = [  # noqa: RUF012 - Textual pattern
        Binding("q", "back", "Back"),
        Binding("Q", "quit", "Quit"),
        Binding("r", "run_or_refresh", "Run/Refresh"),
        Binding("a", "toggle_running", "Running+Waiting"),
        Binding("ctrl+g", "groups", "Groups"),
        Binding("slash", "search", "Search"),
        Binding("escape", "clear_search", "Clear search", show=False),
        Binding("left_square_bracket", "history_page(-1)", "Prev page", show=False),
        Binding("right_square_bracket", "history_page(1)", "Next page", show=False),
        Binding("0", "history_first", "First page", show=False),
        Binding("s", "stop_refresh", "Stop refresh", show=False),
        Binding("x", "stop_run", "Stop run", show=False),
        Binding("e", "editor", "Editor", show=False),
        Binding("v", "pager", "Pager", show=False),
    ]

    def __init__(self, settings: ConsoleSettings, gateway: Optional[PipelineGateway] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.settings = settings
        self.gateway = gateway or PipelineGateway(
            settings.token,
            settings.organization_id,
            endpoint=settings.endpoint,
            timeout=settings.request_timeout,
        )
        self.bus = UpdateBus()
        self.navigator = NavigationCoordinator(
            self.gateway,
            self.bus,
            self,
            page_size=settings.page_size,
            poll_interval_ms=settings.poll_interval_ms,
            max_finished_polls=settings.max_finished_polls,
            inter_job_pause_ms=settings.inter_job_pause_ms,
        )
        self._rows: Dict[str, Any] = {}
        self._transcript: List[str] = []

    def compose(self) -> ComposeResult:
        """Create child widgets."""
        yield Header()
        yield Static("Pipelines", id="view-title")
        yield DataTable(id="collection", cursor_type="row", zebra_stripes=True)
        yield Log(id="transcript", classes="hidden")
        yield Static("", id="status-bar", classes="hidden")
        yield Input(placeholder="search", id="search", classes="hidden")
        yield Footer()

    async def on_mount(self) -> None:
        self.run_worker(self.bus.run(), group="update-bus", exit_on_error=False)
        await self.navigator.start()

    async def on_unmount(self) -> None:
        await self.navigator.shutdown()
        await self.gateway.close()

    # -----------------------------------------------------------------------
    # Presentation surface
    # -----------------------------------------------------------------------

    def on_view_changed(self, view: ViewState) -> None:
        table = self.query_one("#collection", DataTable)
        log = self.query_one("#transcript", Log)
        status = self.query_one("#status-bar", Static)
        in_log = isinstance(view, LogView)
        table.set_class(in_log, "hidden")
        log.set_class(not in_log, "hidden")
        status.set_class(not in_log, "hidden")
        self.query_one("#search", Input).add_class("hidden")
        self._rows = {}

        if in_log:
            self._transcript = []
            log.clear()
            log.write(fmt.FETCHING_RUN.format(run_id=view.run_id) + "\n")
            status.update(fmt.status_bar("", AutoRefreshState(enabled=view.freshly_triggered)))
            self._set_title(f"Run {view.run_id} - {view.pipeline_name}")
            self.sub_title = fmt.refresh_hint(self.settings.poll_interval_ms).strip()
            log.focus()
            return

        self.sub_title = ""
        table.clear(columns=True)
        if isinstance(view, GroupList):
            table.add_columns(*GROUP_COLUMNS)
        elif isinstance(view, RunHistory):
            table.add_columns(*RUN_COLUMNS)
        else:
            table.add_columns(*PIPELINE_COLUMNS)
        self._set_title(self._list_title(view))
        table.focus()

    def on_collection_page(self, page: CollectionPage) -> None:
        if isinstance(self.navigator.state, RunHistory):
            self._render_history()
        elif self.navigator.search_query:
            self._render_rows(self.navigator.visible_items())
        else:
            self._add_rows(page.new_items)
        if page.is_complete:
            logger.debug("%s complete with %d items", page.key, page.loaded_count)

    def on_collection_error(self, key: CollectionKey, error: PipewatchError) -> None:
        what = "groups" if key == CollectionKey.groups() else key.kind.value.replace("_", " ")
        table = self.query_one("#collection", DataTable)
        if not table.columns:
            table.add_columns(*PIPELINE_COLUMNS)
        cells = [fmt.collection_error(what, error)] + [""] * (len(table.columns) - 1)
        table.add_row(*cells)

    def on_transcript_reset(self, header: str) -> None:
        log = self.query_one("#transcript", Log)
        log.clear()
        self._transcript = [header]
        log.write(header)

    def on_transcript_append(self, entry: TranscriptEntry) -> None:
        self._transcript.append(entry.text)
        self.query_one("#transcript", Log).write(entry.text)

    def on_status_changed(self, status: RunStatus, auto_refresh: AutoRefreshState) -> None:
        self.query_one("#status-bar", Static).update(fmt.status_bar(status.value, auto_refresh))

    def on_error(self, error: PipewatchError) -> None:
        self.notify(str(error), title=error.kind, severity="error")
        if isinstance(self.navigator.state, LogView):
            self.query_one("#transcript", Log).write(f"\nError: {error}\n")

    def on_notice(self, message: str) -> None:
        self.notify(message)

    # -----------------------------------------------------------------------
    # Rendering helpers
    # -----------------------------------------------------------------------

    def _set_title(self, text: str) -> None:
        self.query_one("#view-title", Static).update(text)

    def _list_title(self, view: ViewState) -> str:
        if isinstance(view, PipelineList):
            return fmt.pipelines_title(running_only=view.running_only, query=self.navigator.search_query)
        if isinstance(view, PipelinesInGroup):
            return fmt.pipelines_title(view.group_name, view.running_only, self.navigator.search_query)
        if isinstance(view, GroupList):
            return "Pipeline Groups"
        if isinstance(view, RunHistory):
            _, page, total = self.navigator.history_slice()
            return fmt.run_history_title(view.pipeline_name, page, total)
        return ""

    def _row_cells(self, item: Any) -> tuple:
        if isinstance(self.navigator.state, GroupList):
            return (item.name, item.id)
        return fmt.pipeline_row(item)

    def _add_rows(self, items: List[Any]) -> None:
        table = self.query_one("#collection", DataTable)
        for item in items:
            key = str(item.id)
            if key in self._rows:
                continue
            self._rows[key] = item
            table.add_row(*self._row_cells(item), key=key)

    def _render_rows(self, items: List[Any]) -> None:
        table = self.query_one("#collection", DataTable)
        table.clear()
        self._rows = {}
        self._add_rows(items)
        self._set_title(self._list_title(self.navigator.state))

    def _render_history(self, page: Optional[int] = None) -> None:
        table = self.query_one("#collection", DataTable)
        table.clear()
        self._rows = {}
        runs, current, _ = self.navigator.history_slice(page)
        total_runs = len(self.navigator.visible_items())
        offset = (current - 1) * RUN_HISTORY_PAGE_SIZE
        for index, run in enumerate(runs):
            self._rows[run.run_id] = run
            table.add_row(*fmt.run_row(total_runs - offset - index, run), key=run.run_id)
        self._set_title(self._list_title(self.navigator.state))

    def _selected(self) -> Optional[Any]:
        table = self.query_one("#collection", DataTable)
        if not table.row_count:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return self._rows.get(row_key.value) if row_key is not None else None

    async def _run_command(self, command, *args: Any) -> None:
        try:
            await command(*args)
        except PipewatchError as e:
            self.on_error(e)

    # -----------------------------------------------------------------------
    # Input handling
    # -----------------------------------------------------------------------

    async def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        item = self._rows.get(event.row_key.value)
        if item is None:
            return
        state = self.navigator.state
        if isinstance(state, GroupList):
            await self._run_command(self.navigator.enter_group, item.id, item.name)
        elif isinstance(state, RunHistory):
            await self._run_command(self.navigator.open_run, state.pipeline_id, item.run_id, True, state.pipeline_name)
        else:
            await self._run_command(self.navigator.select_collection, CollectionKey.run_history(item.id), item.name)

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "search":
            self._render_rows(self.navigator.search(event.value))

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "search":
            self.query_one("#collection", DataTable).focus()

    async def action_back(self) -> None:
        if isinstance(self.navigator.state, PipelineList):
            self.exit()
            return
        await self._run_command(self.navigator.back)

    async def action_run_or_refresh(self) -> None:
        state = self.navigator.state
        if isinstance(state, LogView):
            await self._run_command(self.navigator.manual_refresh)
            return
        if isinstance(state, GroupList):
            await self._run_command(self.navigator.manual_refresh)
            return
        if isinstance(state, RunHistory):
            pipeline_id, pipeline_name = state.pipeline_id, state.pipeline_name
        else:
            item = self._selected()
            if item is None:
                return
            pipeline_id, pipeline_name = item.id, item.name
        try:
            repositories = await self.navigator.latest_repositories(pipeline_id)
        except PipewatchError as e:
            logger.warning("No latest run for %s: %s", pipeline_id, e)
            repositories = {}

        async def _confirmed(branch: Optional[str]) -> None:
            if branch is None:
                return
            params = build_run_params(repositories, branch)
            await self._run_command(self.navigator.trigger_run, pipeline_id, params, pipeline_name)

        self.push_screen(RunPipelineModal(pipeline_name, repositories), _confirmed)

    async def action_toggle_running(self) -> None:
        await self._run_command(self.navigator.toggle_running_filter)

    async def action_groups(self) -> None:
        await self._run_command(self.navigator.select_collection, CollectionKey.groups())

    def action_search(self) -> None:
        if isinstance(self.navigator.state, LogView):
            return
        search = self.query_one("#search", Input)
        search.remove_class("hidden")
        search.focus()

    def action_clear_search(self) -> None:
        search = self.query_one("#search", Input)
        search.value = ""
        search.add_class("hidden")
        if not isinstance(self.navigator.state, LogView):
            self._render_rows(self.navigator.search(""))

    def action_history_page(self, delta: int) -> None:
        if isinstance(self.navigator.state, RunHistory):
            self._render_history(self.navigator.history_page + delta)

    def action_history_first(self) -> None:
        if isinstance(self.navigator.state, RunHistory):
            self._render_history(1)

    async def action_stop_refresh(self) -> None:
        await self._run_command(self.navigator.stop_refresh)

    async def action_stop_run(self) -> None:
        await self._run_command(self.navigator.stop_run)

    def _open_external(self, opener) -> None:
        if not isinstance(self.navigator.state, LogView):
            return
        content = "".join(self._transcript)
        try:
            with self.suspend():
                opener(content, self.settings)
        except PipewatchError as e:
            self.on_error(e)

    def action_editor(self) -> None:
        self._open_external(open_in_editor)

    def action_pager(self) -> None:
        self._open_external(open_in_pager)
