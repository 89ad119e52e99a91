"""
Navigation Coordinator
======================
Single authority over which view is active and which background session
(a paginated load or a run refresh) may run.

Views:
    PipelineList -> GroupList -> PipelinesInGroup
    PipelineList | PipelinesInGroup -> RunHistory -> LogView
    PipelineList | PipelinesInGroup -> LogView (trigger a run)

Rules:
    - At most one background session is live per coordinator. Entering a
      view cancels the previous load or refresh and waits for it to exit
      before starting the next one.
    - Only the unfiltered pipeline list survives navigation (memoized by the
      loader). Group, filtered and run-history collections are dropped when
      their view is left.
    - ``trigger_run`` is the only path that opens a freshly triggered
      RefreshSession; every other LogView entry watches a historical run.
    - Invalid input (an unparseable group id, a command that makes no sense
      in the current view) raises StateError before any network call.

Every presentation update goes through the UpdateBus so view switches and
the pages that follow them reach the surface in order.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from pipewatch.agents.run_monitor import LiveRunMonitor
from pipewatch.core import output_formatter as fmt
from pipewatch.core.constants import (
    DEFAULT_INTER_JOB_PAUSE_MS,
    DEFAULT_MAX_FINISHED_POLLS,
    DEFAULT_PAGE_SIZE,
    DEFAULT_POLL_INTERVAL_MS,
    RUN_HISTORY_PAGE_SIZE,
    RUNNING_WAITING,
)
from pipewatch.core.errors import PipewatchError, StateError
from pipewatch.core.interfaces import PresentationSurface, RunGateway
from pipewatch.core.update_bus import UpdateBus
from pipewatch.models.page import CacheEntry, Page
from pipewatch.models.run import RunRecord
from pipewatch.parser.response_parser import parse_group_id
from pipewatch.services.cache_loader import (
    CollectionKey,
    CollectionKind,
    CollectionPage,
    LoadHandle,
    PaginatedCacheLoader,
    filter_by_status,
    paginate,
)
from pipewatch.state.view_state import (
    GroupList,
    LogView,
    PipelineList,
    PipelinesInGroup,
    ReturnTarget,
    RunHistory,
    ViewState,
    describe,
)
from pipewatch.utils.fuzzy import search_by_name

logger = logging.getLogger(__name__)


class NavigationCoordinator:
    """
    Owns the current ViewState, the loader and the run monitor.

    Usage:
        nav = NavigationCoordinator(gateway, bus, surface)
        await nav.start()
        await nav.enter_group("42", "backend")
        await nav.open_run_history("1001", "api-build")
        await nav.open_run("1001", "77")
        await nav.leave_log_view()
        await nav.shutdown()
    """

    def __init__(
        self,
        gateway: RunGateway,
        bus: UpdateBus,
        surface: PresentationSurface,
        page_size: int = DEFAULT_PAGE_SIZE,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_finished_polls: int = DEFAULT_MAX_FINISHED_POLLS,
        inter_job_pause_ms: int = DEFAULT_INTER_JOB_PAUSE_MS,
    ) -> None:
        self.gateway = gateway
        self.bus = bus
        self.surface = surface
        self.page_size = page_size
        self.loader = PaginatedCacheLoader(bus, page_size=page_size)
        self.monitor = LiveRunMonitor(
            gateway,
            bus,
            surface,
            poll_interval_ms=poll_interval_ms,
            max_finished_polls=max_finished_polls,
            inter_job_pause_ms=inter_job_pause_ms,
        )
        self.state: ViewState = PipelineList()
        self.entry: Optional[CacheEntry] = None
        self.search_query = ""
        self.history_page = 1
        self._load: Optional[LoadHandle] = None

    # -----------------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------------

    def live_sessions(self) -> int:
        """Number of background sessions currently consuming the gateway or a timer."""
        live = 1 if self.monitor.active else 0
        if self._load is not None and self._load.live:
            live += 1
        return live

    def visible_items(self) -> List[Any]:
        """The current collection after the search query, as the list view shows it."""
        items = list(self.entry.items) if self.entry is not None else []
        if isinstance(self.state, RunHistory):
            return items
        return search_by_name(items, self.search_query)

    def search(self, query: str) -> List[Any]:
        """Set the search query; never refetches."""
        self.search_query = query
        return self.visible_items()

    def history_slice(self, page: Optional[int] = None) -> Tuple[List[RunRecord], int, int]:
        """Client-side page of the run history: (runs, page, total pages)."""
        if page is not None:
            self.history_page = page
        runs, self.history_page, total = paginate(self.visible_items(), self.history_page, RUN_HISTORY_PAGE_SIZE)
        return runs, self.history_page, total

    # -----------------------------------------------------------------------
    # Commands
    # -----------------------------------------------------------------------

    async def start(self) -> None:
        await self._activate(PipelineList())

    async def select_collection(self, key: CollectionKey, label: str = "", refresh: bool = False) -> None:
        """
        Switch the list view to ``key``.

        ``label`` names the group or pipeline a scoped key points at; when
        omitted the view falls back to showing the id.
        """
        if key.kind == CollectionKind.ALL_PIPELINES:
            await self._activate(PipelineList(), refresh=refresh)
        elif key.kind == CollectionKind.FILTERED_PIPELINES:
            await self._activate(PipelineList(running_only=True), refresh=refresh)
        elif key.kind == CollectionKind.GROUPS:
            await self._activate(GroupList())
        elif key.kind == CollectionKind.GROUP_PIPELINES:
            await self.enter_group(key.scope_id, label, running_only=bool(key.status_filter))
        elif key.kind == CollectionKind.RUN_HISTORY:
            if not key.scope_id:
                raise StateError("Run history needs a pipeline id")
            await self.open_run_history(key.scope_id, label)

    async def show_groups(self) -> None:
        await self._activate(GroupList())

    async def enter_group(self, group_id: Any, group_name: str = "", running_only: bool = False) -> None:
        parsed = parse_group_id(group_id)
        await self._activate(PipelinesInGroup(parsed, group_name or str(parsed), running_only))

    async def toggle_running_filter(self) -> None:
        state = self.state
        if isinstance(state, PipelineList):
            await self._activate(PipelineList(running_only=not state.running_only))
        elif isinstance(state, PipelinesInGroup):
            await self._activate(PipelinesInGroup(state.group_id, state.group_name, not state.running_only))
        else:
            raise StateError(f"The RUNNING+WAITING filter does not apply to {describe(state)}")

    async def open_run_history(self, pipeline_id: str, pipeline_name: str = "") -> None:
        await self._activate(RunHistory(pipeline_id, pipeline_name or pipeline_id, self._return_target()))

    async def open_run(
        self,
        pipeline_id: str,
        run_id: str,
        is_historical: bool = True,
        pipeline_name: str = "",
    ) -> None:
        """
        Watch an existing run.

        Never marks the session freshly triggered, so a finished run gets a
        single pass and a running one polls until it settles.
        """
        logger.debug("Opening run %s (historical=%s)", run_id, is_historical)
        return_to = self.state if isinstance(self.state, RunHistory) else self._return_target()
        await self._activate(LogView(pipeline_id, pipeline_name or pipeline_id, run_id, False, return_to))

    async def latest_repositories(self, pipeline_id: str) -> Dict[str, str]:
        """Repository -> branch pairs to prefill the trigger dialog."""
        return await self.gateway.get_latest_repositories(pipeline_id)

    async def trigger_run(
        self,
        pipeline_id: str,
        params: Optional[Dict[str, Any]] = None,
        pipeline_name: str = "",
    ) -> Optional[str]:
        """
        Start a run and open it in a freshly triggered LogView.

        A failed trigger stays in the current view, reports the error and
        returns None.
        """
        if isinstance(self.state, GroupList):
            raise StateError("Select a pipeline before running it")
        try:
            run_id = await self.gateway.trigger_run(pipeline_id, params)
        except PipewatchError as e:
            logger.error("Trigger of pipeline %s failed: %s", pipeline_id, e)
            self.bus.post(None, self.surface.on_error, e)
            return None

        name = pipeline_name or pipeline_id
        repositories = (params or {}).get("runningBranchs", {})
        self.bus.post(None, self.surface.on_notice, fmt.trigger_summary(name, run_id, repositories))
        return_to = self.state if isinstance(self.state, RunHistory) else self._return_target()
        await self._activate(LogView(pipeline_id, name, run_id, True, return_to))
        return run_id

    async def stop_run(self) -> bool:
        """Ask the service to stop the watched run; polling continues and sees it cancel."""
        state = self._require_log_view()
        try:
            await self.gateway.stop_run(state.pipeline_id, state.run_id)
        except PipewatchError as e:
            logger.error("Stop of run %s failed: %s", state.run_id, e)
            self.bus.post(None, self.surface.on_error, e)
            return False
        self.bus.post(None, self.surface.on_notice, f"Stop requested for run {state.run_id}")
        return True

    async def stop_refresh(self) -> None:
        """Stop auto-refresh in the log view; the transcript stays on screen."""
        self._require_log_view()
        await self.monitor.stop()

    async def manual_refresh(self) -> None:
        """
        Fetch again right now.

        In the log view this is one extra pass of the live session, or a
        new historical session if the previous one already stopped. In a
        list view it reloads the collection, bypassing the cache.
        """
        state = self.state
        if isinstance(state, LogView):
            if not await self.monitor.refresh_now():
                await self.monitor.start(state.pipeline_id, state.run_id, is_freshly_triggered=False)
            return
        if isinstance(state, PipelineList):
            self.loader.invalidate(CollectionKey.all_pipelines())
        await self._activate(state, refresh=True)

    async def leave_log_view(self) -> None:
        state = self._require_log_view()
        await self.monitor.stop(notify=False)
        await self._activate(state.return_to)

    async def back(self) -> None:
        state = self.state
        if isinstance(state, LogView):
            await self.leave_log_view()
        elif isinstance(state, RunHistory):
            await self._activate(state.return_to)
        elif isinstance(state, PipelinesInGroup):
            await self._activate(GroupList())
        elif isinstance(state, GroupList):
            await self._activate(PipelineList())

    async def shutdown(self) -> None:
        await self._retire()
        logger.info("Navigation shut down")

    # -----------------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------------

    def _require_log_view(self) -> LogView:
        if not isinstance(self.state, LogView):
            raise StateError(f"No run is open ({describe(self.state)})")
        return self.state

    def _return_target(self) -> ReturnTarget:
        state = self.state
        if isinstance(state, (PipelineList, PipelinesInGroup)):
            return state
        if isinstance(state, RunHistory):
            return state.return_to
        if isinstance(state, LogView):
            target = state.return_to
            return target.return_to if isinstance(target, RunHistory) else target
        return PipelineList()

    async def _retire(self) -> None:
        """Cancel the live load and the live refresh session, and wait for both to exit."""
        if self._load is not None:
            self._load.cancel()
            await self._load.wait()
            self._load = None
        await self.monitor.stop(notify=False)

    async def _activate(self, state: ViewState, refresh: bool = False) -> None:
        await self._retire()
        previous = self.state
        self.state = state
        self.entry = None
        self.search_query = ""
        self.history_page = 1
        logger.info("View %s -> %s", describe(previous), describe(state))
        self.bus.post(None, self.surface.on_view_changed, state)

        if isinstance(state, LogView):
            await self.monitor.start(state.pipeline_id, state.run_id, is_freshly_triggered=state.freshly_triggered)
        elif isinstance(state, PipelineList):
            self._open_pipeline_list(state, refresh)
        elif isinstance(state, GroupList):
            self._begin(CollectionKey.groups(), self._fetch_groups)
        elif isinstance(state, PipelinesInGroup):
            statuses = RUNNING_WAITING if state.running_only else ()
            group_id = state.group_id

            async def fetch(page: int) -> Page:
                return await self.gateway.list_pipelines_in_group(group_id, page, self.page_size, statuses)

            self._begin(CollectionKey.group_pipelines(group_id, statuses), fetch)
        elif isinstance(state, RunHistory):
            pipeline_id = state.pipeline_id

            async def fetch(page: int) -> Page:
                return await self.gateway.list_runs(pipeline_id, page, self.page_size)

            self._begin(CollectionKey.run_history(pipeline_id), fetch)

    def _open_pipeline_list(self, state: PipelineList, refresh: bool) -> None:
        all_key = CollectionKey.all_pipelines()
        if not state.running_only:
            self._begin(all_key, self._fetch_all_pipelines, refresh=refresh)
            return

        cached = self.loader.cached(all_key)
        if cached is not None and cached.complete and not refresh:
            # Strict subset of a complete cache: filter locally
            items = filter_by_status(cached.items, RUNNING_WAITING)
            self.entry = CacheEntry(items=items, loaded_pages=1, total_pages=1, complete=True, loaded_at=cached.loaded_at)
            key = CollectionKey.filtered_pipelines(RUNNING_WAITING)
            self.bus.post(
                None,
                self.surface.on_collection_page,
                CollectionPage(key, list(items), 1, 1, True, len(items)),
            )
            logger.debug("Filtered %d cached pipelines down to %d", len(cached.items), len(items))
            return

        async def fetch(page: int) -> Page:
            return await self.gateway.list_pipelines(page, self.page_size, RUNNING_WAITING)

        self._begin(CollectionKey.filtered_pipelines(RUNNING_WAITING), fetch)

    def _begin(self, key: CollectionKey, fetch, refresh: bool = False) -> None:
        self._load = self.loader.start_load(
            key,
            fetch,
            on_page=self.surface.on_collection_page,
            on_error=self.surface.on_collection_error,
            refresh=refresh,
        )
        self.entry = self._load.entry

    async def _fetch_all_pipelines(self, page: int) -> Page:
        return await self.gateway.list_pipelines(page, self.page_size)

    async def _fetch_groups(self, page: int) -> Page:
        groups = await self.gateway.list_groups(self.page_size)
        return Page(groups, page, max(len(groups), 1), total_pages=1)
