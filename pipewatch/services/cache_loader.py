"""
Paginated Cache Loader
======================
Drives a gateway list call page by page, publishes every page the moment it
arrives, and memoizes the unfiltered "all pipelines" collection.

Cacheable:
    - the unfiltered pipeline list (``CollectionKey.all_pipelines()``)

NOT Cacheable (ephemeral, discarded when the view is left):
    - server-side status-filtered pipeline lists
    - pipelines inside a group
    - pipeline groups
    - run history

Single flight:
    A second ``start_load`` for a key whose load is still running does not
    fetch anything. It waits for the running load and is then served the
    finished entry in one callback.

Failures:
    A failed page stops the load. The entry keeps what it already has,
    stays incomplete, records the error and the failure is handed to the
    caller's ``on_error``. Nothing is retried; calling ``start_load`` again
    is the retry.

Callbacks never run on the loading task itself: they are posted to the
UpdateBus so the interactive loop applies them in page order.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from pipewatch.core.cancellation import CancelToken
from pipewatch.core.constants import DEFAULT_PAGE_SIZE
from pipewatch.core.errors import MalformedResponseError, PipewatchError
from pipewatch.core.update_bus import UpdateBus
from pipewatch.models.page import CacheEntry, Page
from pipewatch.models.pipeline import PipelineSummary

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Hard stop for endpoints whose page metadata never reports an end
MAX_PAGES = 500


class CollectionKind(str, Enum):
    ALL_PIPELINES = "all_pipelines"
    FILTERED_PIPELINES = "filtered_pipelines"
    GROUPS = "groups"
    GROUP_PIPELINES = "group_pipelines"
    RUN_HISTORY = "run_history"


@dataclass(frozen=True)
class CollectionKey:
    kind: CollectionKind
    status_filter: Tuple[str, ...] = ()
    scope_id: Optional[str] = None

    @property
    def memoized(self) -> bool:
        return self.kind == CollectionKind.ALL_PIPELINES and not self.status_filter

    @classmethod
    def all_pipelines(cls) -> "CollectionKey":
        return cls(CollectionKind.ALL_PIPELINES)

    @classmethod
    def filtered_pipelines(cls, statuses: Iterable[str]) -> "CollectionKey":
        return cls(CollectionKind.FILTERED_PIPELINES, tuple(statuses))

    @classmethod
    def groups(cls) -> "CollectionKey":
        return cls(CollectionKind.GROUPS)

    @classmethod
    def group_pipelines(cls, group_id: int, statuses: Iterable[str] = ()) -> "CollectionKey":
        return cls(CollectionKind.GROUP_PIPELINES, tuple(statuses), str(group_id))

    @classmethod
    def run_history(cls, pipeline_id: str) -> "CollectionKey":
        return cls(CollectionKind.RUN_HISTORY, (), pipeline_id)

    def __str__(self) -> str:
        parts = [self.kind.value]
        if self.scope_id:
            parts.append(self.scope_id)
        if self.status_filter:
            parts.append("+".join(self.status_filter))
        return ":".join(parts)


@dataclass(frozen=True)
class CollectionPage(Generic[T]):
    """One publish callback: the new items plus where the load stands."""

    key: CollectionKey
    new_items: List[T]
    page_index: int
    total_pages: int
    is_complete: bool
    loaded_count: int


PageFetcher = Callable[[int], Awaitable[Page[T]]]
PageCallback = Callable[[CollectionPage], None]
ErrorCallback = Callable[[CollectionKey, PipewatchError], None]


class LoadHandle(Generic[T]):
    """Caller's view of one load: its entry, its task and its cancellation."""

    def __init__(
        self,
        key: CollectionKey,
        entry: CacheEntry[T],
        token: CancelToken,
        task: Optional["asyncio.Task[None]"] = None,
    ) -> None:
        self.key = key
        self.entry = entry
        self.token = token
        self.task = task

    @property
    def done(self) -> bool:
        return self.task is None or self.task.done()

    @property
    def live(self) -> bool:
        return not self.done and not self.token.cancelled

    def cancel(self) -> None:
        self.token.cancel()
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def wait(self) -> CacheEntry[T]:
        """Wait for the load to finish (or be canceled) and return its entry."""
        if self.task is not None:
            try:
                await self.task
            except asyncio.CancelledError:
                if not self.token.cancelled:
                    raise
        return self.entry


class PaginatedCacheLoader:
    """
    Owner of every CacheEntry in the process.

    Usage:
        loader = PaginatedCacheLoader(bus)
        handle = loader.start_load(CollectionKey.all_pipelines(),
                                   lambda p: gateway.list_pipelines(page=p),
                                   on_page=render)
        entry = await handle.wait()
    """

    def __init__(self, bus: UpdateBus, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self.bus = bus
        self.page_size = page_size
        self._memo: Dict[CollectionKey, CacheEntry] = {}
        self._inflight: Dict[CollectionKey, LoadHandle] = {}

    def cached(self, key: CollectionKey) -> Optional[CacheEntry]:
        """Memoized entry for ``key``; always None for ephemeral keys."""
        return self._memo.get(key)

    def in_flight(self, key: CollectionKey) -> bool:
        handle = self._inflight.get(key)
        return handle is not None and handle.live

    def invalidate(self, key: CollectionKey) -> None:
        """Forget a memoized entry so the next load fetches again."""
        if self._memo.pop(key, None) is not None:
            logger.info("Invalidated cached collection %s", key)

    def start_load(
        self,
        key: CollectionKey,
        fetch_page: PageFetcher,
        on_page: Optional[PageCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        refresh: bool = False,
    ) -> LoadHandle:
        """
        Begin (or join, or serve from cache) the load of ``key``.

        Parameters
        ----------
        key : CollectionKey
            Which collection. Only ``key.memoized`` collections outlive
            the view that loaded them.
        fetch_page : callable
            ``await fetch_page(page_index)`` returns a Page; indexes start at 1.
        on_page : callable, optional
            Receives one CollectionPage per page, in page order.
        on_error : callable, optional
            Receives (key, error) if a page fetch fails.
        refresh : bool
            Ignore a complete memoized entry and fetch again.

        Returns
        -------
        LoadHandle
            Shares its CacheEntry with every other handle for the same load.
        """
        running = self._inflight.get(key)
        if running is not None and running.live:
            logger.debug("Joining in-flight load of %s", key)
            return self._follow(running, on_page, on_error)

        if key.memoized and not refresh:
            entry = self._memo.get(key)
            if entry is not None and entry.complete:
                logger.debug("Serving %s from cache (%d items)", key, len(entry.items))
                return self._serve_cached(key, entry, on_page)

        entry = CacheEntry(loading=True)
        if key.memoized:
            self._memo[key] = entry
        token = CancelToken(f"load:{key}")
        handle = LoadHandle(key, entry, token)
        handle.task = asyncio.create_task(self._load(key, entry, fetch_page, token, on_page, on_error))
        self._inflight[key] = handle
        handle.task.add_done_callback(lambda _task: self._forget(key, handle))
        logger.info("Started load of %s", key)
        return handle

    def _forget(self, key: CollectionKey, handle: LoadHandle) -> None:
        if self._inflight.get(key) is handle:
            del self._inflight[key]

    def _publish_whole(self, key: CollectionKey, entry: CacheEntry, token: CancelToken, on_page: Optional[PageCallback]) -> None:
        if on_page is None:
            return
        page = CollectionPage(
            key=key,
            new_items=list(entry.items),
            page_index=entry.loaded_pages,
            total_pages=entry.total_pages,
            is_complete=True,
            loaded_count=len(entry.items),
        )
        self.bus.post(token, on_page, page)

    def _serve_cached(self, key: CollectionKey, entry: CacheEntry, on_page: Optional[PageCallback]) -> LoadHandle:
        token = CancelToken(f"cached:{key}")
        self._publish_whole(key, entry, token, on_page)
        return LoadHandle(key, entry, token)

    def _follow(
        self,
        leader: LoadHandle,
        on_page: Optional[PageCallback],
        on_error: Optional[ErrorCallback],
    ) -> LoadHandle:
        token = CancelToken(f"follow:{leader.key}")

        async def _await_leader() -> None:
            assert leader.task is not None
            # The follower being canceled must not cancel the leader
            await asyncio.wait({leader.task})
            if token.cancelled:
                return
            entry = leader.entry
            if entry.complete:
                self._publish_whole(leader.key, entry, token, on_page)
            elif entry.error is not None and on_error is not None:
                self.bus.post(token, on_error, leader.key, entry.error)

        handle = LoadHandle(leader.key, leader.entry, token)
        handle.task = asyncio.create_task(_await_leader())
        return handle

    async def _load(
        self,
        key: CollectionKey,
        entry: CacheEntry,
        fetch_page: PageFetcher,
        token: CancelToken,
        on_page: Optional[PageCallback],
        on_error: Optional[ErrorCallback],
    ) -> None:
        page_index = 1
        try:
            while page_index <= MAX_PAGES:
                if token.cancelled:
                    return
                page = await fetch_page(page_index)
                if token.cancelled:
                    logger.debug("Discarding page %d of canceled load %s", page_index, key)
                    return
                entry.absorb(page)
                last = page.is_last_page
                if last:
                    entry.loading = False
                    entry.complete = True
                if on_page is not None:
                    self.bus.post(
                        token,
                        on_page,
                        CollectionPage(
                            key=key,
                            new_items=list(page.items),
                            page_index=page_index,
                            total_pages=entry.total_pages,
                            is_complete=last,
                            loaded_count=len(entry.items),
                        ),
                    )
                if last:
                    logger.info("Loaded %s: %d items in %d pages", key, len(entry.items), entry.loaded_pages)
                    return
                page_index += 1
            logger.warning("Stopped loading %s after %d pages without a last page", key, MAX_PAGES)
            self._record_error(
                key, entry, token, on_error,
                MalformedResponseError(f"{key} reported no last page after {MAX_PAGES} pages"),
            )
        except PipewatchError as e:
            logger.warning("Load of %s failed on page %d: %s", key, page_index, e)
            self._record_error(key, entry, token, on_error, e)
        except Exception as e:
            logger.exception("Unexpected failure loading %s on page %d", key, page_index)
            self._record_error(
                key, entry, token, on_error,
                MalformedResponseError(f"Unexpected failure reading page {page_index} of {key}: {e}"),
            )
        finally:
            entry.loading = False

    def _record_error(
        self,
        key: CollectionKey,
        entry: CacheEntry,
        token: CancelToken,
        on_error: Optional[ErrorCallback],
        error: PipewatchError,
    ) -> None:
        entry.error = error
        if on_error is not None:
            self.bus.post(token, on_error, key, error)


# ---------------------------------------------------------------------------
# Pure views over a cached collection
# ---------------------------------------------------------------------------

def filter_by_status(items: Iterable[PipelineSummary], statuses: Iterable[str]) -> List[PipelineSummary]:
    """Pipelines whose own status or last run status is one of ``statuses``."""
    wanted = {s.upper() for s in statuses}
    return [p for p in items if p.status.upper() in wanted or p.last_run_status.upper() in wanted]


def paginate(items: List[T], page: int, per_page: int) -> Tuple[List[T], int, int]:
    """
    Slice ``items`` for client-side paging.

    Returns
    -------
    tuple
        (page items, clamped 1-based page number, total pages). An empty
        list is one empty page.
    """
    total_pages = max(1, -(-len(items) // per_page))
    page = min(max(page, 1), total_pages)
    start = (page - 1) * per_page
    return items[start:start + per_page], page, total_pages
