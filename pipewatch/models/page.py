"""
Page and Cache Models
=====================
``Page`` is one gateway response for a paginated collection. ``CacheEntry``
is the loader-owned snapshot that pages are folded into.

Pagination termination:
    The remote service reports ``x-page``/``x-total-pages`` on some
    endpoints and nothing on others. When the total is known, the page
    whose index reaches it is the last. When it is not, a short page
    (fewer items than requested) is the last. Both rules are kept as-is
    because the correct behaviour per endpoint is not documented.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    page_index: int
    per_page: int
    total_pages: Optional[int] = None

    @property
    def is_last_page(self) -> bool:
        if self.total_pages is not None:
            return self.page_index >= self.total_pages
        return len(self.items) < self.per_page


@dataclass
class CacheEntry(Generic[T]):
    """
    Snapshot of one paginated collection.

    ``complete`` is True only once the last page has been folded in and no
    page load is in flight; ``items`` only grows while a load runs.
    """

    items: List[T] = field(default_factory=list)
    loaded_pages: int = 0
    total_pages: int = 0
    complete: bool = False
    loading: bool = False
    loaded_at: Optional[datetime] = None
    error: Optional[Exception] = None

    def absorb(self, page: Page[T]) -> None:
        self.items.extend(page.items)
        self.loaded_pages = page.page_index
        if page.is_last_page:
            self.total_pages = self.loaded_pages
        elif page.total_pages is not None:
            self.total_pages = page.total_pages
        else:
            # Unknown total: at least one more page
            self.total_pages = self.loaded_pages + 1
        self.loaded_at = datetime.now(timezone.utc)
