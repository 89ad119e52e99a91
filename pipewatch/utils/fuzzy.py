"""
Fuzzy search over collection rows.

A pattern matches when its characters appear in the text in order,
ignoring case; gaps are allowed ("bkd" matches "backend-deploy").
"""
from typing import Iterable, List, TypeVar

T = TypeVar("T")


def fuzzy_match(text: str, pattern: str) -> bool:
    if not pattern:
        return True
    remaining = iter(text.lower())
    return all(ch in remaining for ch in pattern.lower())


def search_by_name(items: Iterable[T], query: str) -> List[T]:
    """Rows whose ``name`` fuzzy-matches ``query``; everything for an empty query."""
    query = query.strip()
    if not query:
        return list(items)
    return [item for item in items if fuzzy_match(getattr(item, "name", ""), query)]
