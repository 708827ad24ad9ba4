"""Offset pagination over Jira's startAt/maxResults/total envelopes."""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .jira import JiraError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
# 100k items at the default page size; anything beyond means the
# server keeps reporting a total we never reach.
MAX_PAGES = 1000

PageFetcher = Callable[[int, int], Awaitable[dict]]


class PaginationError(JiraError):
    """Raised when paging metadata never lets the loop terminate."""

    pass


@dataclass(frozen=True)
class Page:
    start_at: int
    max_results: int
    total: int
    items: list[Any]

    @property
    def is_last(self) -> bool:
        return self.start_at + self.max_results >= self.total


async def iter_pages(
    fetch: PageFetcher,
    items_key: str,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_pages: int = MAX_PAGES,
) -> AsyncIterator[Page]:
    """Yield pages lazily until ``startAt + maxResults >= total``.

    Args:
        fetch: Coroutine taking (start_at, max_results) and returning the
            decoded response envelope.
        items_key: Envelope key holding the page items ("issues", "worklogs").
        page_size: Requested page size; also the fallback when the response
            omits ``maxResults``.
        max_pages: Hard ceiling on requests.

    Raises:
        PaginationError: If ``max_pages`` pages were fetched without the
            termination condition holding.
    """
    start_at = 0
    for _ in range(max_pages):
        data = await fetch(start_at, page_size) or {}
        page = Page(
            start_at=start_at,
            max_results=data.get("maxResults") or page_size,
            total=data.get("total") or 0,
            items=list(data.get(items_key) or []),
        )
        yield page
        if page.is_last:
            return
        start_at += page.max_results

    raise PaginationError(
        f"Pagination did not terminate after {max_pages} pages "
        f"(startAt={start_at}); the server's paging metadata looks malformed"
    )


async def collect_all(pages: AsyncIterator[Page]) -> list[Any]:
    """Drain a page iterator into a single list of items."""
    items: list[Any] = []
    async for page in pages:
        items.extend(page.items)
    logger.debug("Collected %d items", len(items))
    return items
