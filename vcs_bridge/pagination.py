# vcs_bridge/pagination.py

"""
Pagination normalizer.

Every provider listing is reduced to one shape: a coroutine that fetches the
page named by a token and returns its items together with the token of the
next page, or ``None`` once the provider signals completion. Provider quirks
(0- or 1-based pages, total-pages headers, has-more flags, next links) stay in
those per-provider fetch functions.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
import logging
from typing import Any, TypeVar

T = TypeVar("T")
TokenT = TypeVar("TokenT")

PageFetcher = Callable[[TokenT], Awaitable[tuple[list[T], TokenT | None]]]

logger = logging.getLogger(__name__)


async def iterate_pages(
    fetch: "PageFetcher[Any, T]", first_token: Any
) -> AsyncIterator[list[T]]:
    """
    Yield each page's items, strictly in order.

    A page is only requested after the previous one has reported its next
    token. An empty page does not end iteration; only a ``None`` token does.
    """
    token = first_token
    while token is not None:
        items, token = await fetch(token)
        yield items


async def paginate(fetch: "PageFetcher[Any, T]", first_token: Any) -> list[T]:
    """Fetch every page and return all items in arrival order."""
    results: list[T] = []
    pages = 0
    async for items in iterate_pages(fetch, first_token):
        results.extend(items)
        pages += 1
    logger.debug(f"Fetched {len(results)} items over {pages} pages")
    return results


def next_page_from_last_page(page: int, last_page: int) -> int | None:
    """GitHub style: 1-based pages, ``last_page`` read from the Link header."""
    if page + 1 > last_page:
        return None
    return page + 1


def next_page_from_total_pages(page: int, total_pages: int | None) -> int | None:
    """GitLab style: 1-based pages, ``total_pages`` read from the X-Total-Pages header."""
    if not total_pages or page >= total_pages:
        return None
    return page + 1


def next_start_from_page(body: dict[str, Any]) -> int | None:
    """Bitbucket Server style: offset pages with ``isLastPage`` and ``nextPageStart``."""
    if body.get("isLastPage", True):
        return None
    next_start = body.get("nextPageStart")
    if next_start is None:
        return None
    return int(next_start)


def next_page_from_link(page: int, body: dict[str, Any]) -> int | None:
    """Bitbucket Cloud style: 1-based pages, more exist while a ``next`` link is present."""
    if not body.get("next"):
        return None
    return page + 1

