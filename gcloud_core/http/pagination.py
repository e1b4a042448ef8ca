"""
Iteration over paginated list endpoints that use ``nextPageToken``.
"""

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, List, Mapping, Optional, Union

from gcloud_core.errors import RequestCancelledError
from gcloud_core.models import ListResponse

PageFetcher = Callable[[Optional[str]], Awaitable[Union[ListResponse, Mapping[str, Any]]]]


async def paginate(fetch_page: PageFetcher,
                   cancel_event: Optional[asyncio.Event] = None) -> AsyncIterator[List[Any]]:
    """Yield each page's items until the API stops returning a page token.

    ``fetch_page`` receives ``None`` for the first page and the previous
    ``nextPageToken`` afterwards. It may return a ``ListResponse`` or the raw
    decoded JSON mapping.
    """
    page_token: Optional[str] = None
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError(details={"page_token": page_token})

        page = await fetch_page(page_token)
        if not isinstance(page, ListResponse):
            page = ListResponse.model_validate(page)

        items = page.items_or_empty
        if items:
            yield items

        if not page.has_more_pages:
            return
        page_token = page.next_page_token


async def collect_all(fetch_page: PageFetcher,
                      cancel_event: Optional[asyncio.Event] = None) -> List[Any]:
    """Fetch every page and concatenate the items."""
    all_items: List[Any] = []
    async for items in paginate(fetch_page, cancel_event):
        all_items.extend(items)
    return all_items
