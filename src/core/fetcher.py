"""Paginated parallel fetching from the media server."""

import asyncio
import math
from collections.abc import Awaitable, Callable

from src import log
from src.models.schemas.media_server import ProviderItem, ProviderPage

__all__ = ["fetch_parallel"]

PageFetcher = Callable[[int, int], Awaitable[ProviderPage]]
ProgressHook = Callable[[int, int], None]
StopCheck = Callable[[], bool]


async def fetch_parallel(
    fetch_page: PageFetcher,
    total_count: int,
    page_size: int,
    parallel: int,
    on_progress: ProgressHook | None = None,
    should_stop: StopCheck | None = None,
) -> list[ProviderItem]:
    """Fetch every page of a listing, `parallel` pages at a time.

    Pages are requested in waves. Results are appended in page order, so items
    keep the provider's ordering across pages. A failed page aborts the whole
    fetch and cancels the rest of its wave. When `should_stop` returns True
    before a wave, no further pages are requested and the items fetched so far
    are returned.

    Args:
        fetch_page (PageFetcher): Coroutine taking `(start_index, limit)`
        total_count (int): Number of items reported by the provider
        page_size (int): Items requested per page
        parallel (int): Maximum number of concurrent page requests
        on_progress (ProgressHook | None): Called with `(fetched, total_count)`
            after each wave
        should_stop (StopCheck | None): Checked before each wave

    Returns:
        list[ProviderItem]: All fetched items
    """
    if total_count <= 0:
        return []

    total_pages = math.ceil(total_count / page_size)
    parallel = max(parallel, 1)
    items: list[ProviderItem] = []

    for first_page in range(0, total_pages, parallel):
        if should_stop is not None and should_stop():
            log.debug(
                f"Stopped fetching after {len(items)}/{total_count} items "
                f"({first_page}/{total_pages} pages)"
            )
            break
        wave = range(first_page, min(first_page + parallel, total_pages))
        tasks = [
            asyncio.ensure_future(fetch_page(page * page_size, page_size))
            for page in wave
        ]
        try:
            pages = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for page in pages:
            items.extend(page.items)

        log.debug(
            f"Fetched pages {wave.start + 1}-{wave.stop} of {total_pages} "
            f"({len(items)}/{total_count} items)"
        )
        if on_progress is not None:
            on_progress(len(items), total_count)

    return items
