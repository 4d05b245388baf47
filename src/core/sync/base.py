"""Shared machinery for catalog synchronization jobs."""

from collections.abc import Sequence
from itertools import batched
from time import monotonic
from typing import Any

from src import log
from src.config.settings import MediaServerConfig, SyncConfig
from src.core.fetcher import fetch_parallel
from src.core.jobs import JobProgressStore, get_job_store
from src.core.media_server import MediaServerProvider
from src.core.reconcile import BulkReconciler, ReconcileResult, clamp_rating
from src.core.users import UserSyncClient
from src.models.schemas.media_server import ProviderItem, ProviderPage

__all__ = ["CatalogSyncClient", "LibraryScope", "catalog_row"]

PROGRESS_LOG_EVERY = 10

# A library id of None means the whole server
LibraryScope = list[str | None]


def catalog_row(
    item: ProviderItem,
    provider: MediaServerProvider,
    library_id: str | None,
) -> dict[str, Any]:
    """Columns shared by series and movies, prepared from a provider item."""
    poster_tag = item.image_tags.get("Primary")
    backdrop_tag = item.backdrop_image_tags[0] if item.backdrop_image_tags else None
    return {
        "provider_item_id": item.id,
        "provider_library_id": library_id,
        "title": item.name,
        "original_title": item.original_title,
        "sort_title": item.sort_name,
        "year": item.production_year,
        "premiere_date": item.premiere_day,
        "overview": item.overview,
        "genres": item.genres,
        "tags": item.tags,
        "studios": [s.name for s in item.studios],
        "directors": [p.name for p in item.people_of("Director")],
        "writers": [p.name for p in item.people_of("Writer")],
        "actors": [
            {"name": p.name, "role": p.role} for p in item.people_of("Actor")
        ],
        "production_countries": item.production_locations,
        "community_rating": clamp_rating(item.community_rating),
        "critic_rating": clamp_rating(item.critic_rating),
        "content_rating": item.official_rating,
        "imdb_id": item.provider_id("Imdb"),
        "tmdb_id": item.provider_id("Tmdb"),
        "tvdb_id": item.provider_id("Tvdb"),
        "poster_url": (
            provider.get_poster_url(item.id, poster_tag) if poster_tag else None
        ),
        "backdrop_url": (
            provider.get_backdrop_url(item.id, backdrop_tag) if backdrop_tag else None
        ),
    }


class CatalogSyncClient:
    """Base class of the series and movie synchronization jobs.

    Subclasses drive the steps; this class resolves which libraries to read,
    counts and fetches pages in parallel, and feeds fetched records to a
    reconciler in batches while honouring cancellation.
    """

    collection_type: str = ""

    def __init__(
        self,
        provider: MediaServerProvider,
        *,
        server_config: MediaServerConfig,
        sync_config: SyncConfig,
        job_store: JobProgressStore | None = None,
    ) -> None:
        self.provider = provider
        self.server_config = server_config
        self.sync_config = sync_config
        self.job_store = job_store or get_job_store()

    def _library_scope(self, job_id: str) -> LibraryScope:
        """Libraries to read; an empty list means nothing is enabled."""
        enabled = UserSyncClient.get_enabled_library_ids(self.collection_type)
        if enabled is None:
            self.job_store.add_log(
                job_id, "info", "Syncing from all libraries (no filter configured)"
            )
            return [None]
        if enabled:
            self.job_store.add_log(
                job_id, "info", f"Syncing from {len(enabled)} selected library(ies)"
            )
        return list(enabled)

    @staticmethod
    def _parent_ids(library_id: str | None) -> Sequence[str] | None:
        return [library_id] if library_id else None

    async def _count(self, get_page, library_id: str | None) -> int:
        page: ProviderPage = await get_page(0, 1, self._parent_ids(library_id))
        return page.total_record_count

    def _cancel_requested(self, job_id: str, label: str) -> bool:
        if self.job_store.is_cancelled(job_id):
            log.info(f"Sync of $$'{label}'$$ cancelled")
            return True
        return False

    async def _fetch_all(
        self,
        job_id: str,
        get_page,
        library_id: str | None,
        total: int,
        page_size: int,
    ) -> list[ProviderItem]:
        """Fetch a library listing; stops between waves once cancelled."""
        parent_ids = self._parent_ids(library_id)

        def fetch_page(start: int, limit: int):
            return get_page(start, limit, parent_ids)

        return await fetch_parallel(
            fetch_page,
            total,
            page_size,
            self.server_config.parallel_fetches,
            should_stop=lambda: self.job_store.is_cancelled(job_id),
        )

    async def _reconcile_batches(
        self,
        job_id: str,
        reconciler: BulkReconciler,
        rows: list[dict[str, Any]],
        result: ReconcileResult,
        *,
        done_before: int,
        total: int,
    ) -> bool:
        """Write `rows` batch by batch.

        Returns:
            bool: False if the job was cancelled before all batches were written
        """
        started = monotonic()
        done = done_before
        for index, batch in enumerate(
            batched(rows, self.sync_config.db_batch_size, strict=False)
        ):
            if self._cancel_requested(job_id, reconciler.label):
                return False

            result += reconciler.reconcile(list(batch))
            done += len(batch)
            self.job_store.update_progress(
                job_id, done, total, f"{done}/{total} {reconciler.label}"
            )
            if index and index % PROGRESS_LOG_EVERY == 0:
                elapsed = monotonic() - started
                rate = round((done - done_before) / elapsed) if elapsed else 0
                self.job_store.add_log(
                    job_id,
                    "info",
                    f"{reconciler.label.capitalize()}: {done}/{total} "
                    f"({rate}/sec, {result.added} new)",
                )
        return True
