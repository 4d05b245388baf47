"""Movie catalog synchronization."""

from typing import Any
from uuid import uuid4

from src import log
from src.config.database import db
from src.core.reconcile import BulkReconciler, KnownIdentifiers, ReconcileResult
from src.core.sync.base import CatalogSyncClient, catalog_row
from src.models.db.catalog import Movie
from src.models.schemas.media_server import ProviderItem

__all__ = ["MovieSyncClient"]


class MovieSyncClient(CatalogSyncClient):
    """Mirrors every movie from the media server."""

    collection_type = "movies"

    def _movie_row(self, item: ProviderItem, library_id: str | None) -> dict[str, Any]:
        row = catalog_row(item, self.provider, library_id)
        row.update(
            tagline=item.tagline,
            runtime_minutes=item.runtime_minutes,
            path=item.path,
        )
        return row

    @staticmethod
    def _result(job_id: str, movies: ReconcileResult, total: int) -> dict[str, Any]:
        return {
            "added": movies.added,
            "updated": movies.updated,
            "repointed": movies.repointed,
            "failed": movies.failed,
            "total": total,
            "job_id": job_id,
        }

    async def sync(self, job_id: str | None = None) -> dict[str, Any]:
        """Synchronize movies in the steps connect, count, fetch and process.

        Returns:
            dict[str, Any]: ``added``, ``updated``, ``repointed``, ``failed``,
                ``total`` and ``job_id``
        """
        job_id = job_id or str(uuid4())
        self.job_store.create(job_id, "sync-movies", 4)
        movies = ReconcileResult()

        try:
            self.job_store.set_step(job_id, 0, "Connecting to media server")
            self.job_store.add_log(
                job_id,
                "info",
                f"Connecting to {str(self.server_config.type).upper()} server at "
                f"{self.server_config.url}",
            )
            libraries = self._library_scope(job_id)
            if not libraries:
                self.job_store.add_log(
                    job_id, "warn", "No movie libraries enabled for sync"
                )
                result = self._result(job_id, movies, 0)
                self.job_store.complete(job_id, result)
                return result

            self.job_store.set_step(job_id, 1, "Fetching counts")
            counts: list[tuple[str | None, int]] = []
            for library_id in libraries:
                if self._cancel_requested(job_id, "movies"):
                    return self._cancel(job_id, movies, 0)
                count = await self._count(self.provider.get_movies, library_id)
                counts.append((library_id, count))
            total = sum(c for _, c in counts)
            self.job_store.add_log(job_id, "info", f"Found {total} movies")

            if total == 0:
                self.job_store.add_log(
                    job_id, "warn", "No movies found in media server library"
                )
                result = self._result(job_id, movies, 0)
                self.job_store.complete(job_id, result)
                return result

            self.job_store.set_step(job_id, 2, "Fetching movies", total)
            fetched: list[tuple[str | None, list[ProviderItem]]] = []
            for library_id, count in counts:
                if not count:
                    continue
                if self._cancel_requested(job_id, "movies"):
                    return self._cancel(job_id, movies, total)
                items = await self._fetch_all(
                    job_id,
                    self.provider.get_movies,
                    library_id,
                    count,
                    self.server_config.movie_page_size,
                )
                fetched.append((library_id, items))
                self.job_store.update_progress(
                    job_id, sum(len(i) for _, i in fetched), total
                )
            if self._cancel_requested(job_id, "movies"):
                return self._cancel(job_id, movies, total)

            with db() as ctx:
                known = KnownIdentifiers.load(ctx.session, Movie)
            self.job_store.add_log(
                job_id, "info", f"Found {len(known)} existing movies in database"
            )
            reconciler = BulkReconciler(Movie, known, label="movies")

            self.job_store.set_step(job_id, 3, "Processing movies", total)
            processed = 0
            for library_id, items in fetched:
                rows = [self._movie_row(item, library_id) for item in items]
                if not await self._reconcile_batches(
                    job_id,
                    reconciler,
                    rows,
                    movies,
                    done_before=processed,
                    total=total,
                ):
                    return self._cancel(job_id, movies, total)
                processed += len(rows)

            result = self._result(job_id, movies, total)
            self.job_store.complete(job_id, result)
            log.success(
                f"Movie sync complete: {movies.added} added, {movies.updated} "
                f"updated, {movies.repointed} repointed, {movies.failed} failed"
            )
            return result
        except Exception as e:
            log.error("Movie sync failed", exc_info=True)
            self.job_store.fail(job_id, str(e))
            raise

    def _cancel(self, job_id: str, movies: ReconcileResult, total: int) -> dict[str, Any]:
        result = self._result(job_id, movies, total)
        self.job_store.cancelled(job_id, result)
        return result
