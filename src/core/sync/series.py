"""Series and episode catalog synchronization."""

from typing import Any
from uuid import uuid4

from src import log
from src.config.database import db
from src.core.reconcile import (
    BulkReconciler,
    KnownIdentifiers,
    ReconcileResult,
    clamp_rating,
)
from src.core.sync.base import CatalogSyncClient, catalog_row
from src.models.db.catalog import Episode, Series
from src.models.schemas.media_server import ProviderItem

__all__ = ["SeriesSyncClient"]

# Stub episode that generated libraries place at S00E00 so the media server
# keeps the series sorted; it carries no content of its own
PLACEHOLDER_EPISODE_TITLE = "Sorting Placeholder"
PLACEHOLDER_MARKER = "Placeholder"

EPISODE_NATURAL_KEY = ("series_id", "season_number", "episode_number")


def is_placeholder_episode(item: ProviderItem) -> bool:
    """Whether an episode is a sorting placeholder rather than real content."""
    if item.name == PLACEHOLDER_EPISODE_TITLE:
        return True
    return (
        item.parent_index_number == 0
        and item.index_number == 0
        and PLACEHOLDER_MARKER in item.name
    )


class SeriesSyncClient(CatalogSyncClient):
    """Mirrors every series and its episodes from the media server."""

    collection_type = "tvshows"

    def _series_row(self, item: ProviderItem, library_id: str | None) -> dict[str, Any]:
        row = catalog_row(item, self.provider, library_id)
        row.update(
            end_year=item.end_date.year if item.end_date else None,
            status=item.status,
            network=item.studios[0].name if item.studios else None,
            air_days=item.air_days,
            total_seasons=item.child_count,
            total_episodes=item.recursive_item_count,
        )
        return row

    def _episode_row(self, item: ProviderItem, series_id: int) -> dict[str, Any]:
        poster_tag = item.image_tags.get("Primary")
        return {
            "series_id": series_id,
            "provider_item_id": item.id,
            "season_number": item.parent_index_number,
            "episode_number": item.index_number,
            "title": item.name,
            "overview": item.overview,
            "premiere_date": item.premiere_day,
            "year": item.production_year,
            "runtime_minutes": item.runtime_minutes,
            "community_rating": clamp_rating(item.community_rating),
            "directors": [p.name for p in item.people_of("Director")],
            "writers": [p.name for p in item.people_of("Writer")],
            "guest_stars": [p.name for p in item.people_of("GuestStar")],
            "poster_url": (
                self.provider.get_poster_url(item.id, poster_tag)
                if poster_tag
                else None
            ),
        }

    @staticmethod
    def _result(
        job_id: str,
        series: ReconcileResult,
        episodes: ReconcileResult,
        total_series: int,
        total_episodes: int,
    ) -> dict[str, Any]:
        return {
            "series_added": series.added,
            "series_updated": series.updated,
            "series_repointed": series.repointed,
            "series_failed": series.failed,
            "episodes_added": episodes.added,
            "episodes_updated": episodes.updated,
            "episodes_failed": episodes.failed,
            "total_series": total_series,
            "total_episodes": total_episodes,
            "job_id": job_id,
        }

    async def sync(self, job_id: str | None = None) -> dict[str, Any]:
        """Synchronize series, then their episodes.

        The job has four steps: connect, count, series and episodes. Series are
        written first so episodes can resolve their owning row; episodes whose
        series is unknown are skipped.

        Args:
            job_id (str | None): Job id to report progress under

        Returns:
            dict[str, Any]: Added, updated and failed counters for both entities
        """
        job_id = job_id or str(uuid4())
        self.job_store.create(job_id, "sync-series", 4)
        series_result = ReconcileResult()
        episode_result = ReconcileResult()

        try:
            self.job_store.set_step(job_id, 0, "Connecting to media server")
            self.job_store.add_log(
                job_id,
                "info",
                f"Connecting to {str(self.server_config.type).upper()} server at "
                f"{self.server_config.url}",
            )
            self.job_store.add_log(
                job_id,
                "info",
                f"Performance: {self.server_config.series_page_size} series/page, "
                f"{self.server_config.episode_page_size} episodes/page, "
                f"{self.server_config.parallel_fetches} parallel",
            )
            libraries = self._library_scope(job_id)
            if not libraries:
                self.job_store.add_log(
                    job_id, "warn", "No TV libraries enabled for sync"
                )
                result = self._result(job_id, series_result, episode_result, 0, 0)
                self.job_store.complete(job_id, result)
                return result

            self.job_store.set_step(job_id, 1, "Fetching counts")
            counts: list[tuple[str | None, int, int]] = []
            for library_id in libraries:
                if self._cancel_requested(job_id, "series"):
                    return self._cancel(job_id, series_result, episode_result, 0, 0)
                series_count = await self._count(self.provider.get_series, library_id)
                episode_count = await self._count(
                    self.provider.get_episodes, library_id
                )
                counts.append((library_id, series_count, episode_count))
                self.job_store.add_log(
                    job_id,
                    "debug",
                    f"Library {library_id or 'all'}: {series_count} series, "
                    f"{episode_count} episodes",
                )
            total_series = sum(c[1] for c in counts)
            total_episodes = sum(c[2] for c in counts)
            self.job_store.add_log(
                job_id,
                "info",
                f"Found {total_series} series and {total_episodes} episodes",
            )

            if total_series == 0:
                self.job_store.add_log(
                    job_id, "warn", "No series found in media server library"
                )
                result = self._result(job_id, series_result, episode_result, 0, 0)
                self.job_store.complete(job_id, result)
                return result

            with db() as ctx:
                known_series = KnownIdentifiers.load(ctx.session, Series)
                known_episodes = KnownIdentifiers.load(
                    ctx.session, Episode, natural_key=None
                )
            self.job_store.add_log(
                job_id,
                "info",
                f"Found {len(known_series)} existing series, "
                f"{len(known_episodes)} existing episodes in database",
            )
            series_reconciler = BulkReconciler(Series, known_series, label="series")
            episode_reconciler = BulkReconciler(
                Episode,
                known_episodes,
                natural_key=None,
                conflict_columns=EPISODE_NATURAL_KEY,
                label="episodes",
            )

            self.job_store.set_step(job_id, 2, "Processing series", total_series)
            processed = 0
            for library_id, series_count, _ in counts:
                if not series_count:
                    continue
                if self._cancel_requested(job_id, "series"):
                    return self._cancel(
                        job_id, series_result, episode_result, total_series, 0
                    )
                items = await self._fetch_all(
                    job_id,
                    self.provider.get_series,
                    library_id,
                    series_count,
                    self.server_config.series_page_size,
                )
                self.job_store.add_log(
                    job_id, "info", f"Fetched {len(items)} series, now processing"
                )
                rows = [self._series_row(item, library_id) for item in items]
                if not await self._reconcile_batches(
                    job_id,
                    series_reconciler,
                    rows,
                    series_result,
                    done_before=processed,
                    total=total_series,
                ):
                    return self._cancel(
                        job_id, series_result, episode_result, total_series, 0
                    )
                processed += len(rows)

            self.job_store.add_log(
                job_id,
                "info",
                f"Series sync: {series_result.added} new, "
                f"{series_result.updated} updated ({processed} total)",
            )

            self.job_store.set_step(job_id, 3, "Processing episodes", total_episodes)
            series_ids = dict(known_series.by_provider_id)
            processed = 0
            skipped = 0
            for library_id, _, episode_count in counts:
                if not episode_count:
                    continue
                if self._cancel_requested(job_id, "episodes"):
                    return self._cancel(
                        job_id,
                        series_result,
                        episode_result,
                        total_series,
                        total_episodes,
                    )
                items = await self._fetch_all(
                    job_id,
                    self.provider.get_episodes,
                    library_id,
                    episode_count,
                    self.server_config.episode_page_size,
                )
                rows = []
                for item in items:
                    series_id = series_ids.get(item.series_id or "")
                    if is_placeholder_episode(item) or series_id is None:
                        skipped += 1
                        continue
                    rows.append(self._episode_row(item, series_id))
                if not await self._reconcile_batches(
                    job_id,
                    episode_reconciler,
                    rows,
                    episode_result,
                    done_before=processed,
                    total=total_episodes,
                ):
                    return self._cancel(
                        job_id,
                        series_result,
                        episode_result,
                        total_series,
                        total_episodes,
                    )
                processed += len(rows)

            if skipped:
                log.debug(f"Skipped {skipped} placeholder or orphaned episodes")

            result = self._result(
                job_id, series_result, episode_result, total_series, total_episodes
            )
            self.job_store.complete(job_id, result)
            log.success(
                f"Series sync complete: {series_result.added} series added, "
                f"{series_result.updated} updated; {episode_result.added} episodes "
                f"added, {episode_result.updated} updated"
            )
            return result
        except Exception as e:
            log.error("Series sync failed", exc_info=True)
            self.job_store.fail(job_id, str(e))
            raise

    def _cancel(
        self,
        job_id: str,
        series: ReconcileResult,
        episodes: ReconcileResult,
        total_series: int,
        total_episodes: int,
    ) -> dict[str, Any]:
        result = self._result(job_id, series, episodes, total_series, total_episodes)
        self.job_store.cancelled(job_id, result)
        return result

