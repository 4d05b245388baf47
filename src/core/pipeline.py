"""Top-level synchronization pipeline."""

from collections.abc import Awaitable, Callable
from typing import Any

from src import log
from src.config.settings import ReelSyncConfig
from src.core.enrichment import MDBListEnricher
from src.core.jobs import JobProgressStore, get_job_store
from src.core.mdblist import MDBListClient
from src.core.media_server import JellyfinClient, MediaServerProvider
from src.core.sync.movies import MovieSyncClient
from src.core.sync.series import SeriesSyncClient
from src.core.users import UserSyncClient
from src.core.watch_history import WatchHistorySynchronizer

__all__ = ["LibrarySyncPipeline"]


class LibrarySyncPipeline:
    """Runs every stage of a sync in dependency order.

    Libraries and users are refreshed first, then series and movies are
    mirrored, the catalog is enriched from MDBList and finally every known
    user's watch history is synchronized. A failing stage is logged and the
    remaining stages still run; the run summary lists the failed stages.
    """

    def __init__(
        self,
        config: ReelSyncConfig,
        *,
        provider: MediaServerProvider | None = None,
        mdblist: MDBListClient | None = None,
        job_store: JobProgressStore | None = None,
    ) -> None:
        self.config = config
        self.provider = provider or JellyfinClient(config.media_server)
        self.mdblist = mdblist or MDBListClient(config.mdblist)
        self.job_store = job_store or get_job_store()
        provider_type = str(config.media_server.type)

        self.users = UserSyncClient(
            self.provider, provider_type=provider_type, job_store=self.job_store
        )
        self.series = SeriesSyncClient(
            self.provider,
            server_config=config.media_server,
            sync_config=config.sync,
            job_store=self.job_store,
        )
        self.movies = MovieSyncClient(
            self.provider,
            server_config=config.media_server,
            sync_config=config.sync,
            job_store=self.job_store,
        )
        self.enricher = MDBListEnricher(
            self.mdblist, config.enrichment, job_store=self.job_store
        )
        self.watch_history = WatchHistorySynchronizer(
            self.provider, provider_type=provider_type, job_store=self.job_store
        )

    async def _stage(
        self,
        name: str,
        summary: dict[str, Any],
        func: Callable[[], Awaitable[Any]],
    ) -> None:
        log.info(f"Starting stage $$'{name}'$$")
        try:
            summary[name] = await func()
        except Exception as e:
            log.error(f"Stage $$'{name}'$$ failed: {e}")
            summary["failed_stages"].append(name)

    async def _sync_libraries(self) -> dict[str, int]:
        libraries = await self.users.sync_libraries()
        return {"total": len(libraries)}

    async def _enrich(self) -> dict[str, Any]:
        result = await self.enricher.run()
        return result.as_dict()

    async def run_once(self) -> dict[str, Any]:
        """Run all stages once.

        Returns:
            dict[str, Any]: Per-stage results keyed by stage name, plus the list
                of ``failed_stages``
        """
        summary: dict[str, Any] = {"failed_stages": []}
        await self._stage("libraries", summary, self._sync_libraries)
        await self._stage("users", summary, self.users.sync_users)
        await self._stage("series", summary, self.series.sync)
        await self._stage("movies", summary, self.movies.sync)
        await self._stage("enrichment", summary, self._enrich)
        await self._stage(
            "watch_history",
            summary,
            lambda: self.watch_history.sync_for_all_users(
                full_sync=self.config.sync.full_watch_history
            ),
        )

        if summary["failed_stages"]:
            log.warning(
                f"Sync run finished with failures $${{stages: "
                f"{', '.join(summary['failed_stages'])}}}$$"
            )
        else:
            log.success("Sync run finished")
        return summary

    async def close(self) -> None:
        """Close the HTTP sessions of both clients."""
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()
        await self.mdblist.close()
