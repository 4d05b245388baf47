"""Delta and full synchronization of user watch history."""

from dataclasses import dataclass
from datetime import UTC, datetime
from itertools import batched
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from src import log
from src.config.database import db
from src.core.jobs import JobProgressStore, get_job_store
from src.core.media_server import MediaServerProvider
from src.core.users import UserSyncClient
from src.exceptions import UserNotFoundError
from src.models.db.base import utcnow
from src.models.db.catalog import Episode, Movie, Series
from src.models.db.users import User
from src.models.db.watch_history import MediaType, WatchHistory

__all__ = ["WatchHistorySyncResult", "WatchHistorySynchronizer"]

SQLITE_SAFE_VARIABLES = 900


@dataclass
class WatchHistorySyncResult:
    """Rows written and removed by one user's sync."""

    synced: int = 0
    removed: int = 0


class WatchHistorySynchronizer:
    """Mirrors per-user consumption state from the media server.

    A delta sync only asks for items changed since the user's last sync and never
    removes anything. A full sync fetches the complete history and deletes local
    entries that are no longer reported. Items under a library the user excluded
    are never stored.
    """

    def __init__(
        self,
        provider: MediaServerProvider,
        *,
        provider_type: str = "emby",
        job_store: JobProgressStore | None = None,
    ) -> None:
        self.provider = provider
        self.provider_type = provider_type
        self.job_store = job_store or get_job_store()

    @staticmethod
    def _target_column(media_type: MediaType):
        return (
            WatchHistory.movie_id
            if media_type == MediaType.MOVIE
            else WatchHistory.episode_id
        )

    @staticmethod
    def _synced_at_column(media_type: MediaType):
        return (
            User.movies_watch_history_synced_at
            if media_type == MediaType.MOVIE
            else User.series_watch_history_synced_at
        )

    @staticmethod
    def _local_items(media_type: MediaType) -> dict[str, tuple[int, str | None]]:
        """Map provider item ids to local ids and their library id."""
        if media_type == MediaType.MOVIE:
            query = select(Movie.provider_item_id, Movie.id, Movie.provider_library_id)
        else:
            query = select(
                Episode.provider_item_id, Episode.id, Series.provider_library_id
            ).join(Series, Episode.series_id == Series.id)
        with db() as ctx:
            return {
                pid: (local_id, library_id)
                for pid, local_id, library_id in ctx.session.execute(query).tuples()
            }

    async def _sync_media_type(
        self,
        user: User,
        media_type: MediaType,
        full_sync: bool,
    ) -> WatchHistorySyncResult:
        result = WatchHistorySyncResult()
        synced_at_column = self._synced_at_column(media_type)
        target = self._target_column(media_type)

        since: datetime | None = None
        if not full_sync:
            since = getattr(user, synced_at_column.key)
            if since is not None and since.tzinfo is None:
                since = since.replace(tzinfo=UTC)

        watched = await self.provider.get_watch_history(
            user.provider_user_id, media_type, since
        )

        local_items = self._local_items(media_type)
        excluded = set(user.excluded_library_ids or [])
        rows: dict[int, dict[str, Any]] = {}
        skipped_excluded = 0
        for item in watched:
            local = local_items.get(item.item_id)
            if local is None:
                log.debug(
                    f"Watched {media_type} $$'{item.item_id}'$$ is not in the "
                    "catalog, skipping"
                )
                continue
            local_id, library_id = local
            if library_id is not None and library_id in excluded:
                skipped_excluded += 1
                continue
            rows[local_id] = {
                "user_id": user.id,
                "media_type": media_type,
                "movie_id": local_id if media_type == MediaType.MOVIE else None,
                "episode_id": local_id if media_type == MediaType.EPISODE else None,
                "play_count": item.play_count,
                "is_favorite": item.is_favorite,
                "last_played_at": item.last_played_at,
                "updated_at": utcnow(),
            }

        with db() as ctx:
            if rows:
                stmt = sqlite_insert(WatchHistory)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[WatchHistory.user_id, target],
                    index_where=target.is_not(None),
                    set_={
                        "play_count": stmt.excluded.play_count,
                        "last_played_at": stmt.excluded.last_played_at,
                        "is_favorite": stmt.excluded.is_favorite,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                ctx.session.execute(stmt, list(rows.values()))
                result.synced = len(rows)

            if full_sync:
                existing = set(
                    ctx.session.execute(
                        select(target).where(
                            WatchHistory.user_id == user.id,
                            WatchHistory.media_type == media_type,
                        )
                    ).scalars()
                )
                stale = sorted(existing - rows.keys())
                for chunk in batched(stale, SQLITE_SAFE_VARIABLES, strict=False):
                    ctx.session.execute(
                        delete(WatchHistory).where(
                            WatchHistory.user_id == user.id,
                            target.in_(chunk),
                        )
                    )
                result.removed = len(stale)

            ctx.session.execute(
                update(User).where(User.id == user.id).values(
                    {synced_at_column.key: utcnow()}
                )
            )
            ctx.session.commit()

        log.info(
            f"Synced {media_type} watch history for $$'{user.username}'$$ "
            f"$${{synced: {result.synced}, removed: {result.removed}, "
            f"excluded: {skipped_excluded}, delta: {since is not None}}}$$"
        )
        return result

    async def sync_for_user(
        self, user_id: int, provider_user_id: str | None = None, full_sync: bool = False
    ) -> WatchHistorySyncResult:
        """Sync the movie and episode watch history of one user.

        History is mirrored regardless of the user's enabled flags, so it is
        already in place when a user is opted in later.

        Args:
            user_id (int): Local user id
            provider_user_id (str | None): Media server user id, read from the user
                when omitted
            full_sync (bool): Fetch everything and prune stale entries

        Returns:
            WatchHistorySyncResult: Combined counters over both media types
        """
        with db() as ctx:
            user = ctx.session.get(User, user_id)
            if user is None:
                raise UserNotFoundError(f"User {user_id} not found")
        if provider_user_id is not None:
            user.provider_user_id = provider_user_id

        total = WatchHistorySyncResult()
        for media_type in (MediaType.MOVIE, MediaType.EPISODE):
            result = await self._sync_media_type(user, media_type, full_sync)
            total.synced += result.synced
            total.removed += result.removed
        return total

    async def sync_for_all_users(
        self, job_id: str | None = None, full_sync: bool = False
    ) -> dict[str, Any]:
        """Import unknown provider users, then sync every user with a server account.

        A failure for one user is logged and counted; the others still run.

        Returns:
            dict[str, Any]: ``success``, ``failed``, ``total_items`` and ``job_id``
        """
        job_id = job_id or str(uuid4())
        self.job_store.create(job_id, "sync-watch-history", 3)

        try:
            self.job_store.set_step(job_id, 0, "Fetching users from media server")
            provider_users = await self.provider.get_users()
            self.job_store.add_log(
                job_id, "info", f"Found {len(provider_users)} user(s) on media server"
            )
            imported = UserSyncClient(
                self.provider,
                provider_type=self.provider_type,
                job_store=self.job_store,
            ).import_missing_users(provider_users, job_id)
            if imported:
                self.job_store.add_log(job_id, "info", f"Imported {imported} user(s)")

            self.job_store.set_step(job_id, 1, "Finding users")
            with db() as ctx:
                users = list(
                    ctx.session.execute(
                        select(User.id, User.username).order_by(User.id)
                    ).tuples()
                )
            if not users:
                self.job_store.add_log(
                    job_id, "warn", "No users found with media server accounts"
                )

            self.job_store.set_step(job_id, 2, "Syncing watch history", len(users))
            success = 0
            failed = 0
            total_items = 0
            for i, (user_id, username) in enumerate(users):
                if self.job_store.is_cancelled(job_id):
                    result = {
                        "success": success,
                        "failed": failed,
                        "total_items": total_items,
                        "job_id": job_id,
                    }
                    self.job_store.cancelled(job_id, result)
                    return result

                self.job_store.update_progress(job_id, i, len(users), username)
                try:
                    user_result = await self.sync_for_user(user_id, full_sync=full_sync)
                except Exception as e:
                    failed += 1
                    log.error(
                        f"Watch history sync failed for $$'{username}'$$",
                        exc_info=True,
                    )
                    self.job_store.add_log(
                        job_id, "error", f"Failed to sync {username}: {e}"
                    )
                    continue
                success += 1
                total_items += user_result.synced
                self.job_store.add_log(
                    job_id,
                    "info",
                    f"{username}: {user_result.synced} items synced, "
                    f"{user_result.removed} removed",
                )

            self.job_store.update_progress(job_id, len(users), len(users))
            result = {
                "success": success,
                "failed": failed,
                "total_items": total_items,
                "job_id": job_id,
            }
            self.job_store.complete(job_id, result)
            log.success(
                f"Watch history synced for {success} user(s), {failed} failed, "
                f"{total_items} items"
            )
            return result
        except Exception as e:
            log.error("Watch history sync failed", exc_info=True)
            self.job_store.fail(job_id, str(e))
            raise
