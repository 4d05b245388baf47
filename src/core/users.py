"""User and library configuration synchronization."""

from collections.abc import Sequence
from typing import Any
from uuid import uuid4

from sqlalchemy import select

from src import log
from src.config.database import db
from src.core.jobs import JobProgressStore, get_job_store
from src.core.media_server import MediaServerProvider
from src.exceptions import UserNotFoundError
from src.models.db.users import LibraryConfig, User
from src.models.schemas.media_server import ProviderLibrary, ProviderUser

__all__ = ["UserSyncClient"]


class UserSyncClient:
    """Keeps local users and library settings in step with the media server.

    Users seen for the first time are imported disabled; an operator opts them
    in. Existing users get their admin flag refreshed and their email updated
    unless the email was locked locally.
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

    def import_missing_users(
        self, provider_users: Sequence[ProviderUser], job_id: str | None = None
    ) -> int:
        """Insert provider users that are not known locally, all disabled.

        Returns:
            int: The number of imported users
        """
        with db() as ctx:
            known = set(ctx.session.execute(select(User.provider_user_id)).scalars())
            new_users = [
                User(
                    username=pu.name,
                    provider_user_id=pu.id,
                    provider=self.provider_type,
                    email=pu.email,
                    is_admin=pu.is_admin,
                    is_enabled=False,
                    movies_enabled=False,
                    series_enabled=False,
                )
                for pu in provider_users
                if pu.id not in known
            ]
            if new_users:
                ctx.session.add_all(new_users)
                ctx.session.commit()

        for user in new_users:
            if job_id:
                self.job_store.add_log(
                    job_id, "info", f"Imported user: {user.username}"
                )
            else:
                log.info(f"Imported user $$'{user.username}'$$")
        return len(new_users)

    async def sync_users(self, job_id: str | None = None) -> dict[str, Any]:
        """Import new users and refresh existing ones from the media server.

        Returns:
            dict[str, Any]: ``imported``, ``updated``, ``total`` and ``job_id``
        """
        job_id = job_id or str(uuid4())
        self.job_store.create(job_id, "sync-users", 2)

        try:
            self.job_store.set_step(job_id, 0, "Fetching users from media server")
            provider_users = await self.provider.get_users()
            self.job_store.add_log(
                job_id, "info", f"Found {len(provider_users)} user(s) on media server"
            )

            self.job_store.set_step(job_id, 1, "Syncing users", len(provider_users))
            imported = 0
            updated = 0
            with db() as ctx:
                existing = {
                    u.provider_user_id: u
                    for u in ctx.session.execute(select(User)).scalars()
                }
                for i, pu in enumerate(provider_users):
                    self.job_store.update_progress(
                        job_id, i, len(provider_users), pu.name
                    )
                    user = existing.get(pu.id)
                    if user is None:
                        ctx.session.add(
                            User(
                                username=pu.name,
                                provider_user_id=pu.id,
                                provider=self.provider_type,
                                email=pu.email,
                                is_admin=pu.is_admin,
                                is_enabled=False,
                                movies_enabled=False,
                                series_enabled=False,
                            )
                        )
                        imported += 1
                        self.job_store.add_log(
                            job_id, "info", f"Imported new user: {pu.name}"
                        )
                        continue

                    changed = False
                    if user.is_admin != pu.is_admin:
                        user.is_admin = pu.is_admin
                        changed = True
                    if not user.email_locked and pu.email and user.email != pu.email:
                        user.email = pu.email
                        changed = True
                    if changed:
                        updated += 1
                        self.job_store.add_log(
                            job_id, "info", f"Updated user: {pu.name}"
                        )
                ctx.session.commit()

            self.job_store.update_progress(
                job_id, len(provider_users), len(provider_users)
            )
            result = {
                "imported": imported,
                "updated": updated,
                "total": len(provider_users),
                "job_id": job_id,
            }
            self.job_store.complete(job_id, result)
            log.success(
                f"User sync complete: {imported} imported, {updated} updated, "
                f"{len(provider_users)} total"
            )
            return result
        except Exception as e:
            log.error("User sync failed", exc_info=True)
            self.job_store.fail(job_id, str(e))
            raise

    async def sync_libraries(self) -> list[ProviderLibrary]:
        """Record the server's libraries, keeping existing enabled flags.

        New libraries start enabled.
        """
        libraries = await self.provider.get_libraries()
        with db() as ctx:
            existing = {
                lc.provider_library_id: lc
                for lc in ctx.session.execute(select(LibraryConfig)).scalars()
            }
            added = 0
            for library in libraries:
                if not library.id:
                    continue
                config = existing.get(library.id)
                if config is None:
                    ctx.session.add(
                        LibraryConfig(
                            provider_library_id=library.id,
                            name=library.name,
                            collection_type=library.collection_type,
                            is_enabled=True,
                        )
                    )
                    added += 1
                else:
                    config.name = library.name
                    config.collection_type = library.collection_type
            ctx.session.commit()

        log.info(
            f"Synced {len(libraries)} libraries from the media server "
            f"$${{new: {added}}}$$"
        )
        return libraries

    @staticmethod
    def get_enabled_library_ids(collection_type: str | None = None) -> list[str] | None:
        """Library ids that should be synchronized.

        Args:
            collection_type (str | None): Restrict to libraries of this type
                (``movies``, ``tvshows``)

        Returns:
            list[str] | None: None when no library is configured at all, meaning
                every library; otherwise the enabled ids, possibly empty
        """
        query = select(LibraryConfig)
        if collection_type is not None:
            query = query.where(LibraryConfig.collection_type == collection_type)
        with db() as ctx:
            configs = list(ctx.session.execute(query).scalars())
        if not configs:
            return None
        return [c.provider_library_id for c in configs if c.is_enabled]

    @staticmethod
    def set_library_enabled(provider_library_id: str, enabled: bool) -> bool:
        """Enable or disable synchronization of a library.

        Returns:
            bool: False if the library is unknown
        """
        with db() as ctx:
            config = ctx.session.execute(
                select(LibraryConfig).where(
                    LibraryConfig.provider_library_id == provider_library_id
                )
            ).scalar_one_or_none()
            if config is None:
                return False
            config.is_enabled = enabled
            ctx.session.commit()
        log.info(
            f"Library $$'{provider_library_id}'$$ "
            f"{'enabled' if enabled else 'disabled'}"
        )
        return True

    @staticmethod
    def _get_user(session, user_id: int) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    def get_excluded_libraries(self, user_id: int) -> list[str]:
        """Library ids whose items are left out of the user's watch history."""
        with db() as ctx:
            return list(self._get_user(ctx.session, user_id).excluded_library_ids or [])

    def set_excluded_libraries(self, user_id: int, library_ids: Sequence[str]) -> None:
        """Replace the user's excluded libraries."""
        with db() as ctx:
            user = self._get_user(ctx.session, user_id)
            user.excluded_library_ids = sorted(set(library_ids))
            ctx.session.commit()
        log.info(
            f"Updated excluded libraries for user $$'{user_id}'$$ "
            f"$${{count: {len(set(library_ids))}}}$$"
        )

    def toggle_library_exclusion(self, user_id: int, library_id: str) -> bool:
        """Flip the exclusion of one library for a user.

        Returns:
            bool: True if the library is excluded afterwards
        """
        excluded = set(self.get_excluded_libraries(user_id))
        if library_id in excluded:
            excluded.remove(library_id)
        else:
            excluded.add(library_id)
        self.set_excluded_libraries(user_id, excluded)
        return library_id in excluded

