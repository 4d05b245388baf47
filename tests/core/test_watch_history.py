"""Tests for watch history synchronization."""

from datetime import UTC, datetime

import pytest
from sqlalchemy import select

from src.core.jobs import JobStatus
from src.core.watch_history import WatchHistorySynchronizer
from src.exceptions import UserNotFoundError
from src.models.db.catalog import Episode, Movie, Series
from src.models.db.users import User
from src.models.db.watch_history import MediaType, WatchHistory
from src.models.schemas.media_server import ProviderUser, WatchedItem
from tests.core.fakes import FakeMediaServer


def _seed_catalog(catalog_db) -> dict[str, int]:
    with catalog_db as ctx:
        movies = [
            Movie(provider_item_id="m1", title="Alpha", provider_library_id="lib-a"),
            Movie(provider_item_id="m2", title="Beta", provider_library_id="lib-a"),
            Movie(provider_item_id="m3", title="Gamma", provider_library_id="lib-kids"),
        ]
        series = Series(provider_item_id="s1", title="Show", provider_library_id="lib-tv")
        ctx.session.add_all([*movies, series])
        ctx.session.flush()
        episode = Episode(
            series_id=series.id,
            provider_item_id="e1",
            title="Pilot",
            season_number=1,
            episode_number=1,
        )
        ctx.session.add(episode)
        ctx.session.commit()
        return {
            **{m.provider_item_id: m.id for m in movies},
            "e1": episode.id,
        }


def _add_user(catalog_db, **fields) -> int:
    values = {
        "username": "alice",
        "provider_user_id": "u-alice",
        "is_enabled": True,
        "movies_enabled": True,
        "series_enabled": True,
        **fields,
    }
    with catalog_db as ctx:
        user = User(**values)
        ctx.session.add(user)
        ctx.session.commit()
        return user.id


def _history(catalog_db, user_id: int) -> dict[tuple[MediaType, int], WatchHistory]:
    with catalog_db as ctx:
        rows = ctx.session.execute(
            select(WatchHistory).where(WatchHistory.user_id == user_id)
        ).scalars()
        return {(r.media_type, r.movie_id or r.episode_id): r for r in rows}


def _watched(item_id: str, plays: int = 1, **extra) -> WatchedItem:
    return WatchedItem(
        item_id=item_id,
        play_count=plays,
        last_played_at=datetime(2026, 1, 1, tzinfo=UTC),
        **extra,
    )


@pytest.mark.asyncio
async def test_full_sync_removes_entries_no_longer_reported(
    catalog_db, job_store
) -> None:
    """A full sync mirrors the server exactly, a delta sync only adds."""
    ids = _seed_catalog(catalog_db)
    user_id = _add_user(catalog_db)
    server = FakeMediaServer(
        watched={
            ("u-alice", MediaType.MOVIE): [_watched("m1"), _watched("m2", 3)],
            ("u-alice", MediaType.EPISODE): [_watched("e1", is_favorite=True)],
        }
    )
    sync = WatchHistorySynchronizer(server, job_store=job_store)

    first = await sync.sync_for_user(user_id, full_sync=True)
    assert (first.synced, first.removed) == (3, 0)
    history = _history(catalog_db, user_id)
    assert history[(MediaType.MOVIE, ids["m2"])].play_count == 3
    assert history[(MediaType.EPISODE, ids["e1"])].is_favorite is True

    # m2 is gone from the server; a delta sync keeps it
    server.watched[("u-alice", MediaType.MOVIE)] = [_watched("m1", 2)]
    delta = await sync.sync_for_user(user_id)
    assert delta.removed == 0
    assert (MediaType.MOVIE, ids["m2"]) in _history(catalog_db, user_id)
    assert _history(catalog_db, user_id)[(MediaType.MOVIE, ids["m1"])].play_count == 2

    full = await sync.sync_for_user(user_id, full_sync=True)
    assert full.removed == 1
    assert (MediaType.MOVIE, ids["m2"]) not in _history(catalog_db, user_id)
    assert (MediaType.EPISODE, ids["e1"]) in _history(catalog_db, user_id)


@pytest.mark.asyncio
async def test_delta_sync_asks_for_changes_since_last_sync(
    catalog_db, job_store
) -> None:
    """The first sync fetches everything, later delta syncs pass a cutoff."""
    _seed_catalog(catalog_db)
    user_id = _add_user(
        catalog_db, is_enabled=False, movies_enabled=False, series_enabled=False
    )
    server = FakeMediaServer()
    sync = WatchHistorySynchronizer(server, job_store=job_store)

    await sync.sync_for_user(user_id)
    await sync.sync_for_user(user_id)
    await sync.sync_for_user(user_id, full_sync=True)

    movie_sinces = [
        since for _, media, since in server.watch_requests if media == MediaType.MOVIE
    ]
    assert movie_sinces[0] is None
    assert movie_sinces[1] is not None and movie_sinces[1].tzinfo is not None
    assert movie_sinces[2] is None
    # Enabled flags do not gate the history: both media types are requested
    assert {media for _, media, _ in server.watch_requests} == {
        MediaType.MOVIE,
        MediaType.EPISODE,
    }


@pytest.mark.asyncio
async def test_excluded_libraries_are_never_stored(catalog_db, job_store) -> None:
    """Items under an excluded library are dropped, unknown items too."""
    ids = _seed_catalog(catalog_db)
    user_id = _add_user(catalog_db, excluded_library_ids=["lib-kids"])
    server = FakeMediaServer(
        watched={
            ("u-alice", MediaType.MOVIE): [
                _watched("m1"),
                _watched("m3"),
                _watched("not-in-catalog"),
            ]
        }
    )

    result = await WatchHistorySynchronizer(server, job_store=job_store).sync_for_user(
        user_id
    )

    assert result.synced == 1
    assert list(_history(catalog_db, user_id)) == [(MediaType.MOVIE, ids["m1"])]


@pytest.mark.asyncio
async def test_unknown_user_raises(catalog_db, job_store) -> None:
    """Syncing a user id that does not exist is an error."""
    sync = WatchHistorySynchronizer(FakeMediaServer(), job_store=job_store)

    with pytest.raises(UserNotFoundError):
        await sync.sync_for_user(404)


@pytest.mark.asyncio
async def test_sync_for_all_users_imports_and_counts_failures(
    catalog_db, job_store, monkeypatch
) -> None:
    """Imported users are disabled but synced; one failure does not stop others."""
    _seed_catalog(catalog_db)
    _add_user(catalog_db)
    _add_user(catalog_db, username="bob", provider_user_id="u-bob")
    server = FakeMediaServer(
        users=[
            ProviderUser(id="u-alice", name="alice"),
            ProviderUser(id="u-bob", name="bob"),
            ProviderUser(id="u-carol", name="carol"),
        ],
        watched={("u-alice", MediaType.MOVIE): [_watched("m1"), _watched("m2")]},
    )
    sync = WatchHistorySynchronizer(server, job_store=job_store)

    original = server.get_watch_history

    async def flaky_history(provider_user_id, media_type, since=None):
        if provider_user_id == "u-bob":
            raise ConnectionError("server went away")
        return await original(provider_user_id, media_type, since)

    monkeypatch.setattr(server, "get_watch_history", flaky_history)

    result = await sync.sync_for_all_users("job-1")

    assert result == {
        "success": 2,
        "failed": 1,
        "total_items": 2,
        "job_id": "job-1",
    }
    with catalog_db as ctx:
        carol = ctx.session.execute(
            select(User).where(User.provider_user_id == "u-carol")
        ).scalar_one()
    assert carol.is_enabled is False
    assert ("u-carol", MediaType.MOVIE, None) in server.watch_requests
    assert job_store.get("job-1").status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_sync_for_all_users_stops_when_cancelled(catalog_db, job_store) -> None:
    """Users after a cancel request are not synced."""
    _seed_catalog(catalog_db)
    _add_user(catalog_db)
    _add_user(catalog_db, username="bob", provider_user_id="u-bob")
    server = FakeMediaServer()
    sync = WatchHistorySynchronizer(server, job_store=job_store)

    original = server.get_watch_history

    async def cancelling_history(provider_user_id, media_type, since=None):
        job_store.request_cancel("job-1")
        return await original(provider_user_id, media_type, since)

    server.get_watch_history = cancelling_history

    result = await sync.sync_for_all_users("job-1")

    assert result["success"] == 1
    assert {uid for uid, _, _ in server.watch_requests} == {"u-alice"}
    assert job_store.get("job-1").status == JobStatus.CANCELLED
