"""Tests for the bulk reconciliation engine."""

import math

import pytest
from sqlalchemy import select

from src.core.reconcile import (
    MAX_RATING,
    BulkReconciler,
    KnownIdentifiers,
    catalog_natural_key,
    clamp_rating,
)
from src.models.db.catalog import Episode, Movie, Series

EPISODE_KEY = ("series_id", "season_number", "episode_number")


def _movie(pid: str, title: str = "Movie", year: int | None = 2020, **extra) -> dict:
    return {"provider_item_id": pid, "title": title, "year": year, **extra}


def _movie_reconciler(catalog_db) -> BulkReconciler:
    with catalog_db as ctx:
        known = KnownIdentifiers.load(ctx.session, Movie)
    return BulkReconciler(Movie, known)


def _series(catalog_db, pid: str = "s1") -> int:
    with catalog_db as ctx:
        series = Series(provider_item_id=pid, title="Show X", year=2020)
        ctx.session.add(series)
        ctx.session.commit()
        return series.id


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (15000, MAX_RATING),
        ("7.5", 7.5),
        (-3, 0.0),
        (None, None),
        ("n/a", None),
        (math.nan, None),
        (math.inf, None),
        (True, None),
    ],
)
def test_clamp_rating(value, expected) -> None:
    """Ratings are clamped to the column range and junk becomes None."""
    assert clamp_rating(value) == expected


def test_natural_key_requires_title_and_year() -> None:
    """Only titles with a known year produce a natural key."""
    assert catalog_natural_key("Show X", 2020) == "show x|2020"
    assert catalog_natural_key("Show X", None) is None
    assert catalog_natural_key("", 2020) is None


def test_second_run_is_all_updates(catalog_db) -> None:
    """Reconciling the same records twice inserts nothing the second time."""
    rows = [_movie("m1", "Alpha", 2001), _movie("m2", "Beta", 2002)]

    first = _movie_reconciler(catalog_db).reconcile(rows)
    second = _movie_reconciler(catalog_db).reconcile(rows)

    assert (first.added, first.updated) == (2, 0)
    assert (second.added, second.updated, second.repointed) == (0, 2, 0)
    with catalog_db as ctx:
        assert len(ctx.session.execute(select(Movie.id)).all()) == 2


def test_rows_inserted_earlier_in_a_run_are_known(catalog_db) -> None:
    """A later batch of the same run updates rows an earlier batch inserted."""
    reconciler = _movie_reconciler(catalog_db)

    reconciler.reconcile([_movie("m1", "Alpha", 2001)])
    result = reconciler.reconcile([_movie("m1", "Alpha (Remastered)", 2001)])

    assert (result.added, result.updated) == (0, 1)
    assert "m1" in reconciler.known
    with catalog_db as ctx:
        titles = ctx.session.execute(select(Movie.title)).scalars().all()
    assert titles == ["Alpha (Remastered)"]


def test_changed_provider_id_repoints_existing_row(catalog_db) -> None:
    """A new provider id with a known title and year takes over the old row."""
    _movie_reconciler(catalog_db).reconcile(
        [_movie("A", "Show X", 2020, poster_url="old.jpg")]
    )
    with catalog_db as ctx:
        original_id = ctx.session.execute(select(Movie.id)).scalar_one()

    reconciler = _movie_reconciler(catalog_db)
    result = reconciler.reconcile([_movie("B", "Show X", 2020, poster_url="new.jpg")])

    assert (result.added, result.updated, result.repointed) == (0, 0, 1)
    with catalog_db as ctx:
        movies = ctx.session.execute(select(Movie)).scalars().all()
    assert len(movies) == 1
    assert movies[0].id == original_id
    assert movies[0].provider_item_id == "B"
    assert movies[0].poster_url == "new.jpg"
    assert "B" in reconciler.known
    assert "A" not in reconciler.known


def test_repoint_alongside_updates_and_inserts(catalog_db) -> None:
    """A mixed batch repoints, updates and inserts in one pass."""
    _movie_reconciler(catalog_db).reconcile(
        [_movie("A", "Show X", 2020), _movie("K", "Kept", 2010)]
    )

    reconciler = _movie_reconciler(catalog_db)
    result = reconciler.reconcile(
        [
            _movie("B", "Show X", 2020),
            _movie("K", "Kept (Director's Cut)", 2010),
            _movie("N", "New", 2024),
        ]
    )

    assert (result.added, result.updated, result.repointed, result.failed) == (
        1,
        1,
        1,
        0,
    )
    assert set(reconciler.known.by_provider_id) == {"B", "K", "N"}

    # The old id now counts as a brand new record
    again = reconciler.reconcile([_movie("A", "Another Film", 2001)])
    assert again.added == 1
    with catalog_db as ctx:
        pids = ctx.session.execute(select(Movie.provider_item_id)).scalars().all()
    assert sorted(pids) == ["A", "B", "K", "N"]


def test_duplicate_natural_keys_in_one_batch_collapse(catalog_db) -> None:
    """Two new records with the same title and year insert a single row."""
    result = _movie_reconciler(catalog_db).reconcile(
        [
            _movie("m1", "Twin", 1999, overview="first"),
            _movie("m2", "Twin", 1999, overview="second"),
        ]
    )

    assert result.added == 1
    with catalog_db as ctx:
        movie = ctx.session.execute(select(Movie)).scalar_one()
    assert movie.provider_item_id == "m2"
    assert movie.overview == "second"


def test_titles_without_year_are_never_merged(catalog_db) -> None:
    """Records lacking a year cannot match each other by title."""
    result = _movie_reconciler(catalog_db).reconcile(
        [_movie("m1", "Untitled", None), _movie("m2", "Untitled", None)]
    )

    assert result.added == 2


def test_ratings_and_json_columns_are_stored(catalog_db) -> None:
    """Clamped ratings and list columns survive the bulk insert."""
    _movie_reconciler(catalog_db).reconcile(
        [
            _movie(
                "m1",
                community_rating=clamp_rating(15000),
                genres=["Drama", "Comedy"],
                actors=[{"name": "Someone", "role": "Lead"}],
            )
        ]
    )

    with catalog_db as ctx:
        movie = ctx.session.execute(select(Movie)).scalar_one()
    assert movie.community_rating == pytest.approx(999.99)
    assert movie.genres == ["Drama", "Comedy"]
    assert movie.actors == [{"name": "Someone", "role": "Lead"}]


def test_episode_duplicates_keep_last_record(catalog_db) -> None:
    """Episodes sharing series, season and number collapse to the last one."""
    series_id = _series(catalog_db)
    with catalog_db as ctx:
        known = KnownIdentifiers.load(ctx.session, Episode, natural_key=None)
    reconciler = BulkReconciler(
        Episode, known, natural_key=None, conflict_columns=EPISODE_KEY
    )

    base = {"series_id": series_id, "season_number": 1, "episode_number": 1}
    result = reconciler.reconcile(
        [
            {**base, "provider_item_id": "e1", "title": "Pilot"},
            {**base, "provider_item_id": "e2", "title": "Pilot (Extended)"},
        ]
    )

    assert result.failed == 0
    with catalog_db as ctx:
        episode = ctx.session.execute(select(Episode)).scalar_one()
    assert episode.provider_item_id == "e2"
    assert episode.title == "Pilot (Extended)"


def test_episode_upsert_takes_over_existing_slot(catalog_db) -> None:
    """A re-keyed episode updates the row already holding its slot."""
    series_id = _series(catalog_db)
    slot = {"series_id": series_id, "season_number": 2, "episode_number": 5}

    with catalog_db as ctx:
        known = KnownIdentifiers.load(ctx.session, Episode, natural_key=None)
    BulkReconciler(
        Episode, known, natural_key=None, conflict_columns=EPISODE_KEY
    ).reconcile([{**slot, "provider_item_id": "old", "title": "Old"}])

    with catalog_db as ctx:
        known = KnownIdentifiers.load(ctx.session, Episode, natural_key=None)
    reconciler = BulkReconciler(
        Episode, known, natural_key=None, conflict_columns=EPISODE_KEY
    )
    result = reconciler.reconcile([{**slot, "provider_item_id": "new", "title": "New"}])

    assert result.failed == 0
    with catalog_db as ctx:
        episodes = ctx.session.execute(select(Episode)).scalars().all()
    assert [(e.provider_item_id, e.title) for e in episodes] == [("new", "New")]
    assert "new" in reconciler.known


def test_failed_batch_is_rolled_back(catalog_db) -> None:
    """A failing statement counts the whole batch as failed and writes nothing."""
    with catalog_db as ctx:
        known = KnownIdentifiers.load(ctx.session, Episode, natural_key=None)
    reconciler = BulkReconciler(Episode, known, natural_key=None)

    # No series with id 1 exists and title is NOT NULL
    result = reconciler.reconcile(
        [
            {"provider_item_id": "e1", "series_id": 1, "title": "Fine"},
            {"provider_item_id": "e2", "series_id": 1, "title": None},
        ]
    )

    assert result.failed == 2
    assert result.added == 0
    assert len(reconciler.known) == 0
    with catalog_db as ctx:
        assert ctx.session.execute(select(Episode.id)).all() == []
