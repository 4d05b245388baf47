"""Catalog Database Models."""

from datetime import date, datetime
from typing import Any

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import ForeignKey, Index, UniqueConstraint
from sqlalchemy.sql.sqltypes import JSON, Date, DateTime, Float, Integer, String, Text

from src.models.db.base import Base, TimestampMixin

__all__ = ["Episode", "MDBListMixin", "Movie", "Series"]


class MDBListMixin:
    """Enrichment columns populated from MDBList."""

    mdblist_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    rt_critic_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    rt_audience_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    metacritic_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    letterboxd_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    keywords: Mapped[list[str] | None] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    streaming_providers: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    mdblist_enriched_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, index=True
    )


class _CatalogColumns:
    """Descriptive metadata shared by series and movies."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_item_id: Mapped[str] = mapped_column(String, unique=True)
    provider_library_id: Mapped[str | None] = mapped_column(
        String, nullable=True, index=True
    )

    title: Mapped[str] = mapped_column(String)
    original_title: Mapped[str | None] = mapped_column(String, nullable=True)
    sort_title: Mapped[str | None] = mapped_column(String, nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    premiere_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    genres: Mapped[list[str]] = mapped_column(JSON, default=list)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    studios: Mapped[list[str]] = mapped_column(JSON, default=list)
    directors: Mapped[list[str]] = mapped_column(JSON, default=list)
    writers: Mapped[list[str]] = mapped_column(JSON, default=list)
    actors: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    production_countries: Mapped[list[str]] = mapped_column(JSON, default=list)

    community_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    critic_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    content_rating: Mapped[str | None] = mapped_column(String, nullable=True)

    imdb_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    tmdb_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    tvdb_id: Mapped[str | None] = mapped_column(String, nullable=True)

    poster_url: Mapped[str | None] = mapped_column(String, nullable=True)
    backdrop_url: Mapped[str | None] = mapped_column(String, nullable=True)


class Series(_CatalogColumns, MDBListMixin, TimestampMixin, Base):
    """Model for a series mirrored from the media server."""

    __tablename__ = "series"

    end_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    network: Mapped[str | None] = mapped_column(String, nullable=True)
    air_days: Mapped[list[str]] = mapped_column(JSON, default=list)
    total_seasons: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_episodes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (Index("ix_series_title_year", "title", "year"),)


class Movie(_CatalogColumns, MDBListMixin, TimestampMixin, Base):
    """Model for a movie mirrored from the media server."""

    __tablename__ = "movies"

    tagline: Mapped[str | None] = mapped_column(String, nullable=True)
    runtime_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    path: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (Index("ix_movies_title_year", "title", "year"),)


class Episode(TimestampMixin, Base):
    """Model for an episode owned by a series."""

    __tablename__ = "episodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    series_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("series.id", ondelete="CASCADE"), index=True
    )
    provider_item_id: Mapped[str] = mapped_column(String, unique=True)

    season_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    episode_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str] = mapped_column(String)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    premiere_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    runtime_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    community_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    directors: Mapped[list[str]] = mapped_column(JSON, default=list)
    writers: Mapped[list[str]] = mapped_column(JSON, default=list)
    guest_stars: Mapped[list[str]] = mapped_column(JSON, default=list)
    poster_url: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "series_id",
            "season_number",
            "episode_number",
            name="uq_episodes_series_season_episode",
        ),
    )
