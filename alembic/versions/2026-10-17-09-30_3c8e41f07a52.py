"""Initial ReelSync catalog schema

Revision ID: 3c8e41f07a52
Revises:
Create Date: 2026-10-17 09:30:12.481903

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "3c8e41f07a52"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _catalog_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_item_id", sa.String(), nullable=False, unique=True),
        sa.Column("provider_library_id", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("original_title", sa.String(), nullable=True),
        sa.Column("sort_title", sa.String(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("premiere_date", sa.Date(), nullable=True),
        sa.Column("overview", sa.Text(), nullable=True),
        sa.Column("genres", sa.JSON(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("studios", sa.JSON(), nullable=False),
        sa.Column("directors", sa.JSON(), nullable=False),
        sa.Column("writers", sa.JSON(), nullable=False),
        sa.Column("actors", sa.JSON(), nullable=False),
        sa.Column("production_countries", sa.JSON(), nullable=False),
        sa.Column("community_rating", sa.Float(), nullable=True),
        sa.Column("critic_rating", sa.Float(), nullable=True),
        sa.Column("content_rating", sa.String(), nullable=True),
        sa.Column("imdb_id", sa.String(), nullable=True),
        sa.Column("tmdb_id", sa.String(), nullable=True),
        sa.Column("tvdb_id", sa.String(), nullable=True),
        sa.Column("poster_url", sa.String(), nullable=True),
        sa.Column("backdrop_url", sa.String(), nullable=True),
        sa.Column("mdblist_score", sa.Float(), nullable=True),
        sa.Column("rt_critic_score", sa.Float(), nullable=True),
        sa.Column("rt_audience_score", sa.Float(), nullable=True),
        sa.Column("metacritic_score", sa.Float(), nullable=True),
        sa.Column("letterboxd_score", sa.Float(), nullable=True),
        sa.Column("keywords", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("streaming_providers", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("mdblist_enriched_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    ]


def _catalog_indexes(table: str) -> None:
    op.create_index(f"ix_{table}_provider_library_id", table, ["provider_library_id"])
    op.create_index(f"ix_{table}_imdb_id", table, ["imdb_id"])
    op.create_index(f"ix_{table}_tmdb_id", table, ["tmdb_id"])
    op.create_index(f"ix_{table}_mdblist_enriched_at", table, ["mdblist_enriched_at"])
    op.create_index(f"ix_{table}_title_year", table, ["title", "year"])


def upgrade() -> None:
    op.create_table(
        "series",
        *_catalog_columns(),
        sa.Column("end_year", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("network", sa.String(), nullable=True),
        sa.Column("air_days", sa.JSON(), nullable=False),
        sa.Column("total_seasons", sa.Integer(), nullable=True),
        sa.Column("total_episodes", sa.Integer(), nullable=True),
    )
    _catalog_indexes("series")

    op.create_table(
        "movies",
        *_catalog_columns(),
        sa.Column("tagline", sa.String(), nullable=True),
        sa.Column("runtime_minutes", sa.Integer(), nullable=True),
        sa.Column("path", sa.String(), nullable=True),
    )
    _catalog_indexes("movies")

    op.create_table(
        "episodes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "series_id",
            sa.Integer(),
            sa.ForeignKey("series.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider_item_id", sa.String(), nullable=False, unique=True),
        sa.Column("season_number", sa.Integer(), nullable=True),
        sa.Column("episode_number", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("overview", sa.Text(), nullable=True),
        sa.Column("premiere_date", sa.Date(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("runtime_minutes", sa.Integer(), nullable=True),
        sa.Column("community_rating", sa.Float(), nullable=True),
        sa.Column("directors", sa.JSON(), nullable=False),
        sa.Column("writers", sa.JSON(), nullable=False),
        sa.Column("guest_stars", sa.JSON(), nullable=False),
        sa.Column("poster_url", sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "series_id",
            "season_number",
            "episode_number",
            name="uq_episodes_series_season_episode",
        ),
    )
    op.create_index("ix_episodes_series_id", "episodes", ["series_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("provider_user_id", sa.String(), nullable=False, unique=True),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("email_locked", sa.Boolean(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False),
        sa.Column("movies_enabled", sa.Boolean(), nullable=False),
        sa.Column("series_enabled", sa.Boolean(), nullable=False),
        sa.Column("excluded_library_ids", sa.JSON(), nullable=False),
        sa.Column("movies_watch_history_synced_at", sa.DateTime(), nullable=True),
        sa.Column("series_watch_history_synced_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_is_enabled", "users", ["is_enabled"])

    op.create_table(
        "library_config",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_library_id", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("collection_type", sa.String(), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "watch_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "media_type",
            sa.Enum("MOVIE", "EPISODE", name="mediatype"),
            nullable=False,
        ),
        sa.Column(
            "movie_id",
            sa.Integer(),
            sa.ForeignKey("movies.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "episode_id",
            sa.Integer(),
            sa.ForeignKey("episodes.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("play_count", sa.Integer(), nullable=False),
        sa.Column("is_favorite", sa.Boolean(), nullable=False),
        sa.Column("last_played_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "(movie_id IS NULL) != (episode_id IS NULL)",
            name="ck_watch_history_single_target",
        ),
    )
    op.create_index("ix_watch_history_user_id", "watch_history", ["user_id"])
    op.create_index(
        "uq_watch_history_user_movie",
        "watch_history",
        ["user_id", "movie_id"],
        unique=True,
        sqlite_where=sa.text("movie_id IS NOT NULL"),
    )
    op.create_index(
        "uq_watch_history_user_episode",
        "watch_history",
        ["user_id", "episode_id"],
        unique=True,
        sqlite_where=sa.text("episode_id IS NOT NULL"),
    )

    op.create_table(
        "api_errors",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column(
            "error_type",
            sa.Enum("RATE_LIMIT", "AUTH", "NOT_FOUND", "OUTAGE", name="apierrortype"),
            nullable=False,
        ),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("http_status", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("reset_at", sa.DateTime(), nullable=True),
        sa.Column("action_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("dismissed_at", sa.DateTime(), nullable=True),
    )
    op.create_index(
        "ix_api_errors_similar",
        "api_errors",
        ["provider", "error_type", "http_status", "created_at"],
    )

    op.create_table(
        "system_settings",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("system_settings")
    op.drop_index("ix_api_errors_similar", table_name="api_errors")
    op.drop_table("api_errors")
    op.drop_table("watch_history")
    op.drop_table("library_config")
    op.drop_table("users")
    op.drop_table("episodes")
    op.drop_table("movies")
    op.drop_table("series")
