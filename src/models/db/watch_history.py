"""Watch History Database Model."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import CheckConstraint, ForeignKey, Index
from sqlalchemy.sql.sqltypes import Boolean, DateTime, Enum, Integer

from src.models.db.base import Base, utcnow

__all__ = ["MediaType", "WatchHistory"]


class MediaType(StrEnum):
    """Kinds of catalog items a user can have watched."""

    MOVIE = "movie"
    EPISODE = "episode"


class WatchHistory(Base):
    """Model for a user's consumption state of a single movie or episode."""

    __tablename__ = "watch_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    media_type: Mapped[MediaType] = mapped_column(Enum(MediaType))
    movie_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("movies.id", ondelete="CASCADE"), nullable=True
    )
    episode_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("episodes.id", ondelete="CASCADE"), nullable=True
    )

    play_count: Mapped[int] = mapped_column(Integer, default=0)
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False)
    last_played_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index(
            "uq_watch_history_user_movie",
            "user_id",
            "movie_id",
            unique=True,
            sqlite_where=text("movie_id IS NOT NULL"),
        ),
        Index(
            "uq_watch_history_user_episode",
            "user_id",
            "episode_id",
            unique=True,
            sqlite_where=text("episode_id IS NOT NULL"),
        ),
        CheckConstraint(
            "(movie_id IS NULL) != (episode_id IS NULL)",
            name="ck_watch_history_single_target",
        ),
    )
