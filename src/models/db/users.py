"""User and Library Database Models."""

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql.sqltypes import JSON, Boolean, DateTime, Integer, String

from src.models.db.base import Base, TimestampMixin

__all__ = ["LibraryConfig", "User"]


class User(TimestampMixin, Base):
    """Model for a local account linked to a media server user.

    Users imported automatically from the media server start disabled; an operator
    has to opt them in before their watch history is synchronized.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String)
    provider_user_id: Mapped[str] = mapped_column(String, unique=True)
    provider: Mapped[str] = mapped_column(String, default="emby")
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    email_locked: Mapped[bool] = mapped_column(Boolean, default=False)

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    movies_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    series_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    excluded_library_ids: Mapped[list[str]] = mapped_column(JSON, default=list)

    movies_watch_history_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    series_watch_history_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )


class LibraryConfig(TimestampMixin, Base):
    """Model for a media server library and whether it is synchronized."""

    __tablename__ = "library_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_library_id: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[str] = mapped_column(String)
    collection_type: Mapped[str | None] = mapped_column(String, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
