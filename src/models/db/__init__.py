"""Models for ReelSync database tables."""

from src.models.db.api_error import ApiError, ApiErrorType
from src.models.db.base import Base
from src.models.db.catalog import Episode, Movie, Series
from src.models.db.housekeeping import SystemSetting
from src.models.db.users import LibraryConfig, User
from src.models.db.watch_history import MediaType, WatchHistory

__all__ = [
    "ApiError",
    "ApiErrorType",
    "Base",
    "Episode",
    "LibraryConfig",
    "MediaType",
    "Movie",
    "Series",
    "SystemSetting",
    "User",
    "WatchHistory",
]
