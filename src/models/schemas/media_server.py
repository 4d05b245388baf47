"""Media Server Models Module.

Typed views over the Emby/Jellyfin ``Items`` API. Both servers share the same
PascalCase JSON shape, so a single set of models covers them.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal

__all__ = [
    "ProviderItem",
    "ProviderLibrary",
    "ProviderPage",
    "ProviderUser",
    "UserData",
    "WatchedItem",
]


def _as_utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)


UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]


class MediaServerBaseModel(BaseModel):
    """Base model mapping snake_case fields onto the server's PascalCase keys."""

    model_config = ConfigDict(
        alias_generator=to_pascal, populate_by_name=True, extra="ignore"
    )


class NameRef(MediaServerBaseModel):
    """A named reference such as a studio."""

    name: str
    id: str | None = None


class Person(MediaServerBaseModel):
    """A cast or crew member of an item."""

    name: str
    type: str | None = None
    role: str | None = None
    primary_image_tag: str | None = None


class UserData(MediaServerBaseModel):
    """Per-user playback state attached to an item."""

    played: bool = False
    play_count: int = 0
    is_favorite: bool = False
    last_played_date: UTCDateTime | None = None


class ProviderItem(MediaServerBaseModel):
    """A series, episode or movie as returned by the ``Items`` endpoint."""

    id: str
    name: str = ""
    type: str | None = None
    original_title: str | None = None
    sort_name: str | None = None
    production_year: int | None = None
    premiere_date: UTCDateTime | None = None
    end_date: UTCDateTime | None = None
    overview: str | None = None
    tagline: str | None = None
    genres: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    studios: list[NameRef] = Field(default_factory=list)
    people: list[Person] = Field(default_factory=list)
    production_locations: list[str] = Field(default_factory=list)
    community_rating: Any = None  # range-checked later, servers emit junk here
    critic_rating: Any = None
    official_rating: str | None = None
    run_time_ticks: int | None = None
    path: str | None = None
    parent_id: str | None = None
    series_id: str | None = None
    series_name: str | None = None
    index_number: int | None = None
    parent_index_number: int | None = None
    status: str | None = None
    air_days: list[str] = Field(default_factory=list)
    child_count: int | None = None
    recursive_item_count: int | None = None
    provider_ids: dict[str, str | None] = Field(default_factory=dict)
    image_tags: dict[str, str] = Field(default_factory=dict)
    backdrop_image_tags: list[str] = Field(default_factory=list)
    user_data: UserData | None = None

    def people_of(self, *types: str) -> list[Person]:
        """Return people whose role type is one of ``types``."""
        return [p for p in self.people if p.type in types]

    def provider_id(self, name: str) -> str | None:
        """Look up an external id case-insensitively (``Imdb``, ``Tmdb``...)."""
        wanted = name.lower()
        for key, value in self.provider_ids.items():
            if key.lower() == wanted and value:
                return str(value)
        return None

    @property
    def premiere_day(self) -> date | None:
        """The premiere date without its time component."""
        return self.premiere_date.date() if self.premiere_date else None

    @property
    def runtime_minutes(self) -> int | None:
        """Runtime in minutes (one tick is 100ns)."""
        if not self.run_time_ticks:
            return None
        return round(self.run_time_ticks / 600_000_000)


class ProviderPage(BaseModel):
    """One page of a paginated provider listing."""

    items: list[ProviderItem] = Field(default_factory=list)
    total_record_count: int = 0
    start_index: int = 0


class ProviderUser(BaseModel):
    """A user account on the media server."""

    id: str
    name: str
    is_admin: bool = False
    is_disabled: bool = False
    email: str | None = None
    last_activity_date: UTCDateTime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> ProviderUser:
        """Build a user from a raw ``/Users`` entry."""
        policy = data.get("Policy") or {}
        return cls(
            id=data["Id"],
            name=data.get("Name", ""),
            is_admin=bool(policy.get("IsAdministrator", False)),
            is_disabled=bool(policy.get("IsDisabled", False)),
            email=data.get("Email") or None,
            last_activity_date=data.get("LastActivityDate"),
        )


class ProviderLibrary(BaseModel):
    """A top-level library (virtual folder) on the media server."""

    id: str
    name: str
    collection_type: str | None = None


class WatchedItem(BaseModel):
    """A played movie or episode reported for one user."""

    item_id: str
    parent_id: str | None = None
    play_count: int = 0
    is_favorite: bool = False
    last_played_at: UTCDateTime | None = None
