"""MDBList Models Module."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

__all__ = [
    "EnrichmentData",
    "MDBListItem",
    "MDBListRating",
    "MDBListUserInfo",
    "StreamingProvider",
]


class MDBListBaseModel(BaseModel):
    """Base model for MDBList payloads; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class MDBListRating(MDBListBaseModel):
    """A single rating source (``imdb``, ``tomatoes``, ``letterboxd``...)."""

    source: str
    value: float | None = None
    score: float | None = None
    votes: int | None = None


class MDBListKeyword(MDBListBaseModel):
    """A keyword attached to an item."""

    id: int | None = None
    name: str


class StreamingProvider(MDBListBaseModel):
    """A streaming service offering an item."""

    id: int | str | None = None
    name: str


class MDBListItem(MDBListBaseModel):
    """An item returned by the lookup or batch endpoints.

    MDBList has used two layouts for external ids: flat ``imdbid``/``tmdbid`` keys
    and a nested ``ids`` object. Both are normalized onto the flat fields.
    """

    _ID_KEYS: ClassVar[dict[str, str]] = {
        "imdb": "imdbid",
        "tmdb": "tmdbid",
        "tvdb": "tvdbid",
        "trakt": "traktid",
    }

    title: str | None = None
    year: int | None = None
    type: str | None = None
    imdbid: str | None = None
    tmdbid: int | None = None
    tvdbid: int | None = None
    traktid: int | None = None
    score: float | None = None
    ratings: list[MDBListRating] = Field(default_factory=list)
    keywords: list[MDBListKeyword] = Field(default_factory=list)
    watch_providers: list[StreamingProvider] = Field(default_factory=list)
    streams: list[StreamingProvider] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize_ids(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        ids = data.get("ids")
        if isinstance(ids, dict):
            data = dict(data)
            for nested, flat in cls._ID_KEYS.items():
                if data.get(flat) is None and ids.get(nested) is not None:
                    data[flat] = ids[nested]
        # The score sometimes lives under "info" instead of the top level
        info = data.get("info")
        if data.get("score") is None and isinstance(info, dict):
            data = dict(data)
            data["score"] = info.get("score")
        return data

    def rating(self, source: str) -> MDBListRating | None:
        """Return the rating entry for ``source``, if present."""
        for rating in self.ratings:
            if rating.source == source:
                return rating
        return None


class EnrichmentData(BaseModel):
    """Enrichment values written onto a catalog row.

    ``None`` means "unknown"; the writer keeps the previously stored value.
    """

    mdblist_score: float | None = None
    rt_critic_score: float | None = None
    rt_audience_score: float | None = None
    metacritic_score: float | None = None
    letterboxd_score: float | None = None
    keywords: list[str] | None = None
    streaming_providers: list[dict[str, Any]] | None = None


class MDBListUserInfo(MDBListBaseModel):
    """Account information returned by ``GET /user``."""

    user_id: int | None = None
    username: str | None = None
    patron_status: str | None = None
    api_requests: int | None = None
    api_requests_count: int | None = None

    @property
    def is_supporter(self) -> bool:
        """Whether the account has a supporter (patron) tier."""
        status = (self.patron_status or "").strip().lower()
        return status not in ("", "none", "former_patron", "declined_patron")
