"""Media Server Client."""

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

import aiohttp

from src import __version__, log
from src.config.settings import MediaServerConfig
from src.exceptions import (
    MediaServerConfigError,
    MediaServerRequestError,
    UnsupportedMediaTypeError,
)
from src.models.db.watch_history import MediaType
from src.models.schemas.media_server import (
    ProviderItem,
    ProviderLibrary,
    ProviderPage,
    ProviderUser,
    WatchedItem,
)

__all__ = ["JellyfinClient", "MediaServerProvider"]

SERIES_FIELDS = (
    "Overview,Genres,ProductionYear,CommunityRating,CriticRating,OriginalTitle,"
    "ParentId,SortName,Tagline,OfficialRating,PremiereDate,EndDate,Studios,People,"
    "ProviderIds,Tags,ProductionLocations,Status,AirDays,ChildCount,"
    "RecursiveItemCount"
)
EPISODE_FIELDS = (
    "Overview,ProductionYear,CommunityRating,PremiereDate,Path,People,SeriesName,"
    "ParentId"
)
MOVIE_FIELDS = (
    "Overview,Genres,ProductionYear,CommunityRating,CriticRating,Path,"
    "OriginalTitle,ParentId,SortName,Tagline,OfficialRating,PremiereDate,Studios,"
    "People,ProviderIds,Tags,ProductionLocations"
)
WATCH_HISTORY_PAGE_SIZE = 500
MAX_ATTEMPTS = 3


class MediaServerProvider(Protocol):
    """Read-only view of an Emby-compatible media server."""

    async def get_series(
        self, start_index: int, limit: int, parent_ids: Sequence[str] | None = None
    ) -> ProviderPage: ...

    async def get_episodes(
        self, start_index: int, limit: int, parent_ids: Sequence[str] | None = None
    ) -> ProviderPage: ...

    async def get_movies(
        self, start_index: int, limit: int, parent_ids: Sequence[str] | None = None
    ) -> ProviderPage: ...

    async def get_users(self) -> list[ProviderUser]: ...

    async def get_watch_history(
        self,
        provider_user_id: str,
        media_type: MediaType,
        since: datetime | None = None,
    ) -> list[WatchedItem]: ...

    async def get_libraries(self) -> list[ProviderLibrary]: ...

    def get_poster_url(self, item_id: str, image_tag: str | None = None) -> str: ...

    def get_backdrop_url(self, item_id: str, image_tag: str | None = None) -> str: ...


class JellyfinClient:
    """Client for the Jellyfin and Emby HTTP APIs.

    Both servers expose the same `Items`, `Users` and `Library` endpoints, so one
    client serves either flavour. All requests share a single aiohttp session.
    """

    CLIENT_NAME = "ReelSync"
    DEVICE_NAME = "ReelSync Server"
    DEVICE_ID = "reelsync-server"

    def __init__(self, config: MediaServerConfig) -> None:
        """Initialize the media server client.

        Args:
            config (MediaServerConfig): Connection settings

        Raises:
            MediaServerConfigError: If the URL or API key is missing
        """
        if not config.is_configured or config.api_key is None:
            raise MediaServerConfigError(
                "Media server url and api_key must both be configured"
            )
        self.config = config
        self.base_url = config.url.rstrip("/")
        self._api_key = config.api_key.get_secret_value()
        self._session: aiohttp.ClientSession | None = None

    def _auth_header(self) -> str:
        return (
            f'MediaBrowser Client="{self.CLIENT_NAME}", Device="{self.DEVICE_NAME}", '
            f'DeviceId="{self.DEVICE_ID}", Version="{__version__}", '
            f'Token="{self._api_key}"'
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session.

        Returns:
            aiohttp.ClientSession: The active session for making HTTP requests.
        """
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Accept": "application/json",
                    "User-Agent": f"ReelSync/{__version__}",
                    "X-Emby-Authorization": self._auth_header(),
                },
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            )
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "JellyfinClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager and close the session."""
        await self.close()

    async def _make_request(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Makes a GET request against the media server.

        Transport errors and 5xx responses are retried with a fixed backoff.

        Args:
            endpoint (str): Path below the server's base URL
            params (dict[str, Any] | None): Query parameters

        Returns:
            Any: Decoded JSON body, or an empty dict for an empty response

        Raises:
            MediaServerRequestError: If the request keeps failing or the server
                answers with a client error
        """
        url = f"{self.base_url}{endpoint}"
        query = {"api_key": self._api_key, **(params or {})}
        session = await self._get_session()

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                async with session.get(url, params=query) as response:
                    if response.status >= 500 and attempt < MAX_ATTEMPTS:
                        log.warning(
                            f"Media server returned {response.status} for "
                            f"$$'{endpoint}'$$, retrying"
                        )
                        await asyncio.sleep(attempt)
                        continue
                    if response.status >= 400:
                        body = await response.text()
                        raise MediaServerRequestError(
                            f"Media server error {response.status} for "
                            f"'{endpoint}': {body[:200]}"
                        )
                    text = await response.text()
                    if not text:
                        return {}
                    return await response.json(content_type=None)
            except (TimeoutError, aiohttp.ClientError) as e:
                if attempt >= MAX_ATTEMPTS:
                    raise MediaServerRequestError(
                        f"Could not reach the media server at '{url}': {e}"
                    ) from e
                log.warning(
                    f"Connection error while requesting $$'{endpoint}'$$ "
                    f"(attempt {attempt}/{MAX_ATTEMPTS})"
                )
                await asyncio.sleep(attempt)

        raise MediaServerRequestError(f"Failed to request '{endpoint}'")

    async def _get_items(
        self,
        item_type: str,
        fields: str,
        start_index: int,
        limit: int,
        parent_ids: Sequence[str] | None,
        sort_by: str = "SortName",
    ) -> ProviderPage:
        params: dict[str, Any] = {
            "IncludeItemTypes": item_type,
            "Recursive": "true",
            "Fields": fields,
            "StartIndex": str(start_index),
            "Limit": str(limit),
            "SortBy": sort_by,
            "SortOrder": "Ascending",
        }
        if parent_ids:
            params["ParentId"] = ",".join(parent_ids)

        data = await self._make_request("/Items", params)
        page = ProviderPage(
            items=[ProviderItem.model_validate(i) for i in data.get("Items", [])],
            total_record_count=data.get("TotalRecordCount", 0),
            start_index=data.get("StartIndex", start_index),
        )
        log.debug(
            f"Media server returned {len(page.items)} $$'{item_type}'$$ items "
            f"$${{start_index: {start_index}, total: {page.total_record_count}}}$$"
        )
        return page

    async def get_series(
        self, start_index: int, limit: int, parent_ids: Sequence[str] | None = None
    ) -> ProviderPage:
        """Fetch one page of series."""
        return await self._get_items(
            "Series", SERIES_FIELDS, start_index, limit, parent_ids
        )

    async def get_episodes(
        self, start_index: int, limit: int, parent_ids: Sequence[str] | None = None
    ) -> ProviderPage:
        """Fetch one page of episodes, ordered by series then episode."""
        return await self._get_items(
            "Episode",
            EPISODE_FIELDS,
            start_index,
            limit,
            parent_ids,
            sort_by="SeriesSortName,SortName",
        )

    async def get_movies(
        self, start_index: int, limit: int, parent_ids: Sequence[str] | None = None
    ) -> ProviderPage:
        """Fetch one page of movies."""
        return await self._get_items(
            "Movie", MOVIE_FIELDS, start_index, limit, parent_ids
        )

    async def get_users(self) -> list[ProviderUser]:
        """Fetch every user account on the server."""
        data = await self._make_request("/Users")
        return [ProviderUser.from_api(u) for u in data or []]

    async def get_libraries(self) -> list[ProviderLibrary]:
        """Fetch the top-level libraries (virtual folders)."""
        data = await self._make_request("/Library/VirtualFolders")
        # Emby returns a bare list, some versions wrap it in Items
        folders = data if isinstance(data, list) else data.get("Items", [])
        return [
            ProviderLibrary(
                id=folder.get("ItemId") or folder.get("Id") or "",
                name=folder.get("Name", ""),
                collection_type=folder.get("CollectionType"),
            )
            for folder in folders
        ]

    async def _user_items(
        self, provider_user_id: str, params: dict[str, Any]
    ) -> list[ProviderItem]:
        items: list[ProviderItem] = []
        start_index = 0
        while True:
            data = await self._make_request(
                f"/Users/{provider_user_id}/Items",
                {
                    **params,
                    "Recursive": "true",
                    "Fields": "UserData,ParentId",
                    "StartIndex": str(start_index),
                    "Limit": str(WATCH_HISTORY_PAGE_SIZE),
                },
            )
            page = [ProviderItem.model_validate(i) for i in data.get("Items", [])]
            if not page:
                break
            items.extend(page)
            start_index += len(page)
            if start_index >= data.get("TotalRecordCount", 0):
                break
        return items

    async def get_watch_history(
        self,
        provider_user_id: str,
        media_type: MediaType,
        since: datetime | None = None,
    ) -> list[WatchedItem]:
        """Fetch a user's played items plus unplayed favorites.

        Args:
            provider_user_id (str): The user's id on the media server
            media_type (MediaType): Movies or episodes
            since (datetime | None): Only items whose user data changed after this
                moment; None fetches the complete history

        Returns:
            list[WatchedItem]: One entry per played or favorited item
        """
        match media_type:
            case MediaType.MOVIE:
                item_type = "Movie"
            case MediaType.EPISODE:
                item_type = "Episode"
            case _:
                raise UnsupportedMediaTypeError(f"Unsupported media type: {media_type}")

        base: dict[str, Any] = {"IncludeItemTypes": item_type}
        if since is not None:
            since_utc = since if since.tzinfo else since.replace(tzinfo=UTC)
            base["MinDateLastSavedForUser"] = since_utc.isoformat()

        played = await self._user_items(provider_user_id, {**base, "IsPlayed": "true"})
        favorites = await self._user_items(
            provider_user_id, {**base, "Filters": "IsFavorite"}
        )

        watched: dict[str, WatchedItem] = {}
        for item in played + favorites:
            user_data = item.user_data
            if user_data is None or not (user_data.played or user_data.is_favorite):
                continue
            watched[item.id] = WatchedItem(
                item_id=item.id,
                parent_id=item.parent_id,
                play_count=user_data.play_count,
                is_favorite=user_data.is_favorite,
                last_played_at=user_data.last_played_date,
            )

        log.debug(
            f"Fetched {len(watched)} watched $$'{item_type}'$$ items for user "
            f"$$'{provider_user_id}'$$ $${{delta: {since is not None}}}$$"
        )
        return list(watched.values())

    def get_poster_url(self, item_id: str, image_tag: str | None = None) -> str:
        """URL of an item's primary image."""
        suffix = f"?tag={image_tag}" if image_tag else ""
        return f"{self.base_url}/Items/{item_id}/Images/Primary{suffix}"

    def get_backdrop_url(self, item_id: str, image_tag: str | None = None) -> str:
        """URL of an item's backdrop image."""
        suffix = f"?tag={image_tag}" if image_tag else ""
        return f"{self.base_url}/Items/{item_id}/Images/Backdrop{suffix}"
