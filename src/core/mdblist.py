"""MDBList Client."""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from itertools import batched
from typing import Any, Literal

import aiohttp

from src import __version__, log
from src.config.database import db
from src.config.settings import MDBListConfig
from src.core.api_errors import ApiErrorStore, parse_api_error, parse_retry_after
from src.exceptions import InvalidExternalIdError
from src.models.db.api_error import ApiErrorType
from src.models.db.base import utcnow
from src.models.db.housekeeping import SystemSetting
from src.models.schemas.mdblist import EnrichmentData, MDBListItem, MDBListUserInfo
from src.utils.rate_limiter import TieredRateLimiter

__all__ = ["BatchLookup", "MDBListClient", "MDBListMediaType"]

MDBListMediaType = Literal["movie", "show"]

API_KEY_SETTING = "mdblist_api_key"
ENABLED_SETTING = "mdblist_enabled"
SUPPORTER_TIER_SETTING = "mdblist_supporter_tier"
PROVIDER = "mdblist"


@dataclass
class BatchLookup:
    """Result of a batch lookup that may span several requests.

    Ids of chunks whose request failed are listed in `failed_ids`; any other
    requested id that is absent from `items` has no MDBList match.
    """

    items: list[MDBListItem] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)


class MDBListClient:
    """Client for the MDBList REST API.

    Every request waits on the shared `TieredRateLimiter` first. Failures never
    raise: rate limits are waited out and retried, other error statuses and
    exhausted retries are logged and return None so callers can move on.

    Runtime overrides made through `set_config` are stored as system settings
    and take precedence over the configuration file.
    """

    def __init__(
        self,
        config: MDBListConfig,
        *,
        rate_limiter: TieredRateLimiter | None = None,
        error_store: ApiErrorStore | None = None,
    ) -> None:
        """Initialize the MDBList client.

        Args:
            config (MDBListConfig): MDBList settings
            rate_limiter (TieredRateLimiter | None): Limiter shared by every client
                talking to MDBList; one is created when omitted
            error_store (ApiErrorStore | None): Persistent log for API errors
        """
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.rate_limiter = rate_limiter or TieredRateLimiter(
            self.__class__.__name__,
            tier_resolver=self.is_supporter_tier,
            free_delay=config.free_delay_ms / 1000,
            supporter_delay=config.supporter_delay_ms / 1000,
            tier_check_interval=config.tier_check_interval,
        )
        self.error_store = error_store or ApiErrorStore()
        self._session: aiohttp.ClientSession | None = None

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
                },
                timeout=aiohttp.ClientTimeout(total=30),
            )
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "MDBListClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager and close the session."""
        await self.close()

    def get_api_key(self) -> str | None:
        """The effective API key: a stored override, else the configured key."""
        with db() as ctx:
            stored = SystemSetting.get_value(ctx.session, API_KEY_SETTING)
        if stored:
            return stored
        return self.config.api_key.get_secret_value() if self.config.api_key else None

    def is_configured(self) -> bool:
        """Whether MDBList is enabled and has an API key."""
        with db() as ctx:
            enabled = SystemSetting.get_value(ctx.session, ENABLED_SETTING)
        if enabled is not None:
            is_enabled = enabled == "true"
        else:
            is_enabled = self.config.enabled
        return is_enabled and self.get_api_key() is not None

    def is_supporter_tier(self) -> bool:
        """Resolve the account tier from the configuration or stored settings."""
        if self.config.supporter_tier is not None:
            return self.config.supporter_tier
        with db() as ctx:
            return SystemSetting.get_value(ctx.session, SUPPORTER_TIER_SETTING) == "true"

    def set_config(
        self,
        *,
        api_key: str | None = None,
        enabled: bool | None = None,
        supporter_tier: bool | None = None,
    ) -> None:
        """Store runtime overrides for the MDBList settings."""
        with db() as ctx:
            if api_key is not None:
                SystemSetting.set_value(
                    ctx.session,
                    API_KEY_SETTING,
                    api_key,
                    "MDBList API key for metadata enrichment",
                )
            if enabled is not None:
                SystemSetting.set_value(
                    ctx.session,
                    ENABLED_SETTING,
                    str(enabled).lower(),
                    "Enable MDBList integration",
                )
            if supporter_tier is not None:
                SystemSetting.set_value(
                    ctx.session,
                    SUPPORTER_TIER_SETTING,
                    str(supporter_tier).lower(),
                    "Whether the MDBList account has the supporter tier",
                )
            ctx.session.commit()
        self.rate_limiter.invalidate_tier()
        log.info("MDBList config updated")

    def _record_error(
        self, status: int, retry_after: str | None = None, job_id: str | None = None
    ) -> None:
        """Persist an API error unless a similar one was logged recently."""
        parsed = parse_api_error(PROVIDER, status, retry_after=retry_after)
        if parsed.error_type == ApiErrorType.NOT_FOUND:
            return
        try:
            if self.error_store.has_recent_similar_error(
                PROVIDER, parsed.error_type, status
            ):
                return
            self.error_store.log_api_error(parsed, job_id=job_id)
        except Exception:
            log.error("Failed to log MDBList API error", exc_info=True)

    @staticmethod
    def _retry_wait(retry_after: str | None, fallback: float) -> float:
        """Seconds to wait after a 429, from ``Retry-After`` when it is usable."""
        if retry_after and retry_after.strip().isdigit():
            return float(retry_after)
        reset_at = parse_retry_after(retry_after)
        if reset_at is None:
            return fallback
        return max((reset_at - utcnow()).total_seconds(), 0.0)

    async def request(
        self,
        endpoint: str,
        *,
        method: Literal["GET", "POST"] = "GET",
        params: dict[str, Any] | None = None,
        json: Any = None,
        api_key: str | None = None,
        job_id: str | None = None,
    ) -> Any | None:
        """Makes a rate-limited request to the MDBList API.

        Args:
            endpoint (str): Path below the API base URL
            method (Literal["GET", "POST"]): HTTP method
            params (dict[str, Any] | None): Query parameters
            json (Any): JSON body for POST requests
            api_key (str | None): Key to use instead of the configured one
            job_id (str | None): Job to attach logged API errors to

        Returns:
            Any | None: Decoded JSON response, or None if the request failed
        """
        key = api_key or self.get_api_key()
        if not key:
            log.warning("MDBList API key not configured")
            return None

        url = f"{self.base_url}{endpoint}"
        query = {**(params or {}), "apikey": key}
        base_delay = self.config.retry_delay_ms / 1000
        max_retries = self.config.max_retries
        session = await self._get_session()

        for attempt in range(1, max_retries + 1):
            await self.rate_limiter.acquire()
            try:
                async with session.request(
                    method, url, params=query, json=json
                ) as response:
                    if response.status == 429:
                        retry_after = response.headers.get("Retry-After")
                        wait = self._retry_wait(
                            retry_after, base_delay * 2 ** (attempt - 1)
                        )
                        log.warning(
                            f"MDBList rate limit hit, waiting {wait:.1f} seconds "
                            f"$${{attempt: {attempt}, endpoint: {endpoint}}}$$"
                        )
                        self._record_error(429, retry_after, job_id)
                        if attempt < max_retries:
                            await asyncio.sleep(wait)
                        continue

                    if not response.ok:
                        log_fn = log.debug if response.status == 404 else log.error
                        log_fn(
                            f"MDBList API request failed "
                            f"$${{status: {response.status}, endpoint: {endpoint}}}$$"
                        )
                        self._record_error(response.status, job_id=job_id)
                        return None

                    return await response.json(content_type=None)
            except (TimeoutError, aiohttp.ClientError):
                if attempt >= max_retries:
                    log.error(
                        f"MDBList API request failed after {max_retries} attempts "
                        f"$${{endpoint: {endpoint}}}$$",
                        exc_info=True,
                    )
                    return None
                log.warning(
                    f"MDBList API request failed, retrying "
                    f"$${{attempt: {attempt}, endpoint: {endpoint}}}$$"
                )
                await asyncio.sleep(base_delay * attempt)

        log.error(
            f"MDBList API request gave up after {max_retries} rate limited attempts "
            f"$${{endpoint: {endpoint}}}$$"
        )
        return None

    async def test_connection(
        self, api_key: str | None = None
    ) -> tuple[bool, MDBListUserInfo | None, str | None]:
        """Check that the API key works.

        Returns:
            tuple[bool, MDBListUserInfo | None, str | None]: Success flag, the
                account information and an error message on failure
        """
        key = api_key or self.get_api_key()
        if not key:
            return False, None, "No API key configured"
        data = await self.request("/user", api_key=key)
        if not data:
            return False, None, "Failed to connect to MDBList API"
        return True, MDBListUserInfo.model_validate(data), None

    async def detect_supporter_tier(self) -> bool | None:
        """Look up the account's patron status and store the resulting tier.

        Returns:
            bool | None: The detected tier, or None if the lookup failed
        """
        ok, info, error = await self.test_connection()
        if not ok or info is None:
            log.warning(f"Could not detect the MDBList tier: {error}")
            return None
        self.set_config(supporter_tier=info.is_supporter)
        log.info(
            f"Detected MDBList tier $$'{'supporter' if info.is_supporter else 'free'}'$$"
        )
        return info.is_supporter

    @staticmethod
    def _parse_item(data: Any) -> MDBListItem | None:
        if not isinstance(data, dict) or not data:
            return None
        # Unknown ids come back as the API's info page
        if "website" in data or "documentation" in data:
            return None
        if data.get("response") is False or data.get("error"):
            return None
        return MDBListItem.model_validate(data)

    async def get_by_imdb(self, imdb_id: str) -> MDBListItem | None:
        """Look up a single title by IMDb id (``tt1234567``)."""
        if not imdb_id.startswith("tt"):
            raise InvalidExternalIdError(f"Invalid IMDb id: '{imdb_id}'")
        return self._parse_item(await self.request("/", params={"i": imdb_id}))

    async def get_by_tmdb(
        self, tmdb_id: int | str, media_type: MDBListMediaType
    ) -> MDBListItem | None:
        """Look up a single title by TMDB id."""
        return self._parse_item(
            await self.request("/", params={"tm": str(tmdb_id), "m": media_type})
        )

    async def get_by_tvdb(self, tvdb_id: int | str) -> MDBListItem | None:
        """Look up a single show by TVDB id."""
        return self._parse_item(await self.request("/", params={"tv": str(tvdb_id)}))

    async def _batch_get(
        self,
        provider: Literal["imdb", "tmdb"],
        ids: Sequence[str],
        media_type: MDBListMediaType,
        job_id: str | None,
    ) -> BatchLookup:
        lookup = BatchLookup()
        for chunk in batched(ids, self.config.batch_size, strict=False):
            data = await self.request(
                f"/{provider}/{media_type}",
                method="POST",
                json={"ids": list(chunk), "append_to_response": ["keyword"]},
                job_id=job_id,
            )
            if data is None:
                lookup.failed_ids.extend(chunk)
                log.error(
                    f"MDBList batch request failed "
                    f"$${{provider: {provider}, size: {len(chunk)}}}$$"
                )
                continue

            if isinstance(data, list):
                raw_items = data
            elif isinstance(data, dict):
                raw_items = list(data.values())
            else:
                log.warning(
                    f"Unexpected MDBList batch response type $$'{type(data).__name__}'$$"
                )
                raw_items = []

            for raw in raw_items:
                item = self._parse_item(raw)
                if item is not None:
                    lookup.items.append(item)

        return lookup

    async def batch_get_by_imdb(
        self,
        imdb_ids: Sequence[str],
        media_type: MDBListMediaType,
        job_id: str | None = None,
    ) -> BatchLookup:
        """Look up many titles by IMDb id, `batch_size` ids per request.

        Returns:
            BatchLookup: The matched items, plus the ids whose request failed.
                Ids in neither have no MDBList match.
        """
        return await self._batch_get("imdb", imdb_ids, media_type, job_id)

    async def batch_get_by_tmdb(
        self,
        tmdb_ids: Sequence[str],
        media_type: MDBListMediaType,
        job_id: str | None = None,
    ) -> BatchLookup:
        """Look up many titles by TMDB id, `batch_size` ids per request."""
        return await self._batch_get("tmdb", tmdb_ids, media_type, job_id)

    @staticmethod
    def extract_enrichment_data(item: MDBListItem) -> EnrichmentData:
        """Map an MDBList item onto the catalog enrichment columns."""
        letterboxd = item.rating("letterboxd")
        tomatoes = item.rating("tomatoes")
        audience = item.rating("tomatoesaudience")
        metacritic = item.rating("metacritic")

        providers = item.watch_providers or item.streams
        return EnrichmentData(
            mdblist_score=item.score or None,
            letterboxd_score=letterboxd.value if letterboxd else None,
            rt_critic_score=tomatoes.score if tomatoes else None,
            rt_audience_score=audience.score if audience else None,
            metacritic_score=metacritic.score if metacritic else None,
            keywords=[k.name for k in item.keywords],
            streaming_providers=[{"id": p.id, "name": p.name} for p in providers],
        )
