"""Tests for the Jellyfin/Emby client."""

import json
from datetime import UTC, datetime
from typing import Any

import pytest
from pydantic import SecretStr

from src.config.settings import MediaServerConfig
from src.core import media_server as media_server_module
from src.core.media_server import JellyfinClient
from src.exceptions import MediaServerConfigError, MediaServerRequestError
from src.models.db.watch_history import MediaType


def _client() -> JellyfinClient:
    return JellyfinClient(
        MediaServerConfig(url="http://jellyfin:8096/", api_key=SecretStr("secret"))
    )


def _patch_requests(monkeypatch, responder) -> list[tuple[str, dict[str, Any]]]:
    calls: list[tuple[str, dict[str, Any]]] = []

    async def fake_make_request(self, endpoint, params=None):
        calls.append((endpoint, dict(params or {})))
        return responder(endpoint, params or {})

    monkeypatch.setattr(JellyfinClient, "_make_request", fake_make_request)
    return calls


def test_missing_credentials_are_rejected() -> None:
    """The client refuses to start without both URL and key."""
    with pytest.raises(MediaServerConfigError):
        JellyfinClient(MediaServerConfig(url="http://jellyfin:8096"))


def test_image_urls() -> None:
    """Image URLs hang off the normalized base URL."""
    client = _client()

    assert (
        client.get_poster_url("abc", "t1")
        == "http://jellyfin:8096/Items/abc/Images/Primary?tag=t1"
    )
    assert (
        client.get_backdrop_url("abc")
        == "http://jellyfin:8096/Items/abc/Images/Backdrop"
    )


@pytest.mark.asyncio
async def test_get_series_builds_a_paged_query(monkeypatch) -> None:
    """Paging, type and library filters are passed through; items are parsed."""
    calls = _patch_requests(
        monkeypatch,
        lambda endpoint, params: {
            "Items": [
                {
                    "Id": "s1",
                    "Name": "Show",
                    "ProductionYear": 2020,
                    "ProviderIds": {"Imdb": "tt1"},
                    "Studios": [{"Name": "HBO", "Id": "9"}],
                }
            ],
            "TotalRecordCount": 42,
            "StartIndex": 10,
        },
    )

    page = await _client().get_series(10, 5, ["lib-a", "lib-b"])

    endpoint, params = calls[0]
    assert endpoint == "/Items"
    assert params["IncludeItemTypes"] == "Series"
    assert (params["StartIndex"], params["Limit"]) == ("10", "5")
    assert params["ParentId"] == "lib-a,lib-b"
    assert page.total_record_count == 42
    assert page.items[0].provider_id("imdb") == "tt1"
    assert page.items[0].studios[0].name == "HBO"


@pytest.mark.asyncio
async def test_get_libraries_accepts_both_shapes(monkeypatch) -> None:
    """Bare lists and Items-wrapped responses both work."""
    folders = [{"ItemId": "lib-1", "Name": "Movies", "CollectionType": "movies"}]
    client = _client()

    _patch_requests(monkeypatch, lambda endpoint, params: folders)
    bare = await client.get_libraries()
    _patch_requests(monkeypatch, lambda endpoint, params: {"Items": folders})
    wrapped = await client.get_libraries()

    assert bare == wrapped
    assert bare[0].id == "lib-1"
    assert bare[0].collection_type == "movies"


@pytest.mark.asyncio
async def test_get_users_reads_policy(monkeypatch) -> None:
    """Admin and disabled flags come from the user's policy."""
    _patch_requests(
        monkeypatch,
        lambda endpoint, params: [
            {"Id": "u1", "Name": "alice", "Policy": {"IsAdministrator": True}},
            {"Id": "u2", "Name": "bob", "Policy": {"IsDisabled": True}},
        ],
    )

    users = await _client().get_users()

    assert [(u.id, u.is_admin, u.is_disabled) for u in users] == [
        ("u1", True, False),
        ("u2", False, True),
    ]


@pytest.mark.asyncio
async def test_watch_history_merges_played_and_favorites(monkeypatch) -> None:
    """Played items and unplayed favorites come back once each."""

    def responder(endpoint, params):
        if params.get("IsPlayed") == "true":
            items = [
                {
                    "Id": "m1",
                    "UserData": {
                        "Played": True,
                        "PlayCount": 2,
                        "LastPlayedDate": "2026-01-02T03:04:05Z",
                    },
                },
                {"Id": "m2", "UserData": {"Played": True, "IsFavorite": True}},
            ]
        else:
            items = [
                {"Id": "m2", "UserData": {"Played": True, "IsFavorite": True}},
                {"Id": "m3", "UserData": {"IsFavorite": True}},
                {"Id": "m4", "UserData": {}},
            ]
        return {"Items": items, "TotalRecordCount": len(items)}

    calls = _patch_requests(monkeypatch, responder)
    since = datetime(2026, 1, 1, tzinfo=UTC)

    watched = await _client().get_watch_history("u1", MediaType.MOVIE, since)

    assert {w.item_id for w in watched} == {"m1", "m2", "m3"}
    first = next(w for w in watched if w.item_id == "m1")
    assert first.play_count == 2
    assert first.last_played_at == datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert all(endpoint == "/Users/u1/Items" for endpoint, _ in calls)
    assert all(
        params["MinDateLastSavedForUser"] == since.isoformat() for _, params in calls
    )
    assert all(params["IncludeItemTypes"] == "Movie" for _, params in calls)


@pytest.mark.asyncio
async def test_watch_history_pages_until_total(monkeypatch) -> None:
    """User item listings are followed across pages."""
    monkeypatch.setattr(media_server_module, "WATCH_HISTORY_PAGE_SIZE", 2)
    played = [
        {"Id": f"e{i}", "UserData": {"Played": True, "PlayCount": 1}} for i in range(3)
    ]

    def responder(endpoint, params):
        if params.get("IsPlayed") != "true":
            return {"Items": [], "TotalRecordCount": 0}
        start = int(params["StartIndex"])
        return {"Items": played[start : start + 2], "TotalRecordCount": 3}

    calls = _patch_requests(monkeypatch, responder)

    watched = await _client().get_watch_history("u1", MediaType.EPISODE)

    assert len(watched) == 3
    assert [p["StartIndex"] for _, p in calls if p.get("IsPlayed")] == ["0", "2"]
    assert all("MinDateLastSavedForUser" not in p for _, p in calls)


class _Response:
    def __init__(self, status: int, body: str = "") -> None:
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body

    async def json(self, content_type=None) -> Any:
        return json.loads(self._body)

    async def __aenter__(self) -> "_Response":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None


class _Session:
    closed = False

    def __init__(self, responses: list[_Response]) -> None:
        self.responses = responses
        self.calls = 0

    def get(self, url, params=None) -> _Response:
        self.calls += 1
        return self.responses.pop(0)


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_raised(monkeypatch) -> None:
    """5xx responses are retried; a client error raises immediately."""
    client = _client()
    session = _Session([_Response(502), _Response(200, '{"Items": []}')])

    async def fake_session():
        return session

    async def no_sleep(_delay) -> None:
        return None

    monkeypatch.setattr(client, "_get_session", fake_session)
    monkeypatch.setattr(media_server_module.asyncio, "sleep", no_sleep)

    assert await client._make_request("/Items") == {"Items": []}
    assert session.calls == 2

    session.responses = [_Response(401, "Unauthorized")]
    with pytest.raises(MediaServerRequestError, match="401"):
        await client._make_request("/Users")
