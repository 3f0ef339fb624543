import httpx
import pytest

from auth.callback_server import build_callback_app, render_page
from auth.errors import OAuthCallbackError


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://127.0.0.1")


@pytest.mark.asyncio
async def test_callback_success_page() -> None:
    received: list[dict] = []

    async def on_callback(params: dict) -> None:
        received.append(params)

    async with _client(build_callback_app("/callback", on_callback)) as client:
        response = await client.get("/callback", params={"code": "abc", "state": "xyz"})

    assert response.status_code == 200
    assert "Authentication Successful!" in response.text
    assert received == [{"code": "abc", "state": "xyz"}]


@pytest.mark.asyncio
async def test_callback_failure_page() -> None:
    async def on_callback(params: dict) -> None:
        raise OAuthCallbackError(f"{params['error']}: denied")

    async with _client(build_callback_app("/callback", on_callback)) as client:
        response = await client.get("/callback", params={"error": "access_denied"})

    assert response.status_code == 400
    assert "Authentication Failed" in response.text
    assert "access_denied" in response.text


@pytest.mark.asyncio
async def test_other_paths_are_not_served() -> None:
    async def on_callback(params: dict) -> None:
        raise AssertionError("unexpected callback")

    async with _client(build_callback_app("/callback", on_callback)) as client:
        response = await client.get("/other")

    assert response.status_code == 404


def test_render_page_escapes_message() -> None:
    response = render_page("Authentication Failed", "<script>alert(1)</script>", 400)

    assert response.status_code == 400
    assert b"<script>alert(1)</script>" not in response.body
    assert b"&lt;script&gt;" in response.body
