from __future__ import annotations

from typing import Any

import httpx

from auth.errors import ApiRequestError, AuthenticationError
from auth.oauth_flow import BitbucketOAuth

from .constants import BITBUCKET_API_BASE_URL, HTTP_LOGGER


def _friendly_error_message(status_code: int, service: str = "Bitbucket") -> str:
    if status_code == 401:
        return f"Authentication failed. Your {service} token may have expired."
    if status_code == 403:
        return "You don't have permission to perform this action."
    if status_code == 404:
        return f"The requested resource was not found on {service}."
    if status_code == 429:
        return f"{service} rate limit exceeded. Please wait before retrying."
    if status_code >= 500:
        return f"{service} API is experiencing issues. Please try again later."
    return f"{service} API request failed with status {status_code}."


def extract_error_message(response: httpx.Response, service: str = "Bitbucket") -> str:
    """Pull the provider's error text out of a failed response.

    Bitbucket nests it as ``{"error": {"message": ...}}`` while GitHub uses a
    top-level ``message``; anything else falls back to a status-based message.
    """
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            description = payload.get("error_description")
            return f"{error}: {description}" if description else error
        if payload.get("message"):
            return str(payload["message"])

    return _friendly_error_message(response.status_code, service)


async def log_request(request: httpx.Request) -> None:
    HTTP_LOGGER.debug("API request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    HTTP_LOGGER.debug(
        "API response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > 1000:
            text = text[:1000] + "...<truncated>"
        HTTP_LOGGER.warning("API error %s body: %s", response.status_code, text)


def build_http_client(
    base_url: str,
    *,
    timeout: float = 30.0,
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers or {},
        timeout=timeout,
        transport=transport,
        follow_redirects=True,
        event_hooks={"request": [log_request], "response": [log_response]},
    )


class AuthenticatedClient:
    """Sends Bitbucket API calls with the current OAuth bearer token.

    A 401 triggers exactly one token refresh and one retry. Every other
    failure is raised as ``ApiRequestError`` without retrying.
    """

    def __init__(
        self,
        oauth: BitbucketOAuth,
        *,
        base_url: str = BITBUCKET_API_BASE_URL,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.oauth = oauth
        self._client = client or build_http_client(base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        token: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        accept: str,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}", "Accept": accept}
        try:
            return await self._client.request(
                method,
                path,
                json=json,
                params=params,
                headers=headers,
            )
        except httpx.HTTPError as error:
            raise ApiRequestError(f"API request failed: {error}") from error

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        token = await self.oauth.get_access_token()
        response = await self._send(
            method, path, token, json=json, params=params, accept=accept
        )

        if response.status_code == 401:
            original = ApiRequestError(
                extract_error_message(response), status_code=response.status_code
            )
            HTTP_LOGGER.info("Received 401 for %s %s; refreshing token", method, path)
            try:
                pair = await self.oauth.refresh()
                response = await self._send(
                    method,
                    path,
                    pair.access_token,
                    json=json,
                    params=params,
                    accept=accept,
                )
            except Exception as error:
                raise AuthenticationError(
                    f"Authentication failed: {original}", original=original
                ) from error
            if not response.is_success:
                raise AuthenticationError(
                    f"Authentication failed: {original}", original=original
                )
            return response

        if not response.is_success:
            raise ApiRequestError(
                f"API request failed: {extract_error_message(response)}",
                status_code=response.status_code,
            )
        return response

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        response = await self.request(method, path, json=json, params=params)
        if not response.content:
            return None
        return response.json()

    async def request_text(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> str:
        response = await self.request(method, path, params=params, accept="text/plain")
        return response.text
