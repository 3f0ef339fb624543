from __future__ import annotations

import urllib.parse
from typing import Any

import httpx

from auth.errors import ApiRequestError

from .constants import GITHUB_API_BASE_URL
from .http import build_http_client, extract_error_message

JSON_ACCEPT = "application/vnd.github.v3+json"
DIFF_ACCEPT = "application/vnd.github.v3.diff"


def _quote(value: str | int) -> str:
    return urllib.parse.quote(str(value), safe="")


class GitHubAPI:
    """GitHub REST calls authenticated with a personal access token."""

    def __init__(
        self,
        token: str | None,
        *,
        base_url: str = GITHUB_API_BASE_URL,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.token = token
        self._client = client or build_http_client(base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _repo_path(self, owner: str, repo: str) -> str:
        return f"/repos/{_quote(owner)}/{_quote(repo)}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        accept: str = JSON_ACCEPT,
    ) -> httpx.Response:
        if not self.token:
            raise ApiRequestError("GITHUB_TOKEN environment variable is required")

        headers = {"Authorization": f"token {self.token}", "Accept": accept}
        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.HTTPError as error:
            raise ApiRequestError(f"GitHub request failed: {error}") from error

        if not response.is_success:
            raise ApiRequestError(
                f"GitHub request failed: {extract_error_message(response, 'GitHub')}",
                status_code=response.status_code,
            )
        return response

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        head: str,
        base: str,
        body: str | None = None,
        draft: bool = False,
    ) -> dict:
        response = await self._request(
            "POST",
            f"{self._repo_path(owner, repo)}/pulls",
            json={"title": title, "body": body or "", "head": head, "base": base, "draft": draft},
        )
        return response.json()

    async def find_pull_requests(
        self, owner: str, repo: str, head: str, base: str
    ) -> list[dict[str, Any]]:
        response = await self._request(
            "GET",
            f"{self._repo_path(owner, repo)}/pulls",
            params={"state": "open", "head": f"{owner}:{head}", "base": base},
        )
        return [
            {
                "id": pr.get("id"),
                "number": pr.get("number"),
                "title": pr.get("title"),
                "url": pr.get("html_url"),
                "state": pr.get("state"),
                "draft": pr.get("draft", False),
            }
            for pr in response.json()
        ]

    async def get_pull_request(self, owner: str, repo: str, number: str | int) -> dict:
        response = await self._request(
            "GET", f"{self._repo_path(owner, repo)}/pulls/{_quote(number)}"
        )
        return response.json()

    async def get_pull_request_diff(self, owner: str, repo: str, number: str | int) -> str:
        response = await self._request(
            "GET",
            f"{self._repo_path(owner, repo)}/pulls/{_quote(number)}",
            accept=DIFF_ACCEPT,
        )
        return response.text

    async def get_pull_request_comments(
        self, owner: str, repo: str, number: str | int
    ) -> list[dict]:
        response = await self._request(
            "GET", f"{self._repo_path(owner, repo)}/issues/{_quote(number)}/comments"
        )
        return response.json()

    async def add_comment(
        self,
        owner: str,
        repo: str,
        number: str | int,
        body: str,
        *,
        in_reply_to: str | int | None = None,
    ) -> dict:
        if in_reply_to is not None:
            # issue comments have no threading; quote the parent instead
            body = f"> In reply to comment {in_reply_to}\n\n{body}"
        response = await self._request(
            "POST",
            f"{self._repo_path(owner, repo)}/issues/{_quote(number)}/comments",
            json={"body": body},
        )
        return response.json()
