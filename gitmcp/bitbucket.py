from __future__ import annotations

import asyncio
import re
import shutil
import urllib.parse
from pathlib import Path
from typing import Any

import git

from auth.errors import AuthenticationError

from .constants import LOGGER
from .http import AuthenticatedClient

_REPOSITORY_URL_RE = re.compile(r"bitbucket\.org[/:]([^/]+)/([^/]+?)(?:\.git)?(?:/|$)")
DEFAULT_BRANCHES = {"main", "master"}


def parse_repository_url(repository_url: str) -> tuple[str, str]:
    match = _REPOSITORY_URL_RE.search(repository_url)
    if not match:
        raise ValueError("Invalid Bitbucket repository URL format")
    return match.group(1), match.group(2)


def _quote(value: str | int) -> str:
    return urllib.parse.quote(str(value), safe="")


class BitbucketAPI:
    def __init__(self, client: AuthenticatedClient) -> None:
        self.client = client

    def _repo_path(self, workspace: str, repo_slug: str) -> str:
        return f"/repositories/{_quote(workspace)}/{_quote(repo_slug)}"

    async def get_current_user(self) -> dict:
        return await self.client.request_json("GET", "/user")

    async def get_workspaces(self) -> dict:
        return await self.client.request_json("GET", "/workspaces")

    async def get_repository(self, workspace: str, repo_slug: str) -> dict:
        return await self.client.request_json("GET", self._repo_path(workspace, repo_slug))

    async def get_branches(self, workspace: str, repo_slug: str) -> dict:
        return await self.client.request_json(
            "GET", f"{self._repo_path(workspace, repo_slug)}/refs/branches"
        )

    async def get_branch(self, workspace: str, repo_slug: str, branch_name: str) -> dict:
        return await self.client.request_json(
            "GET",
            f"{self._repo_path(workspace, repo_slug)}/refs/branches/{_quote(branch_name)}",
        )

    async def get_commits(
        self,
        workspace: str,
        repo_slug: str,
        branch: str | None = None,
        limit: int = 50,
    ) -> dict:
        path = f"{self._repo_path(workspace, repo_slug)}/commits"
        if branch:
            path += f"/{_quote(branch)}"
        return await self.client.request_json("GET", path, params={"pagelen": limit})

    async def get_pull_requests(
        self, workspace: str, repo_slug: str, state: str = "OPEN"
    ) -> dict:
        return await self.client.request_json(
            "GET",
            f"{self._repo_path(workspace, repo_slug)}/pullrequests",
            params={"state": state},
        )

    async def find_pull_requests(
        self,
        workspace: str,
        repo_slug: str,
        source_branch: str,
        target_branch: str,
    ) -> list[dict[str, Any]]:
        query = (
            f'source.branch.name = "{source_branch}" AND '
            f'destination.branch.name = "{target_branch}" AND state = "OPEN"'
        )
        payload = await self.client.request_json(
            "GET",
            f"{self._repo_path(workspace, repo_slug)}/pullrequests",
            params={"q": query},
        )
        return [
            {
                "id": pr.get("id"),
                "number": pr.get("id"),
                "title": pr.get("title"),
                "url": pr.get("links", {}).get("html", {}).get("href"),
                "state": pr.get("state"),
                "draft": pr.get("draft", False),
            }
            for pr in (payload or {}).get("values", [])
        ]

    async def create_pull_request(
        self,
        workspace: str,
        repo_slug: str,
        *,
        title: str,
        source_branch: str,
        target_branch: str,
        description: str | None = None,
        close_source_branch: bool = False,
        draft: bool = False,
    ) -> dict:
        body: dict[str, Any] = {
            "title": title,
            "description": description or "",
            "source": {"branch": {"name": source_branch}},
            "destination": {"branch": {"name": target_branch}},
            "close_source_branch": close_source_branch,
        }
        if draft:
            body["draft"] = True
        return await self.client.request_json(
            "POST", f"{self._repo_path(workspace, repo_slug)}/pullrequests", json=body
        )

    async def get_pull_request(
        self, workspace: str, repo_slug: str, pull_request_id: str | int
    ) -> dict:
        return await self.client.request_json(
            "GET",
            f"{self._repo_path(workspace, repo_slug)}/pullrequests/{_quote(pull_request_id)}",
        )

    async def get_pull_request_diff(
        self, workspace: str, repo_slug: str, pull_request_id: str | int
    ) -> str:
        return await self.client.request_text(
            "GET",
            f"{self._repo_path(workspace, repo_slug)}/pullrequests/{_quote(pull_request_id)}/diff",
        )

    async def get_pull_request_comments(
        self, workspace: str, repo_slug: str, pull_request_id: str | int
    ) -> dict:
        return await self.client.request_json(
            "GET",
            f"{self._repo_path(workspace, repo_slug)}/pullrequests/"
            f"{_quote(pull_request_id)}/comments",
        )

    async def add_pull_request_comment(
        self,
        workspace: str,
        repo_slug: str,
        pull_request_id: str | int,
        content: str,
        *,
        parent_id: str | int | None = None,
    ) -> dict:
        body: dict[str, Any] = {"content": {"raw": content}}
        if parent_id is not None:
            body["parent"] = {"id": int(parent_id)}
        return await self.client.request_json(
            "POST",
            f"{self._repo_path(workspace, repo_slug)}/pullrequests/"
            f"{_quote(pull_request_id)}/comments",
            json=body,
        )

    async def _clone_token(self) -> str:
        oauth = self.client.oauth
        token = await oauth.get_access_token()
        if await oauth.validate_token():
            return token

        LOGGER.info("Cached Bitbucket token rejected; refreshing before clone")
        try:
            pair = await oauth.refresh()
        except Exception as error:
            raise AuthenticationError(
                "Authentication failed: could not refresh the Bitbucket token for checkout"
            ) from error
        return pair.access_token

    async def checkout_repository(
        self,
        repository_url: str,
        target_directory: str | Path,
        branch: str = "main",
    ) -> Path:
        workspace, repo_slug = parse_repository_url(repository_url)
        target = Path(target_directory).expanduser()
        if not target.is_absolute():
            target = Path.cwd() / target
        if target.exists():
            raise FileExistsError(
                f"Directory {target} already exists. Please specify a different "
                "directory or remove the existing one."
            )

        token = await self._clone_token()
        remote_url = f"https://bitbucket.org/{workspace}/{repo_slug}.git"
        auth_url = (
            f"https://x-token-auth:{urllib.parse.quote(token, safe='')}"
            f"@bitbucket.org/{workspace}/{repo_slug}.git"
        )
        LOGGER.info("Cloning %s/%s (branch: %s) into %s", workspace, repo_slug, branch, target)

        try:
            await asyncio.to_thread(_clone, auth_url, remote_url, target, branch)
        except Exception:
            if target.exists():
                shutil.rmtree(target, ignore_errors=True)
            raise
        return target


def _clone(auth_url: str, remote_url: str, target: Path, branch: str) -> None:
    kwargs: dict[str, Any] = {}
    if branch and branch not in DEFAULT_BRANCHES:
        kwargs["branch"] = branch
    try:
        repo = git.Repo.clone_from(auth_url, target, **kwargs)
    except git.exc.GitCommandError as error:
        message = str(error).replace(auth_url, remote_url)
        raise RuntimeError(f"Failed to checkout repository: {message}") from None
    # keep the access token out of .git/config
    repo.remotes.origin.set_url(remote_url)
