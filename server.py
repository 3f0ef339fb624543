from __future__ import annotations

import os
from typing import TYPE_CHECKING

from auth.oauth_flow import BitbucketOAuth
from auth.token_store import FileTokenStore, TokenStore
from gitmcp.bitbucket import BitbucketAPI
from gitmcp.constants import APP_NAME, BITBUCKET_API_BASE_URL, GITHUB_API_BASE_URL, LOGGER
from gitmcp.env import Settings, _get_env_int, load_env, setup_logging, validate_env
from gitmcp.git_ops import GitWorkspace
from gitmcp.github import GitHubAPI
from gitmcp.http import AuthenticatedClient
from gitmcp.mcp_app import mount_health_route
from gitmcp.tools import GitMCPTools, register_tools

if TYPE_CHECKING:
    from fastmcp import FastMCP


def build_oauth(settings: Settings) -> BitbucketOAuth | None:
    if not settings.bitbucket_client_id:
        return None

    token_store = (
        FileTokenStore(settings.bitbucket_token_store_path)
        if settings.bitbucket_token_store_path
        else TokenStore()
    )
    return BitbucketOAuth(
        client_id=settings.bitbucket_client_id,
        client_secret=settings.bitbucket_client_secret,
        redirect_uri=settings.bitbucket_redirect_uri,
        scope=settings.bitbucket_scope,
        timeout_seconds=settings.bitbucket_oauth_timeout,
        token_store=token_store,
    )


def build_tools(settings: Settings) -> GitMCPTools:
    oauth = build_oauth(settings)
    bitbucket = None
    if oauth is not None:
        client = AuthenticatedClient(
            oauth,
            base_url=os.getenv("BITBUCKET_API_BASE_URL", BITBUCKET_API_BASE_URL),
            timeout=settings.http_timeout,
        )
        bitbucket = BitbucketAPI(client)

    github = GitHubAPI(
        settings.github_token,
        base_url=os.getenv("GITHUB_API_BASE_URL", GITHUB_API_BASE_URL),
        timeout=settings.http_timeout,
    )
    workspace = GitWorkspace(settings.repository_path)
    return GitMCPTools(workspace, github=github, bitbucket=bitbucket, oauth=oauth)


def create_mcp() -> "FastMCP":
    from fastmcp import FastMCP

    load_env()
    setup_logging()
    settings = Settings.from_env()
    validate_env(settings)

    tools = build_tools(settings)
    mcp = FastMCP(name=APP_NAME)
    register_tools(mcp, tools)
    setattr(mcp, "_git_tools", tools)
    if settings.transport == "streamable-http":
        mount_health_route(mcp, tools.oauth)

    LOGGER.info("Git MCP server ready (repository: %s)", tools.workspace.path)
    return mcp


def main() -> None:
    transport = os.getenv("MCP_TRANSPORT", "stdio").strip() or "stdio"
    mcp = create_mcp()
    if transport == "streamable-http":
        host = os.getenv("MCP_HOST", "127.0.0.1")
        port = _get_env_int("MCP_PORT", 8000)
        mcp.run(transport="streamable-http", host=host, port=port)
        return
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
