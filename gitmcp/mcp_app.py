from __future__ import annotations

from typing import TYPE_CHECKING

from auth.oauth_flow import BitbucketOAuth

from .constants import APP_NAME, APP_VERSION

if TYPE_CHECKING:
    from fastmcp import FastMCP


def mount_health_route(mcp: "FastMCP", oauth: BitbucketOAuth | None = None) -> None:
    from starlette.requests import Request
    from starlette.responses import JSONResponse, Response

    @mcp.custom_route("/health", methods=["GET"])
    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse(
            {
                "status": "ok",
                "name": APP_NAME,
                "version": APP_VERSION,
                "bitbucket_configured": oauth is not None,
                "bitbucket_authenticated": bool(oauth and oauth.is_authenticated),
            }
        )
