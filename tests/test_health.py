import asyncio

import server


def _build_health_client(monkeypatch, tmp_path, *, client_id: str = ""):
    monkeypatch.setattr(server, "load_env", lambda: None)
    monkeypatch.setattr(server, "setup_logging", lambda: False)
    monkeypatch.setenv("MCP_TRANSPORT", "streamable-http")
    monkeypatch.setenv("GIT_MCP_CWD", str(tmp_path))
    monkeypatch.setenv("BITBUCKET_OAUTH_CLIENT_ID", client_id)
    monkeypatch.delenv("BITBUCKET_TOKEN_STORE_PATH", raising=False)
    monkeypatch.delenv("BITBUCKET_OAUTH_REDIRECT_URI", raising=False)
    mcp = server.create_mcp()
    app = mcp.http_app(path="/mcp", transport="streamable-http")

    from starlette.testclient import TestClient

    return mcp, TestClient(app)


def _close(mcp) -> None:
    tools = mcp._git_tools
    asyncio.run(tools.github.aclose())
    if tools.bitbucket is not None:
        asyncio.run(tools.bitbucket.client.aclose())


def test_health_returns_200(monkeypatch, tmp_path) -> None:
    mcp, client = _build_health_client(monkeypatch, tmp_path)

    try:
        response = client.get("/health")
        assert response.status_code == 200
    finally:
        _close(mcp)


def test_health_response_format(monkeypatch, tmp_path) -> None:
    mcp, client = _build_health_client(monkeypatch, tmp_path, client_id="client123")

    try:
        payload = client.get("/health").json()
        assert payload == {
            "status": "ok",
            "name": "git-mcp-server",
            "version": "2.0.0",
            "bitbucket_configured": True,
            "bitbucket_authenticated": False,
        }
    finally:
        _close(mcp)


def test_create_mcp_without_bitbucket(monkeypatch, tmp_path) -> None:
    mcp, _ = _build_health_client(monkeypatch, tmp_path)

    try:
        assert mcp._git_tools.bitbucket is None
        assert mcp._git_tools.oauth is None
        assert str(mcp._git_tools.workspace.path) == str(tmp_path.resolve())
    finally:
        _close(mcp)


def test_create_mcp_uses_file_token_store(monkeypatch, tmp_path) -> None:
    store_path = tmp_path / "tokens.json"
    store_path.write_text('{"access_token": "saved", "refresh_token": null}', encoding="utf-8")
    monkeypatch.setenv("BITBUCKET_TOKEN_STORE_PATH", str(store_path))
    monkeypatch.setattr(server, "load_env", lambda: None)
    monkeypatch.setattr(server, "setup_logging", lambda: False)
    monkeypatch.setenv("MCP_TRANSPORT", "stdio")
    monkeypatch.setenv("GIT_MCP_CWD", str(tmp_path))
    monkeypatch.setenv("BITBUCKET_OAUTH_CLIENT_ID", "client123")
    monkeypatch.delenv("BITBUCKET_OAUTH_REDIRECT_URI", raising=False)

    mcp = server.create_mcp()

    try:
        assert mcp._git_tools.oauth.access_token == "saved"
    finally:
        _close(mcp)
