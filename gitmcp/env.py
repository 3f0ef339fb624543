from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from auth.oauth_flow import DEFAULT_REDIRECT_URI, DEFAULT_SCOPE, DEFAULT_TIMEOUT_SECONDS
from auth.urls import is_loopback_redirect_uri

from .constants import LOGGER

TRANSPORTS = {"stdio", "streamable-http"}


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    try:
        from dotenv import load_dotenv
    except ImportError:
        return
    load_dotenv(env_path, override=False)


@dataclass
class Settings:
    bitbucket_client_id: str
    bitbucket_client_secret: str | None
    bitbucket_scope: str
    bitbucket_redirect_uri: str
    bitbucket_oauth_timeout: float
    bitbucket_token_store_path: str | None
    github_token: str | None
    repository_path: str
    http_timeout: float
    transport: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            bitbucket_client_id=os.getenv("BITBUCKET_OAUTH_CLIENT_ID", "").strip(),
            bitbucket_client_secret=os.getenv("BITBUCKET_OAUTH_CLIENT_SECRET", "").strip() or None,
            bitbucket_scope=os.getenv("BITBUCKET_OAUTH_SCOPES", DEFAULT_SCOPE).strip()
            or DEFAULT_SCOPE,
            bitbucket_redirect_uri=os.getenv(
                "BITBUCKET_OAUTH_REDIRECT_URI", DEFAULT_REDIRECT_URI
            ).strip(),
            bitbucket_oauth_timeout=_get_env_float(
                "BITBUCKET_OAUTH_TIMEOUT", DEFAULT_TIMEOUT_SECONDS
            ),
            bitbucket_token_store_path=os.getenv("BITBUCKET_TOKEN_STORE_PATH", "").strip()
            or None,
            github_token=os.getenv("GITHUB_TOKEN", "").strip() or None,
            repository_path=os.getenv("GIT_MCP_CWD", "").strip() or os.getcwd(),
            http_timeout=_get_env_float("GIT_MCP_HTTP_TIMEOUT", 30.0),
            transport=os.getenv("MCP_TRANSPORT", "stdio").strip() or "stdio",
        )


def validate_env(settings: Settings) -> None:
    problems: list[str] = []

    if not is_loopback_redirect_uri(settings.bitbucket_redirect_uri):
        problems.append(
            "BITBUCKET_OAUTH_REDIRECT_URI must be a loopback URI such as "
            "http://localhost:8080/callback."
        )
    if settings.bitbucket_oauth_timeout <= 0:
        problems.append("BITBUCKET_OAUTH_TIMEOUT must be greater than zero.")
    if settings.http_timeout <= 0:
        problems.append("GIT_MCP_HTTP_TIMEOUT must be greater than zero.")
    if settings.transport not in TRANSPORTS:
        problems.append(f"MCP_TRANSPORT must be one of: {', '.join(sorted(TRANSPORTS))}.")

    if problems:
        raise RuntimeError("Invalid configuration: " + " ".join(problems))

    if not settings.bitbucket_client_id:
        LOGGER.warning(
            "BITBUCKET_OAUTH_CLIENT_ID is not set; Bitbucket tools will be unavailable."
        )
    if not settings.github_token:
        LOGGER.warning("GITHUB_TOKEN is not set; GitHub tools will fail until it is provided.")


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("GIT_MCP_DEBUG", "0"))
    # stdout carries the stdio MCP transport, so logs go to stderr
    logging.basicConfig(level=logging.INFO if debug_enabled else logging.WARNING)
    LOGGER.setLevel(logging.DEBUG if debug_enabled else logging.INFO)
    return debug_enabled
