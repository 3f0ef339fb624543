from __future__ import annotations

import logging

LOGGER = logging.getLogger("gitmcp")
HTTP_LOGGER = logging.getLogger("gitmcp.http")

APP_NAME = "git-mcp-server"
APP_VERSION = "2.0.0"

BITBUCKET_API_BASE_URL = "https://api.bitbucket.org/2.0"
GITHUB_API_BASE_URL = "https://api.github.com"

SUPPORTED_PLATFORMS = ("github", "bitbucket")
UNSUPPORTED_PLATFORM_MESSAGE = 'Unsupported platform. Use "github" or "bitbucket".'
