from __future__ import annotations

import urllib.parse
from dataclasses import dataclass

LOOPBACK_HOSTS = {"localhost", "127.0.0.1"}


@dataclass(frozen=True)
class LoopbackAddress:
    host: str
    port: int
    path: str


def is_loopback_redirect_uri(uri: str) -> bool:
    parsed = urllib.parse.urlparse(uri)
    if parsed.scheme != "http":
        return False
    if parsed.hostname not in LOOPBACK_HOSTS:
        return False
    if not parsed.port:
        return False
    return bool(parsed.path) and parsed.path != "/"


def parse_loopback_redirect_uri(uri: str) -> LoopbackAddress:
    if not is_loopback_redirect_uri(uri):
        raise ValueError(
            f"Redirect URI must look like http://localhost:<port>/callback, got {uri!r}."
        )
    parsed = urllib.parse.urlparse(uri)
    host = "127.0.0.1" if parsed.hostname == "localhost" else parsed.hostname
    return LoopbackAddress(host=host, port=parsed.port, path=parsed.path)
