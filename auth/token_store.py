from __future__ import annotations

import json
import os
import tempfile
from dataclasses import asdict, dataclass, replace
from pathlib import Path


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str | None = None


class TokenStore:
    """Single-slot holder for the current Bitbucket token pair."""

    def __init__(self) -> None:
        self._pair: TokenPair | None = None

    def get(self) -> TokenPair | None:
        return self._pair

    def set(self, pair: TokenPair) -> None:
        self._pair = pair

    def apply_refresh(self, access_token: str, refresh_token: str | None) -> TokenPair:
        current = self._pair
        if current is None or refresh_token:
            pair = TokenPair(access_token=access_token, refresh_token=refresh_token)
        else:
            pair = replace(current, access_token=access_token)
        self.set(pair)
        return pair

    def clear(self) -> None:
        self._pair = None


class FileTokenStore(TokenStore):
    def __init__(self, path: str | Path = ".bitbucket_tokens.json") -> None:
        super().__init__()
        self._path = Path(path)
        self._pair = self._read()

    def set(self, pair: TokenPair) -> None:
        self._write(asdict(pair))
        self._pair = pair

    def clear(self) -> None:
        self._pair = None
        if self._path.exists():
            self._path.unlink()

    def _read(self) -> TokenPair | None:
        if not self._path.exists():
            return None

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict) or not isinstance(raw.get("access_token"), str):
            raise RuntimeError("Token store file is invalid; expected an access_token field.")
        return TokenPair(
            access_token=raw["access_token"],
            refresh_token=raw.get("refresh_token"),
        )

    def _write(self, payload: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
