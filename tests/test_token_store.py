import json
import os
import sys

import pytest

from auth.token_store import FileTokenStore, TokenPair, TokenStore


def test_store_starts_empty() -> None:
    assert TokenStore().get() is None


def test_store_set_get() -> None:
    store = TokenStore()
    pair = TokenPair("access", "refresh")

    store.set(pair)

    assert store.get() == pair


def test_apply_refresh_replaces_both_tokens() -> None:
    store = TokenStore()
    store.set(TokenPair("access-1", "refresh-1"))

    pair = store.apply_refresh("access-2", "refresh-2")

    assert pair == TokenPair("access-2", "refresh-2")
    assert store.get() == pair


def test_apply_refresh_keeps_previous_refresh_token() -> None:
    store = TokenStore()
    store.set(TokenPair("access-1", "refresh-1"))

    pair = store.apply_refresh("access-2", None)

    assert pair == TokenPair("access-2", "refresh-1")


def test_clear() -> None:
    store = TokenStore()
    store.set(TokenPair("access", "refresh"))

    store.clear()

    assert store.get() is None


def test_file_store_persists(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    FileTokenStore(path).set(TokenPair("access", "refresh"))

    assert FileTokenStore(path).get() == TokenPair("access", "refresh")
    assert json.loads(path.read_text(encoding="utf-8")) == {
        "access_token": "access",
        "refresh_token": "refresh",
    }


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX file modes only")
def test_file_store_is_private(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    FileTokenStore(path).set(TokenPair("access"))

    assert os.stat(path).st_mode & 0o777 == 0o600


def test_file_store_refresh_persists_kept_refresh_token(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    store = FileTokenStore(path)
    store.set(TokenPair("access-1", "refresh-1"))

    store.apply_refresh("access-2", None)

    assert FileTokenStore(path).get() == TokenPair("access-2", "refresh-1")


def test_file_store_clear_removes_file(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    store = FileTokenStore(path)
    store.set(TokenPair("access"))

    store.clear()

    assert not path.exists()
    assert store.get() is None


def test_file_store_missing_file(tmp_path) -> None:
    assert FileTokenStore(tmp_path / "missing.json").get() is None


def test_file_store_rejects_invalid_file(tmp_path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text(json.dumps({"refresh_token": "r"}), encoding="utf-8")

    with pytest.raises(RuntimeError, match="Token store file is invalid"):
        FileTokenStore(path)
