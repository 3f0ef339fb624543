import git
import pytest

from auth.token_store import TokenPair, TokenStore
from tests.git_helpers import commit_file


@pytest.fixture
def git_repo(tmp_path) -> git.Repo:
    repo = git.Repo.init(tmp_path / "project", initial_branch="main")
    commit_file(repo, "README.md", "# project\n", "Initial commit")
    return repo


class FakeListener:
    """Stands in for the loopback callback server in flow tests."""

    instances: list["FakeListener"] = []

    def __init__(self, address, on_callback) -> None:
        self.address = address
        self.on_callback = on_callback
        self.entered = False
        self.exited = False
        FakeListener.instances.append(self)

    async def __aenter__(self) -> "FakeListener":
        self.entered = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.exited = True


@pytest.fixture
def fake_listener():
    FakeListener.instances = []
    yield FakeListener
    FakeListener.instances = []


@pytest.fixture
def token_store() -> TokenStore:
    return TokenStore()


@pytest.fixture
def authenticated_store() -> TokenStore:
    store = TokenStore()
    store.set(TokenPair(access_token="access-1", refresh_token="refresh-1"))
    return store
