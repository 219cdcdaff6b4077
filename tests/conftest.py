import time
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import platformdirs
import pytest
import requests

_NETWORK_BLOCK_MSG = (
    "Network access is blocked during tests. Mock requests.* or Session.request."
)

_ASYNC_NETWORK_BLOCK_MSG = (
    "Async network access is blocked during tests. Use the fake_session fixture."
)


def _block_network(*_args, **_kwargs):
    """
    Prevent network calls in tests by raising a RuntimeError.

    Raises:
        RuntimeError: with `_NETWORK_BLOCK_MSG` indicating that network access is blocked during tests.
    """
    raise RuntimeError(_NETWORK_BLOCK_MSG)


async def _async_block_network(*_args, **_kwargs):
    """
    Prevent async network calls during tests by raising a RuntimeError.

    Raises:
        RuntimeError: `_ASYNC_NETWORK_BLOCK_MSG` explaining that async network access is blocked.
    """
    raise RuntimeError(_ASYNC_NETWORK_BLOCK_MSG)


# Configure pytest-asyncio mode - only register if available
try:
    import importlib

    importlib.import_module("pytest_asyncio")
    pytest_plugins = ("pytest_asyncio",)
except ImportError:
    pytest_plugins = ()


def pytest_configure(config):
    """
    Register the markers used across the test suite.

    Parameters:
        config: pytest.Config
            The pytest configuration object.
    """
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test (auto-detected)"
    )
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "core_downloads: transfer and extraction tests")
    config.addinivalue_line("markers", "integration: multi-component pipeline tests")
    config.addinivalue_line("markers", "configuration: configuration and logging tests")
    config.addinivalue_line("markers", "cli: command-line interface tests")


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """
    Point platformdirs and the synlauncher environment variables at an isolated temporary layout.

    Clears GITHUB_TOKEN, SYNLAUNCHER_CATALOG_URL and SYNLAUNCHER_LOG_LEVEL so tests never pick up the developer's environment.
    """
    base = tmp_path_factory.mktemp("synlauncher")
    config_dir = base / "config"
    cache_dir = base / "cache"
    data_dir = base / "data"
    for path in (config_dir, cache_dir, data_dir):
        path.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_dir))
    monkeypatch.setenv("XDG_CACHE_HOME", str(cache_dir))
    monkeypatch.setenv("XDG_DATA_HOME", str(data_dir))
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("SYNLAUNCHER_CATALOG_URL", raising=False)
    monkeypatch.delenv("SYNLAUNCHER_LOG_LEVEL", raising=False)

    monkeypatch.setattr(
        platformdirs,
        "user_config_dir",
        lambda *_args, **_kwargs: str(config_dir / "SynastriaLauncher"),
    )
    monkeypatch.setattr(
        platformdirs, "user_cache_dir", lambda *_args, **_kwargs: str(cache_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_data_dir", lambda *_args, **_kwargs: str(data_dir)
    )


def pytest_runtest_setup():
    """
    Prevent real network requests during tests by replacing HTTP entry points with blocking callables.
    """
    requests.get = _block_network
    requests.post = _block_network
    requests.put = _block_network
    requests.delete = _block_network
    requests.head = _block_network
    requests.patch = _block_network
    requests.options = _block_network
    requests.Session.request = _block_network

    try:
        import aiohttp  # type: ignore[import-not-found]

        aiohttp.request = _async_block_network
        aiohttp.ClientSession.request = _async_block_network  # type: ignore[assignment]
        aiohttp.ClientSession.get = _async_block_network  # type: ignore[assignment]
        aiohttp.ClientSession.post = _async_block_network  # type: ignore[assignment]
    except ImportError:
        pass


@pytest.fixture(autouse=True)
def _mock_time_sleep(monkeypatch):
    """
    Make time.sleep instant for all tests to prevent delays.
    """
    monkeypatch.setattr(time, "sleep", lambda *_args, **_kwargs: None)


# =============================================================================
# Fake aiohttp session
# =============================================================================


class FakeContent:
    """Stand-in for `ClientResponse.content` streaming a fixed body."""

    def __init__(self, body: bytes, fail_after: Optional[Exception] = None):
        self._body = body
        self._fail_after = fail_after

    async def iter_chunked(self, size: int):
        for start in range(0, len(self._body), size):
            yield self._body[start : start + size]
        if self._fail_after is not None:
            raise self._fail_after


class FakeResponse:
    """
    Minimal aiohttp.ClientResponse replacement.

    Supports `async with session.get(...) as response`, `text()`, `json()` and
    `content.iter_chunked()`.
    """

    def __init__(
        self,
        status: int = 200,
        body: Union[bytes, str] = b"",
        headers: Optional[Dict[str, str]] = None,
        json_data=None,
        fail_after: Optional[Exception] = None,
    ):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.status = status
        self.body = body
        self.headers = dict(headers or {})
        self._json_data = json_data
        self.content = FakeContent(body, fail_after)
        self.released = False

    async def text(self, encoding=None, errors="strict"):
        return self.body.decode(encoding or "utf-8", errors)

    async def json(self, content_type="application/json"):
        if self._json_data is not None:
            return self._json_data
        import json

        return json.loads(self.body.decode("utf-8"))

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.released = True
        return False


class FakeSession:
    """
    Routes GET requests to queued FakeResponse objects keyed by URL.

    A URL with several queued responses serves them in order and repeats the
    last one. Requests to unknown URLs raise aiohttp.ClientConnectionError.
    """

    def __init__(self):
        self.closed = False
        self.routes: Dict[str, List[FakeResponse]] = {}
        self.requests: List[Tuple[str, Dict[str, str]]] = []
        self.errors: Dict[str, Exception] = {}

    def add(self, url: str, *responses: FakeResponse) -> "FakeSession":
        self.routes.setdefault(url, []).extend(responses)
        return self

    def respond(self, url: str, **kwargs) -> "FakeSession":
        """Queue a FakeResponse built from `kwargs` for `url`."""
        return self.add(url, FakeResponse(**kwargs))

    def redirect(self, url: str, location: str, status: int = 302) -> "FakeSession":
        return self.add(
            url, FakeResponse(status=status, headers={"Location": location})
        )

    def add_json(self, url: str, data, status: int = 200) -> "FakeSession":
        return self.add(url, FakeResponse(status=status, json_data=data))

    def fail(self, url: str, error: Exception) -> "FakeSession":
        self.errors[url] = error
        return self

    def requested_urls(self) -> List[str]:
        return [url for url, _ in self.requests]

    def get(self, url, headers=None, allow_redirects=True, **_kwargs):
        assert allow_redirects is False, "redirects must be followed manually"
        self.requests.append((url, dict(headers or {})))
        if url in self.errors:
            raise self.errors[url]
        queue = self.routes.get(url)
        if not queue:
            import aiohttp

            raise aiohttp.ClientConnectionError(f"no route for {url}")
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    """Provide a FakeSession with no routes."""
    return FakeSession()


@pytest.fixture
def make_client(fake_session, tmp_path):
    """
    Factory for AsyncGitHubClient instances wired to `fake_session`.

    The diagnostic log is written to `tmp_path / "addon_download_error.log"`.
    """
    from synlauncher.download.async_client import AsyncGitHubClient

    def _make(github_token=None, max_redirects=3):
        client = AsyncGitHubClient(
            github_token=github_token,
            max_redirects=max_redirects,
            error_log_path=tmp_path / "addon_download_error.log",
        )
        client._session = fake_session
        return client

    return _make


# =============================================================================
# Archives
# =============================================================================


def build_zip(
    path: Path, entries: Iterable[Tuple[str, Union[bytes, str, None]]]
) -> Path:
    """
    Write a zip archive at `path`.

    Each entry is `(name, data)`; a `None` data value writes a directory entry.
    Names are stored verbatim, so backslash separators can be exercised.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in entries:
            if data is None:
                archive.writestr(zipfile.ZipInfo(name), b"")
            else:
                archive.writestr(name, data)
    return path


@pytest.fixture
def zip_builder(tmp_path):
    """Provide `build(name, entries)` writing archives under `tmp_path / "archives"`."""

    def _build(name: str, entries) -> Path:
        return build_zip(tmp_path / "archives" / name, entries)

    return _build


@pytest.fixture
def zip_bytes(tmp_path):
    """Provide `to_bytes(entries)` returning the raw bytes of a zip built from `entries`."""
    counter = {"n": 0}

    def _to_bytes(entries) -> bytes:
        counter["n"] += 1
        path = build_zip(tmp_path / "zip-bytes" / f"archive{counter['n']}.zip", entries)
        return path.read_bytes()

    return _to_bytes


@pytest.fixture
def launcher_config(tmp_path):
    """LauncherConfig rooted in a temporary directory with no token."""
    from synlauncher.config import LauncherConfig

    return LauncherConfig(config_dir=tmp_path / "config")


@pytest.fixture
def client_dir(tmp_path):
    """A temporary client installation containing wow.exe."""
    directory = tmp_path / "client"
    directory.mkdir()
    (directory / "wow.exe").write_bytes(b"MZ")
    return directory


# =============================================================================
# Swarm backend
# =============================================================================


class FakeSwarmBackend:
    """
    In-memory SwarmBackend.

    `progress()` walks through `steps`; the transfer reports complete once
    every step has been served, unless `complete` is False. On completion the
    `files` mapping is written into the save path.
    """

    def __init__(self, steps=(0.0, 0.5), complete=True, files=None, fail_with=None):
        self.steps = list(steps)
        self.complete = complete
        self.files = dict(files or {})
        self.fail_with = fail_with
        self.added: List[Tuple[str, str]] = []
        self.removed: List[object] = []
        self._served = 0
        self._save_path: Optional[str] = None

    def add(self, magnet: str, save_path: str):
        self.added.append((magnet, save_path))
        self._save_path = save_path
        return object()

    def progress(self, handle) -> float:
        if self.fail_with is not None:
            raise self.fail_with
        index = min(self._served, len(self.steps) - 1)
        self._served += 1
        return self.steps[index]

    def is_complete(self, handle) -> bool:
        if not self.complete or self._served < len(self.steps):
            return False
        for name, data in self.files.items():
            target = Path(self._save_path) / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        return True

    def remove(self, handle) -> None:
        self.removed.append(handle)


@pytest.fixture
def swarm_backend():
    """Factory for FakeSwarmBackend instances."""
    return FakeSwarmBackend
