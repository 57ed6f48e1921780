"""
Shared fixtures for adhoc-fetch tests.

Every test runs against its own configuration and cache directory, and all
HTTP traffic goes to an in-memory ``httpx.MockTransport``.
"""

import io
import os
import tarfile
import zipfile
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Tuple

import httpx
import pytest

from adhoc_fetch.cache_manager import ArtifactCacheManager, reset_cache_manager
from adhoc_fetch.cli_config import CacheConfig, ComprehensiveConfig, reset_config, set_config
from adhoc_fetch.error_handling import setup_error_handling
from adhoc_fetch.project import Project


class FakeServer:
    """Serves canned responses by URL and records every request."""

    def __init__(self):
        self.routes: Dict[str, Tuple[int, bytes]] = {}
        self.errors: Dict[str, Callable[[httpx.Request], Exception]] = {}
        self.requests: List[str] = []

    def serve(self, url: str, content: bytes = b"payload", status: int = 200) -> None:
        self.routes[url] = (status, content)

    def fail(self, url: str, error: Callable[[httpx.Request], Exception]) -> None:
        self.errors[url] = error

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.errors:
            raise self.errors[url](request)
        status, content = self.routes.get(url, (404, b"not found"))
        return httpx.Response(status, content=content)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def requests_to(self, prefix: str) -> List[str]:
        return [url for url in self.requests if url.startswith(prefix)]


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    """Temporary working directory."""
    return tmp_path


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Fresh configuration and cache for every test; no user config or env leaks in."""
    for name in list(os.environ):
        if name.startswith("ADHOC_FETCH_"):
            monkeypatch.delenv(name)
    monkeypatch.delenv("JAVA_HOME", raising=False)

    config = ComprehensiveConfig(cache=CacheConfig(cache_dir=str(tmp_path / "cache")))
    set_config(config)
    reset_cache_manager()
    setup_error_handling()
    yield config
    reset_config()
    reset_cache_manager()


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def cache_manager(tmp_path) -> ArtifactCacheManager:
    return ArtifactCacheManager(cache_dir=tmp_path / "cache" / "artifacts")


@pytest.fixture
def project(tmp_path, server, cache_manager):
    """A project whose resolver talks to the fake server."""
    with Project(
        name="test",
        build_dir=tmp_path / "build",
        cache_manager=cache_manager,
        client=server.client(),
    ) as project:
        yield project


@pytest.fixture
def make_java_home(tmp_path) -> Callable[[Iterable[str]], Path]:
    """Build a fake Java installation containing the given relative files."""

    def make(files: Iterable[str], name: str = "jdk") -> Path:
        home = tmp_path / name
        (home / "include").mkdir(parents=True, exist_ok=True)
        for relative in files:
            path = home / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"\x7fELF")
        return home

    return make


def zip_bytes(members: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in members.items():
            if name.endswith("/"):
                zf.writestr(zipfile.ZipInfo(name), b"")
            else:
                zf.writestr(name, content)
    return buffer.getvalue()


def tar_gz_bytes(members: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tf:
        for name, content in members.items():
            info = tarfile.TarInfo(name.rstrip("/"))
            if name.endswith("/"):
                info.type = tarfile.DIRTYPE
                tf.addfile(info)
            else:
                info.size = len(content)
                tf.addfile(info, io.BytesIO(content))
    return buffer.getvalue()
