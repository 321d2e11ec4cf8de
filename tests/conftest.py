"""Shared test fixtures."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import Any

import pytest

from pagestash.errors import BadResponse
from pagestash.settings import Settings
from pagestash.snapshot import CaptureResult
from pagestash.store import SnapshotStore

FIXED_NOW = datetime(2025, 9, 5, 12, 0, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(
        self,
        url: str = "",
        status_code: int = 200,
        body: bytes | str = b"",
        headers: dict | None = None,
        json_data: Any = None,
    ):
        self.url = url
        self.status_code = status_code
        self.content = body.encode("utf-8") if isinstance(body, str) else body
        if json_data is not None:
            self.content = json.dumps(json_data).encode("utf-8")
        self.headers = dict(headers or {})
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def json(self) -> Any:
        return json.loads(self.content.decode("utf-8"))

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Routes (method, url) to canned responses and records every call.

    A route value may be a FakeResponse, an exception instance to raise, or
    a list of those consumed in order (the last one repeats).
    """

    def __init__(self):
        self.routes: dict = {}
        self.calls: list = []
        self._lock = Lock()

    def add(self, url: str, response: Any = None, *, method: str = "GET", **kw) -> None:
        if response is None:
            response = FakeResponse(url, **kw)
        self.routes[(method, url)] = response

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        with self._lock:
            self.calls.append((method, url, kwargs))
            route = self.routes.get((method, url))
            if isinstance(route, list):
                route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            return FakeResponse(url, 404)
        if isinstance(route, Exception):
            raise route
        return route

    def get(self, url: str, **kwargs) -> FakeResponse:
        return self.request("GET", url, **kwargs)

    def urls_called(self, method: str = "GET") -> list:
        return [u for m, u, _ in self.calls if m == method]


class FakeEngine:
    """Stands in for SnapshotEngine: writes a tiny snapshot per URL."""

    def __init__(
        self, root: Path, fail_urls: set | None = None, titles: dict | None = None
    ):
        self.root = root
        self.fail_urls = set(fail_urls or ())
        self.titles = dict(titles or {})
        self.captured: list = []
        self.on_capture = None
        self._lock = Lock()

    def capture(self, url: str) -> CaptureResult:
        with self._lock:
            self.captured.append(url)
        if self.on_capture is not None:
            self.on_capture(url)
        if url in self.fail_urls:
            raise BadResponse(url, 500)
        dir_name = "snap_" + hashlib.sha1(url.encode("utf-8")).hexdigest()[:10]
        site_dir = self.root / dir_name
        site_dir.mkdir(parents=True, exist_ok=True)
        index = site_dir / "index.html"
        index.write_text(f"<html>{url}</html>", encoding="utf-8")
        return CaptureResult(
            cache_dir=dir_name,
            asset_count=0,
            title=self.titles.get(url, f"Title of {url}"),
            index_path=index,
        )


class StepClock:
    def __init__(
        self, start: datetime = FIXED_NOW, step: timedelta = timedelta(seconds=1)
    ):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current = now + self.step
        return now


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(root=tmp_path / "data", workers=4, page_workers=2, timeout=5.0)


@pytest.fixture
def store(settings: Settings) -> SnapshotStore:
    return SnapshotStore(settings.catalog_root)


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def fake_engine(store: SnapshotStore) -> FakeEngine:
    return FakeEngine(store.root)
