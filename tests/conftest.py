from __future__ import annotations

import fnmatch
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import httpx
import pytest
import redis

from apps.workers.refresh import LogoRefresher, RefreshConfig
from apps.workers.resolver import LogoResolver
from apps.workers.store import LogoState, RedisBlobStore, RedisMetaStore

T0 = datetime(2026, 10, 17, 6, 0, 0, tzinfo=timezone.utc)

API_BASE = "https://api.example.com"
IMG_BASE = "https://img.example.com"


class FakeRedis:
    """Dict-backed stand-in for the handful of redis-py calls the stores make."""

    def __init__(self):
        self.data: Dict[str, object] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("redis is down")

    def get(self, key):
        self._check()
        return self.data.get(key)

    def set(self, key, value):
        self._check()
        self.data[key] = value
        return True

    def delete(self, *keys):
        self._check()
        n = 0
        for k in keys:
            if self.data.pop(k, None) is not None:
                n += 1
        return n

    def scan_iter(self, match=None):
        self._check()
        return iter([k for k in list(self.data) if match is None or fnmatch.fnmatchcase(k, match)])

    def hset(self, key, mapping):
        self._check()
        self.data.setdefault(key, {}).update(mapping)
        return len(mapping)

    def hget(self, key, field):
        self._check()
        return (self.data.get(key) or {}).get(field)

    def ping(self):
        self._check()
        return True


class FakeUpstream:
    """Reference-ticker API + image host, answered from in-memory tables."""

    def __init__(self):
        self.calls: List[httpx.URL] = []
        self.overview: Dict[str, Tuple[int, object, dict]] = {}
        self.images: Dict[str, Tuple[int, bytes, dict]] = {}
        self.raise_for: Dict[str, Exception] = {}

    def add_ticker(
        self,
        ticker: str,
        logo: Optional[Tuple[bytes, Optional[str]]] = None,
        icon: Optional[Tuple[bytes, Optional[str]]] = None,
        logo_ext: str = "svg",
        icon_ext: str = "png",
    ) -> None:
        branding: Dict[str, str] = {}
        for field, item, ext, name in (
            ("logo_url", logo, logo_ext, "logo"),
            ("icon_url", icon, icon_ext, "icon"),
        ):
            if item is None:
                continue
            path = f"/{ticker}/{name}.{ext}"
            data, ctype = item
            branding[field] = f"{IMG_BASE}{path}"
            self.images[path] = (200, data, {"content-type": ctype} if ctype else {})
        self.overview[ticker] = (200, {"results": {"ticker": ticker, "branding": branding}}, {})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.url)
        path = request.url.path
        if path in self.raise_for:
            raise self.raise_for[path]
        if path.startswith("/v3/reference/tickers/"):
            ticker = path.rsplit("/", 1)[-1]
            status, body, headers = self.overview.get(ticker, (404, {"status": "NOT_FOUND"}, {}))
            return httpx.Response(status, json=body, headers=headers)
        status, content, headers = self.images.get(path, (404, b"", {}))
        return httpx.Response(status, content=content, headers=headers)


@pytest.fixture
def meta_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def blob_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def state(meta_redis) -> LogoState:
    return LogoState(RedisMetaStore(meta_redis))


@pytest.fixture
def blobs(blob_redis) -> RedisBlobStore:
    return RedisBlobStore(blob_redis)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def resolver(upstream) -> LogoResolver:
    return LogoResolver("test-key", API_BASE, transport=httpx.MockTransport(upstream.handler))


@pytest.fixture
def refresher(state, blobs, resolver) -> LogoRefresher:
    return LogoRefresher(state, blobs, resolver, RefreshConfig(tickers=("AAPL", "MSFT", "TSLA")))
