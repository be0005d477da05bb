# apps/workers/resolver.py
#
# ticker → one logo image.
#
#   1. GET /v3/reference/tickers/<T>        (description record)
#   2. results.branding.logo_url  = primary candidate
#      results.branding.icon_url  = secondary candidate
#   3. download both (concurrently), keep the smaller one
#
# No persistence here; the refresh cycle stores whatever we return.

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote, urlparse

import httpx

from apps.workers.errors import NotFoundError, RateLimitedError, UpstreamError

log = logging.getLogger("logocache.resolver")

# ── Tunables ──────────────────────────────────────────────────────────────────
CONNECT_TIMEOUT = 3.0
READ_TIMEOUT = 10.0
MAX_REDIRECTS = 5
USER_AGENT = "logocache/0.1"


@dataclass(frozen=True)
class ResolvedImage:
    data: bytes
    mime: str
    bytes: int
    source_url: str


def infer_mime_from_url(url: str) -> str:
    path = (urlparse(url).path or url).lower()
    if path.endswith(".svg"):
        return "image/svg+xml"
    if path.endswith(".png"):
        return "image/png"
    if path.endswith(".jpg") or path.endswith(".jpeg"):
        return "image/jpeg"
    return "application/octet-stream"


def _media_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def choose_smaller(
    primary: Optional[ResolvedImage], secondary: Optional[ResolvedImage]
) -> Optional[ResolvedImage]:
    """Smaller byte length wins; a tie goes to primary."""
    if primary and secondary:
        return primary if primary.bytes <= secondary.bytes else secondary
    return primary or secondary


def _branding_urls(body: Any) -> tuple[Optional[str], Optional[str]]:
    if not isinstance(body, dict):
        return None, None
    results = body.get("results")
    branding = results.get("branding") if isinstance(results, dict) else None
    if not isinstance(branding, dict):
        return None, None

    def _clean(v: Any) -> Optional[str]:
        if isinstance(v, str) and v.strip().startswith(("http://", "https://")):
            return v.strip()
        return None

    return _clean(branding.get("logo_url")), _clean(branding.get("icon_url"))


class LogoResolver:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.massive.com",
        *,
        connect_timeout: float = CONNECT_TIMEOUT,
        read_timeout: float = READ_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise RuntimeError("MASSIVE_API_KEY is not set")
        self.api_key = api_key
        self.base_url = base_url.strip().rstrip("/")
        self.timeout = httpx.Timeout(
            timeout=None,
            connect=connect_timeout,
            read=read_timeout,
            write=read_timeout,
            pool=connect_timeout,
        )
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            headers={"User-Agent": USER_AGENT},
            transport=self.transport,
        )

    async def resolve(self, ticker: str) -> ResolvedImage:
        t = ticker.strip().upper()
        async with self._client() as client:
            primary_url, secondary_url = await self._describe(client, t)
            if not primary_url and not secondary_url:
                raise NotFoundError(f"{t}: no branding.logo_url or branding.icon_url")

            fetched = await asyncio.gather(
                self._fetch_candidate(client, primary_url),
                self._fetch_candidate(client, secondary_url),
                return_exceptions=True,
            )

        # a 429 on either candidate beats whatever the other one did
        for res in fetched:
            if isinstance(res, RateLimitedError):
                raise res
        for res in fetched:
            if isinstance(res, BaseException):
                raise res
        primary, secondary = fetched

        chosen = choose_smaller(primary, secondary)
        if chosen is None:
            raise UpstreamError(f"{t}: every logo/icon download failed")
        return chosen

    async def _describe(
        self, client: httpx.AsyncClient, ticker: str
    ) -> tuple[Optional[str], Optional[str]]:
        url = f"{self.base_url}/v3/reference/tickers/{quote(ticker, safe='')}"
        try:
            r = await client.get(url, params={"apiKey": self.api_key})
        except httpx.HTTPError as e:
            raise UpstreamError(f"{ticker}: overview request failed ({type(e).__name__})") from e

        if r.status_code == 429:
            raise RateLimitedError(
                f"{ticker}: overview rate limited",
                retry_after=r.headers.get("retry-after"),
            )
        if r.status_code < 200 or r.status_code >= 300:
            raise UpstreamError(f"{ticker}: ticker overview failed ({r.status_code})")

        try:
            body = r.json()
        except ValueError as e:
            raise UpstreamError(f"{ticker}: overview body is not JSON") from e
        if not isinstance(body, dict):
            raise UpstreamError(f"{ticker}: overview body is not an object")

        return _branding_urls(body)

    async def _fetch_candidate(
        self, client: httpx.AsyncClient, url: Optional[str]
    ) -> Optional[ResolvedImage]:
        """
        None when absent or failed. A 429 here aborts the whole resolution:
        the image host shares the API's rate limit.
        """
        if not url:
            return None
        try:
            r = await client.get(url, params={"apiKey": self.api_key})
        except httpx.HTTPError as e:
            log.info("candidate fetch failed url=%s err=%s", url, type(e).__name__)
            return None

        if r.status_code == 429:
            raise RateLimitedError(
                f"image rate limited: {url}",
                retry_after=r.headers.get("retry-after"),
            )
        if r.status_code < 200 or r.status_code >= 300:
            log.info("candidate fetch status=%s url=%s", r.status_code, url)
            return None

        data = r.content
        if not data:
            return None

        mime = _media_type(r.headers.get("content-type")) or infer_mime_from_url(url)
        return ResolvedImage(data=data, mime=mime, bytes=len(data), source_url=url)
