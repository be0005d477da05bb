# apps/api/app/logos.py
#
# Public read path. Never calls upstream; serves only what refresh ticks stored.
#
#   GET /v1/logo/<T>   raw image bytes (ETag / 304 aware)
#   GET /v1/logos      every published ticker as a data: URI in one payload
from __future__ import annotations

import base64
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from apps.api.app.deps import get_blobs, get_state
from apps.workers.store import BlobStore, LogoState, to_iso, utc_now

router = APIRouter(prefix="/v1", tags=["logos"])

# ── Tunables ──────────────────────────────────────────────────────────────────
# 1 day when every ticker has a logo
CACHE_OK = "public, max-age=86400, s-maxage=86400"
# 1 minute while some are still missing, so clients pick them up as ticks land
CACHE_RETRY = "public, max-age=60, s-maxage=60"


class LogoEntry(BaseModel):
    ticker: str
    data_uri: str
    updated_at: str
    mime: str
    bytes: int
    key: str


class LogosResponse(BaseModel):
    tickers: List[str]
    generated_at: str
    logos: List[LogoEntry]


def _cors_headers() -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "X-Content-Type-Options": "nosniff",
        "Cross-Origin-Resource-Policy": "cross-origin",
    }


def _etag(updated_at: Optional[str]) -> Optional[str]:
    return f'"{updated_at}"' if updated_at else None


def to_data_uri(mime: str, data: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


@router.get("/logo/{ticker}")
def logo(
    ticker: str,
    request: Request,
    state: LogoState = Depends(get_state),
    blobs: BlobStore = Depends(get_blobs),
):
    t = ticker.strip().upper()
    meta = state.get_meta(t)
    if meta is None:
        raise HTTPException(status_code=404, detail="not found")

    etag = _etag(meta.updated_at)
    inm = request.headers.get("if-none-match")
    if etag and inm and inm == etag:
        headers = _cors_headers()
        headers["ETag"] = etag
        return Response(status_code=304, headers=headers)

    data = blobs.get(meta.key)
    if not data:
        raise HTTPException(status_code=404, detail="not found")

    headers = _cors_headers()
    headers["Cache-Control"] = CACHE_OK
    if etag:
        headers["ETag"] = etag
    return Response(content=data, status_code=200, media_type=meta.mime, headers=headers)


@router.get("/logos", response_model=LogosResponse)
def logos(
    response: Response,
    state: LogoState = Depends(get_state),
    blobs: BlobStore = Depends(get_blobs),
):
    tickers = state.get_tickers()
    if not tickers:
        raise HTTPException(status_code=500, detail="cfg:tickers missing or empty")

    out: List[LogoEntry] = []
    for t in tickers:
        meta = state.get_meta(t)
        if meta is None:
            continue
        data = blobs.get(meta.key)
        if not data:
            continue
        out.append(
            LogoEntry(
                ticker=t,
                data_uri=to_data_uri(meta.mime, data),
                updated_at=meta.updated_at,
                mime=meta.mime,
                bytes=meta.bytes,
                key=meta.key,
            )
        )

    response.headers["Cache-Control"] = CACHE_OK if len(out) == len(tickers) else CACHE_RETRY
    return LogosResponse(tickers=tickers, generated_at=to_iso(utc_now()), logos=out)
