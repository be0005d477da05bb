# apps/api/app/main.py
#
# LOGO CACHE API
#
# LIFECYCLE OVERVIEW:
#
#   scheduler  → arms one refresh cycle per day, dispatches a tick per minute
#
#   workers    → tick_job()
#                 - one ticker per tick: fresh? skip : fetch branding, keep the
#                   smaller of logo/icon, store bytes + meta
#                 - 429 from upstream → back off, retry the same ticker later
#
#   api (THIS FILE) → /v1/logo/<T>, /v1/logos, /v1/admin/*
#                      * ONLY reads what workers stored
#                      * NEVER calls the upstream API on a public request
#                      * admin routes may arm a cycle or run a tick inline

from __future__ import annotations

import json
import os

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from apps.api.app.admin import router as admin_router
from apps.api.app.config import settings
from apps.api.app.deps import get_state
from apps.api.app.logos import router as logos_router
from apps.workers.errors import StoreError
from apps.workers.store import LogoState

VERSION = "0.1.0"


class ErrorBody(BaseModel):
    ok: bool = False
    status: int
    error: str
    message: str


# -----------------------------------------------------------------------------
# FastAPI app + CORS
# -----------------------------------------------------------------------------

app = FastAPI(
    title="LogoCache API",
    version=VERSION,
    description=(
        "Cached company logos.\n"
        "Images are refreshed in the background one ticker per minute; "
        "public routes only read the cache."
    ),
)

_cors = os.getenv("CORS_ORIGINS", "*").strip()
if _cors == "*":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in _cors.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(logos_router)  # /v1/logo/<T>, /v1/logos
app.include_router(admin_router)  # /v1/admin/*

# -----------------------------------------------------------------------------
# Error handlers
# -----------------------------------------------------------------------------

def _json_error(status_code: int, err: str, msg: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorBody(status=status_code, error=err, message=msg).model_dump(),
    )

@app.exception_handler(HTTPException)
async def http_exc_handler(_: Request, exc: HTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else json.dumps(exc.detail)
    return _json_error(exc.status_code, "http_error", detail)

@app.exception_handler(RequestValidationError)
async def validation_exc_handler(_: Request, exc: RequestValidationError):
    return _json_error(422, "validation_error", exc.errors().__repr__())

@app.exception_handler(StoreError)
async def store_exc_handler(_: Request, exc: StoreError):
    return _json_error(503, "store_unavailable", str(exc))

@app.exception_handler(Exception)
async def unhandled_exc_handler(_: Request, exc: Exception):
    return _json_error(500, exc.__class__.__name__, "Internal server error")

# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------

@app.get("/health")
def health(state: LogoState = Depends(get_state)):
    """Basic health + some debug info."""
    try:
        ok = bool(state.store.ping())
        published = state.get_tickers()
        err = None
    except StoreError as e:
        ok = False
        published = None
        err = str(e)

    return {
        "status": "ok" if ok else "degraded",
        "redis_ok": ok,
        "published_tickers": len(published) if published else 0,
        "blob_backend": settings.blob_backend,
        "error": err,
        "env": settings.env,
        "version": VERSION,
    }

@app.get("/v1/health", include_in_schema=False)
def v1_health(state: LogoState = Depends(get_state)):
    """Compatibility shim so /v1/health responds the same as /health."""
    return health(state)

@app.get("/")
def root():
    """Basic ping."""
    return {"ok": True, "service": "logocache-api", "env": settings.env, "version": VERSION}
