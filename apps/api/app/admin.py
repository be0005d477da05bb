# apps/api/app/admin.py
#
# Operator surface for the refresh cycle. Every route requires
#     Authorization: Bearer <ADMIN_TOKEN>
# An unset ADMIN_TOKEN locks the whole router (403), it never opens it.
from __future__ import annotations

import hmac
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from apps.api.app.config import settings
from apps.api.app.deps import get_refresher
from apps.workers.refresh import LogoRefresher


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_admin(authorization: Optional[str] = Header(None)) -> None:
    expected = settings.admin_token
    token = _bearer(authorization)
    if not expected or not token or not hmac.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(status_code=403, detail="forbidden")


router = APIRouter(
    prefix="/v1/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


@router.get("/status")
def status(refresher: LogoRefresher = Depends(get_refresher)) -> Dict[str, Any]:
    """Cursor, backoff and cycle window as currently stored."""
    return refresher.status()


@router.get("/manifest")
def manifest(refresher: LogoRefresher = Depends(get_refresher)) -> Dict[str, Any]:
    """Per-ticker stored meta + last outcome, for every configured ticker."""
    state = refresher.state
    rows: List[Dict[str, Any]] = []
    for t in refresher.cfg.tickers:
        meta = state.get_meta(t)
        rows.append(
            {
                "ticker": t,
                "logo_src": f"/v1/logo/{t}",
                "meta": meta.model_dump() if meta else None,
                "last_result": state.get_result(t),
            }
        )
    configured = set(refresher.cfg.tickers)
    return {
        "tickers": list(refresher.cfg.tickers),
        "published": state.get_tickers(),
        "orphaned": [t for t in state.stored_tickers() if t not in configured],
        "items": rows,
    }


@router.post("/cycle/start")
def cycle_start(refresher: LogoRefresher = Depends(get_refresher)) -> Dict[str, Any]:
    return refresher.start_cycle()


@router.post("/tick")
async def tick(
    force: bool = Query(False, description="Skip the debounce guard (never the backoff)"),
    refresher: LogoRefresher = Depends(get_refresher),
) -> Dict[str, Any]:
    outcome = await refresher.tick(force=force)
    return outcome.model_dump(mode="json")
