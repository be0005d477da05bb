# apps/workers/jobs.py
#
# PIPELINE ROLE (this file runs in the "workers" container / RQ queue: logos)
#
#   scheduler  → arms the daily cycle, enqueues tick_job once a minute
#   workers    → THIS FILE, rq worker "logos"
#                 - tick_job(): one LogoRefresher.tick() (at most one ticker)
#   api        → serves /v1/logo/<T> and /v1/logos from what ticks stored
#
# IMPORTANT:
# - a tick never processes more than one ticker; pacing against the upstream
#   rate limit depends on it.
# - all cycle state is in Redis; nothing here survives between jobs.

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from apps.api.app.config import Settings, load_tickers, settings
from apps.workers.refresh import LogoRefresher, RefreshConfig
from apps.workers.resolver import LogoResolver
from apps.workers.store import build_stores

__all__ = [
    "build_refresher",
    "tick_job",
    "start_cycle_job",
]

log = logging.getLogger("logocache.jobs")


def build_refresher(cfg: Optional[Settings] = None) -> LogoRefresher:
    """Wire stores + upstream client from Settings."""
    cfg = cfg or settings
    state, blobs = build_stores(cfg)
    resolver = LogoResolver(
        cfg.massive_api_key or "",
        cfg.massive_base_url,
        connect_timeout=cfg.http_connect_timeout,
        read_timeout=cfg.http_read_timeout,
    )
    return LogoRefresher(
        state,
        blobs,
        resolver,
        RefreshConfig.from_settings(cfg, load_tickers(cfg)),
    )


def tick_job(force: bool = False) -> Dict[str, Any]:
    refresher = build_refresher()
    outcome = asyncio.run(refresher.tick(force=force))
    log.info(
        "tick status=%s ticker=%s next_cursor=%s",
        outcome.status.value, outcome.ticker, outcome.next_cursor,
    )
    return outcome.model_dump(mode="json")


def start_cycle_job() -> Dict[str, Any]:
    return build_refresher().start_cycle()
