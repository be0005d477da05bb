from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from pydantic_settings import BaseSettings

log = logging.getLogger("logocache.config")

# master ticker list (what the frontend renders)
DEFAULT_TICKERS = "META,AAPL,AMZN,MSFT,GOOGL,TSLA,NVDA"


class Settings(BaseSettings):
    # runtime env
    env: str = "dev"

    # backing stores
    redis_url: str = "redis://redis:6379/0"
    blob_backend: str = "redis"      # redis | r2
    r2_endpoint: Optional[str] = None
    r2_access_key_id: Optional[str] = None
    r2_secret_access_key: Optional[str] = None
    r2_bucket: str = "logos-cache"

    # upstream (Massive / Polygon-style reference API)
    massive_api_key: Optional[str] = None
    massive_base_url: str = "https://api.massive.com"
    http_connect_timeout: float = 3.0
    http_read_timeout: float = 10.0

    # item list: YAML file wins over the comma list
    tickers: str = DEFAULT_TICKERS
    tickers_file: Optional[str] = None

    # refresh cycle pacing
    freshness_ttl_sec: int = 86400
    tick_interval_sec: int = 60
    debounce_sec: int = 55           # < tick interval so a slightly early cron still counts
    backoff_fallback_sec: int = 60
    cycle_buffer_sec: int = 600

    # scheduler / queue
    queue_name: str = "logos"
    daily_cycle_hour_utc: int = 6
    enqueue_ticks: bool = True
    one_shot: bool = False

    # admin surface (Authorization: Bearer <admin_token>)
    admin_token: Optional[str] = None

    class Config:
        env_file = ".env"


settings = Settings()


def _split_list(raw: str) -> List[str]:
    """
    Comma/newline-separated list → clean list.
    Lines starting with "#" are ignored.
    """
    out: List[str] = []
    for chunk in (raw or "").replace("\r", "\n").split("\n"):
        for part in chunk.split(","):
            s = part.strip()
            if not s or s.startswith("#"):
                continue
            out.append(s)
    return out


def _normalize(items: Iterable[Any]) -> List[str]:
    out: List[str] = []
    for t in items:
        s = str(t or "").strip().upper()
        if s and s not in out:
            out.append(s)
    return out


def _tickers_from_yaml(path: str) -> List[str]:
    """
    Accepts either a bare list:
        - AAPL
        - MSFT
    or a mapping:
        tickers: [AAPL, MSFT]
    """
    import yaml

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("tickers") or []
    if not isinstance(data, list):
        raise RuntimeError(f"{path}: expected a list of tickers")
    return _normalize(data)


def load_tickers(cfg: Settings = settings) -> List[str]:
    """
    The fixed, ordered item list for this process. Raises if it comes out empty:
    a cycle over zero tickers has no cursor to point at.
    """
    tickers: List[str] = []
    path = cfg.tickers_file
    if path:
        tickers = _tickers_from_yaml(path)
        log.info("loaded %d tickers from %s", len(tickers), path)
    if not tickers:
        tickers = _normalize(_split_list(cfg.tickers))
    if not tickers:
        raise RuntimeError("ticker list is empty (set TICKERS or TICKERS_FILE)")
    return tickers
