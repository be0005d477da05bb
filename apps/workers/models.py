from enum import Enum
from typing import Optional

from pydantic import BaseModel


class TickStatus(str, Enum):
    # no-op branches
    idle = "idle"
    debounced = "debounced"
    blocked = "blocked"

    # per-item branches
    updated = "updated"
    skip_fresh = "skip_fresh"
    rate_limited = "rate_limited"
    error = "error"


class StoredMeta(BaseModel):
    ticker: str
    key: str                         # blob key, e.g. logos/AAPL.svg
    mime: str
    bytes: int
    source_url: Optional[str] = None
    updated_at: str                  # RFC3339 UTC


class TickOutcome(BaseModel):
    ts: str
    status: TickStatus
    ticker: Optional[str] = None
    cursor: Optional[int] = None
    next_cursor: Optional[int] = None
    cycle_complete: bool = False
    bytes: Optional[int] = None
    source_url: Optional[str] = None
    blocked_until: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
