from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

DEFAULT_FALLBACK = timedelta(seconds=60)


def compute_resume_delay(
    retry_after: Optional[str],
    now: Optional[datetime] = None,
    fallback: timedelta = DEFAULT_FALLBACK,
) -> int:
    """
    Turn a Retry-After value into a delay in milliseconds.

        "30"                              → 30000
        "Wed, 21 Oct 2026 07:28:00 GMT"   → ms until that instant (if in the future)
        None / "" / "soon" / "-5" / past  → fallback
    """
    fallback_ms = int(fallback.total_seconds() * 1000)
    raw = (retry_after or "").strip()
    if not raw:
        return fallback_ms

    try:
        secs = float(raw)
    except ValueError:
        secs = None
    if secs is not None:
        if math.isfinite(secs) and secs > 0:
            return int(math.ceil(secs * 1000))
        return fallback_ms

    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return fallback_ms
    if when is None:
        return fallback_ms
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    delta_ms = int(math.ceil((when - now).total_seconds() * 1000))
    return delta_ms if delta_ms > 0 else fallback_ms
