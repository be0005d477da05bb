from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from apps.workers.models import StoredMeta
from apps.workers.store import parse_iso

DEFAULT_TTL = timedelta(hours=24)


def is_fresh(meta: Optional[StoredMeta], now: datetime, ttl: timedelta = DEFAULT_TTL) -> bool:
    """
    True iff a record exists and now - updated_at is within [0, ttl).

    A record from the future (clock skew) or with an unreadable updated_at is
    NOT fresh, so it gets re-fetched instead of trusted.
    """
    if meta is None:
        return False
    updated = parse_iso(meta.updated_at)
    if updated is None:
        return False
    age = (now - updated).total_seconds()
    if not math.isfinite(age) or age < 0:
        return False
    return age < ttl.total_seconds()
