# apps/workers/errors.py
#
# Failure taxonomy for the logo refresh path.
#
#   ResolveError      → per-item failures. Caught at the per-item boundary in
#     NotFoundError       refresh.py and turned into a TickOutcome record.
#     RateLimitedError    Never crash a tick.
#     UpstreamError
#
#   StoreError        → metadata / blob store failed. Allowed to escape the tick
#                       so last_run is NOT stamped and the outer trigger can
#                       retry from a clean state.

from __future__ import annotations

from typing import Optional


class ResolveError(Exception):
    """Base class for failures while resolving one ticker's image."""


class NotFoundError(ResolveError):
    """Upstream description has no usable image reference."""


class RateLimitedError(ResolveError):
    """Upstream answered 429. `retry_after` is the raw header value, if any."""

    def __init__(self, message: str = "rate limited", retry_after: Optional[str] = None):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamError(ResolveError):
    """Non-429 upstream failure, timeout, or every candidate download failed."""


class StoreError(Exception):
    """A metadata or blob store operation failed."""
