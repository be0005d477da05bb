# apps/workers/refresh.py
#
# ─────────────────────────────────────────────────────────────────────
# REFRESH CYCLE (one daily pass over the ticker list, one ticker per tick)
# ─────────────────────────────────────────────────────────────────────
#
#   daily trigger  → start_cycle()
#                      publish cfg:tickers, cursor = 0, clear blocked_until,
#                      cycle_active_until = now + N*tick_interval + buffer
#
#   minute trigger → tick()
#                      a. window absent/expired       → "idle"       (no-op)
#                      b. < debounce since last tick  → "debounced"  (no-op)
#                      c. blocked_until in the future → "blocked"    (no-op)
#                      d. ticker at cursor:
#                           fresh record     → "skip_fresh"   advance
#                           resolve + store  → "updated"      advance
#                           429              → "rate_limited" stay, back off,
#                                                             extend window
#                           anything else    → "error"        advance
#                      e. cursor wrapped to 0 → clear window (idle again)
#                      f. last_run + last_run_result written on every branch
#
# Ticks run in separate processes that share nothing; every field above is
# read from and written back to the metadata store on each call.
#
# StoreError is NOT caught: if Redis/R2 is down we want the tick to fail
# loudly without stamping last_run.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Sequence, Tuple

from apps.workers.backoff import compute_resume_delay
from apps.workers.errors import NotFoundError, RateLimitedError, StoreError, UpstreamError
from apps.workers.freshness import is_fresh
from apps.workers.models import StoredMeta, TickOutcome, TickStatus
from apps.workers.resolver import LogoResolver
from apps.workers.store import BlobStore, LogoState, StateKey, blob_key, to_iso, utc_now

log = logging.getLogger("logocache.refresh")


@dataclass(frozen=True)
class RefreshConfig:
    tickers: Tuple[str, ...]
    ttl: timedelta = timedelta(hours=24)
    tick_interval: timedelta = timedelta(seconds=60)
    debounce: timedelta = timedelta(seconds=55)
    backoff_fallback: timedelta = timedelta(seconds=60)
    cycle_buffer: timedelta = timedelta(minutes=10)

    @classmethod
    def from_settings(cls, s: Any, tickers: Sequence[str]) -> "RefreshConfig":
        return cls(
            tickers=tuple(tickers),
            ttl=timedelta(seconds=s.freshness_ttl_sec),
            tick_interval=timedelta(seconds=s.tick_interval_sec),
            debounce=timedelta(seconds=s.debounce_sec),
            backoff_fallback=timedelta(seconds=s.backoff_fallback_sec),
            cycle_buffer=timedelta(seconds=s.cycle_buffer_sec),
        )

    @property
    def cycle_length(self) -> timedelta:
        return self.tick_interval * len(self.tickers) + self.cycle_buffer


class LogoRefresher:
    def __init__(
        self,
        state: LogoState,
        blobs: BlobStore,
        resolver: LogoResolver,
        cfg: RefreshConfig,
    ):
        if not cfg.tickers:
            raise ValueError("RefreshConfig.tickers must not be empty")
        self.state = state
        self.blobs = blobs
        self.resolver = resolver
        self.cfg = cfg

    # -----------------------------------------------------------------
    # Idle → Active
    # -----------------------------------------------------------------

    def start_cycle(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utc_now()
        active_until = now + self.cfg.cycle_length

        self.state.publish_tickers(self.cfg.tickers)
        self.state.set_cursor(0)
        self.state.clear(StateKey.blocked_until)
        self.state.set_time(StateKey.cycle_active_until, active_until)
        self.state.set_time(StateKey.cycle_started_at, now)

        log.info(
            "cycle armed: %d tickers, active until %s",
            len(self.cfg.tickers), to_iso(active_until),
        )
        return {
            "ok": True,
            "started_at": to_iso(now),
            "active_until": to_iso(active_until),
            "tickers": list(self.cfg.tickers),
        }

    # -----------------------------------------------------------------
    # Active tick
    # -----------------------------------------------------------------

    async def tick(self, now: Optional[datetime] = None, *, force: bool = False) -> TickOutcome:
        """
        Advance the cycle by at most one ticker. `force` skips only the
        debounce guard; blocked_until is always honoured.
        """
        now = now or utc_now()
        outcome = await self._tick(now, force=force)
        self.state.record_run(now, outcome)
        return outcome

    async def _tick(self, now: datetime, *, force: bool) -> TickOutcome:
        active_until = self.state.get_time(StateKey.cycle_active_until)
        if active_until is None or active_until <= now:
            if active_until is not None:
                log.info("cycle window expired at %s; going idle", to_iso(active_until))
                self.state.clear(StateKey.cycle_active_until)
            return TickOutcome(ts=to_iso(now), status=TickStatus.idle, reason="no active cycle")

        if not force:
            last = self.state.get_time(StateKey.last_minute_run)
            if last is not None and timedelta(0) <= now - last < self.cfg.debounce:
                return TickOutcome(
                    ts=to_iso(now),
                    status=TickStatus.debounced,
                    reason=f"last tick at {to_iso(last)}",
                )
        self.state.set_time(StateKey.last_minute_run, now)

        blocked_until = self.state.get_time(StateKey.blocked_until)
        if blocked_until is not None and blocked_until > now:
            return TickOutcome(
                ts=to_iso(now),
                status=TickStatus.blocked,
                blocked_until=to_iso(blocked_until),
                reason="upstream rate limited",
            )

        n = len(self.cfg.tickers)
        cursor = self.state.get_cursor(n)
        ticker = self.cfg.tickers[cursor]

        outcome = await self._process(ticker, cursor, now, active_until)

        if outcome.status != TickStatus.rate_limited:
            next_cursor = (cursor + 1) % n
            self.state.set_cursor(next_cursor)
            outcome.next_cursor = next_cursor
            if next_cursor == 0:
                self.state.clear(StateKey.cycle_active_until)
                outcome.cycle_complete = True
                log.info("cycle complete after %s", ticker)
        else:
            outcome.next_cursor = cursor

        self.state.put_result(ticker, outcome)
        return outcome

    async def _process(
        self, ticker: str, cursor: int, now: datetime, active_until: datetime
    ) -> TickOutcome:
        base = {"ts": to_iso(now), "ticker": ticker, "cursor": cursor}

        if is_fresh(self.state.get_meta(ticker), now, self.cfg.ttl):
            return TickOutcome(status=TickStatus.skip_fresh, **base)

        try:
            image = await self.resolver.resolve(ticker)
        except RateLimitedError as e:
            delay = timedelta(
                milliseconds=compute_resume_delay(
                    e.retry_after, now=now, fallback=self.cfg.backoff_fallback
                )
            )
            blocked_until = now + delay
            self.state.set_time(StateKey.blocked_until, blocked_until)
            self.state.set_time(StateKey.cycle_active_until, active_until + delay)
            log.warning(
                "rate limited on %s (retry-after=%r); blocked until %s",
                ticker, e.retry_after, to_iso(blocked_until),
            )
            return TickOutcome(
                status=TickStatus.rate_limited,
                blocked_until=to_iso(blocked_until),
                reason=str(e),
                **base,
            )
        except NotFoundError as e:
            log.warning("no logo for %s: %s", ticker, e)
            return TickOutcome(status=TickStatus.error, reason="not_found", error=str(e), **base)
        except UpstreamError as e:
            log.warning("upstream failure for %s: %s", ticker, e)
            return TickOutcome(status=TickStatus.error, reason="upstream", error=str(e), **base)
        except StoreError:
            raise
        except Exception as e:
            log.exception("unexpected failure resolving %s", ticker)
            return TickOutcome(
                status=TickStatus.error,
                reason="unexpected",
                error=f"{type(e).__name__}: {e}",
                **base,
            )

        key = blob_key(ticker, image.mime)
        self.blobs.put(key, image.data, image.mime)
        self.state.put_meta(
            StoredMeta(
                ticker=ticker,
                key=key,
                mime=image.mime,
                bytes=image.bytes,
                source_url=image.source_url,
                updated_at=to_iso(now),
            )
        )
        log.info("updated %s → %s (%d bytes)", ticker, key, image.bytes)
        return TickOutcome(
            status=TickStatus.updated,
            bytes=image.bytes,
            source_url=image.source_url,
            **base,
        )

    # -----------------------------------------------------------------
    # read-only view for the admin surface
    # -----------------------------------------------------------------

    def status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utc_now()
        n = len(self.cfg.tickers)
        cursor = self.state.get_cursor(n)
        active_until = self.state.get_time(StateKey.cycle_active_until)
        blocked_until = self.state.get_time(StateKey.blocked_until)

        def _iso(key: StateKey) -> Optional[str]:
            dt = self.state.get_time(key)
            return to_iso(dt) if dt else None

        return {
            "now": to_iso(now),
            "active": bool(active_until and active_until > now),
            "cursor": cursor,
            "ticker": self.cfg.tickers[cursor],
            "tickers": list(self.cfg.tickers),
            "blocked": bool(blocked_until and blocked_until > now),
            "blocked_until": to_iso(blocked_until) if blocked_until else None,
            "cycle_active_until": to_iso(active_until) if active_until else None,
            "cycle_started_at": _iso(StateKey.cycle_started_at),
            "last_minute_run": _iso(StateKey.last_minute_run),
            "last_run": _iso(StateKey.last_run),
            "last_run_result": self.state.get_json(StateKey.last_run_result.value),
        }
