# apps/scheduler/main.py
#
# ─────────────────────────────────────────────────────────────────────
# SCHEDULER ROLE (this process = "scheduler" container / cron brain)
# ─────────────────────────────────────────────────────────────────────
#
#   1. scheduler (THIS FILE)
#        - once per UTC day, at/after DAILY_CYCLE_HOUR_UTC:
#              LogoRefresher.start_cycle()   (store writes only, run inline)
#        - once per TICK_INTERVAL_SEC:
#              enqueue apps.workers.jobs.tick_job on the "logos" RQ queue
#              (or run it inline when ENQUEUE_TICKS=0)
#
#   2. workers  (rq worker "logos")
#        - tick_job() → at most ONE ticker fetched + stored per call
#
#   3. api
#        - /v1/logo/<T>, /v1/logos read what the workers stored
#
# The scheduler does not decide WHICH ticker is next or whether upstream is
# rate limited. That lives in Redis and is evaluated by each tick. Duplicate
# or overlapping ticks (two schedulers, a manual admin tick, a slow queue)
# are absorbed by the tick's own debounce guard.
#
# If ONE_SHOT=1 → run one pass and exit (useful for testing / external cron).

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from redis import Redis
from rq import Queue

from apps.api.app.config import settings
from apps.workers.jobs import build_refresher, tick_job
from apps.workers.refresh import LogoRefresher
from apps.workers.store import LogoState, StateKey, to_iso, utc_now

log = logging.getLogger("logocache.scheduler")


def _log(msg: str) -> None:
    """Prefix logs with UTC for easier cross-service debugging."""
    log.info("[scheduler] %sZ  %s", utc_now().strftime("%Y-%m-%d %H:%M:%S"), msg)


@dataclass(frozen=True)
class Config:
    tick_interval_sec: int      # how often a tick is dispatched
    daily_hour_utc: int         # cycle is armed once per day at/after this hour
    enqueue: bool               # RQ vs inline ticks
    queue_name: str
    one_shot: bool


def _read_config() -> Config:
    hour = int(settings.daily_cycle_hour_utc)
    if not 0 <= hour <= 23:
        raise RuntimeError(f"DAILY_CYCLE_HOUR_UTC must be 0..23, got {hour}")
    interval = int(settings.tick_interval_sec)
    if interval <= 0:
        raise RuntimeError(f"TICK_INTERVAL_SEC must be positive, got {interval}")
    return Config(
        tick_interval_sec=interval,
        daily_hour_utc=hour,
        enqueue=bool(settings.enqueue_ticks),
        queue_name=settings.queue_name,
        one_shot=bool(settings.one_shot),
    )


def _daily_due(state: LogoState, now: datetime, hour_utc: int) -> bool:
    """
    True when today's cycle has not been armed yet and we are at/after the
    configured hour. Decided from Redis, so a restarted scheduler does not
    re-arm a cycle that already started today.
    """
    if now.hour < hour_utc:
        return False
    started = state.get_time(StateKey.cycle_started_at)
    return started is None or started.date() < now.date()


def _dispatch_tick(cfg: Config, queue: Optional[Queue]) -> None:
    if queue is not None:
        job = queue.enqueue_call(
            func=tick_job,
            ttl=cfg.tick_interval_sec,   # not picked up within one interval → dropped
            result_ttl=0,
            failure_ttl=3600,
        )
        _log(f"enqueued tick job={job.id}")
        return

    result = tick_job()
    _log(f"inline tick status={result.get('status')} ticker={result.get('ticker')}")


def _run_once(cfg: Config, refresher: LogoRefresher, queue: Optional[Queue]) -> None:
    now = utc_now()
    if _daily_due(refresher.state, now, cfg.daily_hour_utc):
        info = refresher.start_cycle(now)
        _log(f"daily cycle armed until {info['active_until']}")
    _dispatch_tick(cfg, queue)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    cfg = _read_config()
    refresher = build_refresher()

    queue: Optional[Queue] = None
    if cfg.enqueue:
        queue = Queue(cfg.queue_name, connection=Redis.from_url(settings.redis_url))

    _log(
        "boot: "
        f"{len(refresher.cfg.tickers)} tickers | "
        f"interval={cfg.tick_interval_sec}s "
        f"daily_hour={cfg.daily_hour_utc}h UTC "
        f"enqueue={cfg.enqueue} "
        f"one_shot={cfg.one_shot}"
    )

    while True:
        pass_start = time.monotonic()

        try:
            _run_once(cfg, refresher, queue)
        except Exception as e:
            # next pass retries from whatever Redis says; don't kill the cron brain
            _log(f"ERROR scheduler pass failed at {to_iso(utc_now())}: {e!r}")

        if cfg.one_shot:
            _log("ONE_SHOT=1 → completed single pass, exiting.")
            return

        elapsed = time.monotonic() - pass_start
        sleep_for = max(0.0, float(cfg.tick_interval_sec) - elapsed)
        time.sleep(sleep_for)


if __name__ == "__main__":
    main()
