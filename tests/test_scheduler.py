from datetime import timedelta

from apps.scheduler import main as scheduler
from apps.workers import jobs
from apps.workers.store import StateKey

from conftest import T0


def _cfg(enqueue=False):
    return scheduler.Config(
        tick_interval_sec=60,
        daily_hour_utc=6,
        enqueue=enqueue,
        queue_name="logos",
        one_shot=True,
    )


class _Job:
    id = "job-1"


class _Queue:
    def __init__(self):
        self.calls = []

    def enqueue_call(self, **kwargs):
        self.calls.append(kwargs)
        return _Job()


def test_daily_due(state):
    assert scheduler._daily_due(state, T0 - timedelta(hours=1), 6) is False
    assert scheduler._daily_due(state, T0, 6) is True

    state.set_time(StateKey.cycle_started_at, T0 - timedelta(days=1))
    assert scheduler._daily_due(state, T0, 6) is True

    state.set_time(StateKey.cycle_started_at, T0)
    assert scheduler._daily_due(state, T0 + timedelta(hours=5), 6) is False


def test_run_once_arms_cycle_once_per_day(refresher, state, monkeypatch):
    ticks = []
    monkeypatch.setattr(scheduler, "tick_job", lambda: ticks.append(1) or {"status": "idle"})

    monkeypatch.setattr(scheduler, "utc_now", lambda: T0)
    scheduler._run_once(_cfg(), refresher, None)
    assert state.get_time(StateKey.cycle_started_at) == T0

    state.set_cursor(2)
    monkeypatch.setattr(scheduler, "utc_now", lambda: T0 + timedelta(minutes=1))
    scheduler._run_once(_cfg(), refresher, None)
    assert state.get_time(StateKey.cycle_started_at) == T0
    assert state.get_cursor(3) == 2
    assert len(ticks) == 2


def test_run_once_enqueues_tick(refresher, monkeypatch):
    monkeypatch.setattr(scheduler, "utc_now", lambda: T0 - timedelta(hours=2))
    q = _Queue()
    scheduler._run_once(_cfg(enqueue=True), refresher, q)

    assert len(q.calls) == 1
    assert q.calls[0]["func"] is jobs.tick_job
    assert q.calls[0]["ttl"] == 60
    assert q.calls[0]["result_ttl"] == 0


def test_tick_job_returns_outcome(refresher, monkeypatch):
    monkeypatch.setattr(jobs, "build_refresher", lambda cfg=None: refresher)
    out = jobs.tick_job()
    assert out["status"] == "idle"


def test_start_cycle_job(refresher, state, monkeypatch):
    monkeypatch.setattr(jobs, "build_refresher", lambda cfg=None: refresher)
    info = jobs.start_cycle_job()
    assert info["ok"] is True
    assert state.get_tickers() == ["AAPL", "MSFT", "TSLA"]
