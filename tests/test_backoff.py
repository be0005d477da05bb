from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

from apps.workers.backoff import compute_resume_delay

NOW = datetime(2026, 10, 17, 6, 0, 0, tzinfo=timezone.utc)


def test_numeric_seconds():
    assert compute_resume_delay("30", now=NOW) == 30_000
    assert compute_resume_delay(" 1.5 ", now=NOW) == 1_500


def test_http_date_in_future():
    when = format_datetime(NOW + timedelta(seconds=90), usegmt=True)
    assert compute_resume_delay(when, now=NOW) == 90_000


def test_http_date_in_past_falls_back():
    when = format_datetime(NOW - timedelta(minutes=5), usegmt=True)
    assert compute_resume_delay(when, now=NOW) == 60_000


def test_missing_or_malformed_falls_back_to_60s():
    for raw in (None, "", "soon", "0", "-5", "nan", "inf"):
        assert compute_resume_delay(raw, now=NOW) == 60_000, raw


def test_custom_fallback():
    assert compute_resume_delay("garbage", now=NOW, fallback=timedelta(seconds=5)) == 5_000
