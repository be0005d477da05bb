# apps/workers/store.py
#
# Everything the refresh cycle remembers between invocations lives here.
# Scheduler / worker processes share NO memory; each tick re-reads this state.
#
#   metadata store  (Redis, decode_responses=True)
#       cfg:tickers                  published ticker list (JSON array)
#       state:cursor                 next index into the ticker list
#       state:blocked_until          upstream rate-limited until (ISO)
#       state:cycle_active_until     cycle window end (ISO), absent = idle
#       state:cycle_started_at       when the current/last cycle was armed
#       state:last_minute_run        debounce stamp
#       state:last_run               global last tick (ISO)
#       state:last_run_result        global last TickOutcome (JSON)
#       ticker:<T>                   StoredMeta (JSON)
#       ticker:<T>:result            last per-ticker TickOutcome (JSON)
#
#   blob store  (Redis hash or Cloudflare R2)
#       logos/<T>.<ext>              image bytes
#
# Last writer wins on every key.

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Protocol, Sequence

import redis
from botocore.exceptions import BotoCoreError, ClientError

from apps.workers.errors import StoreError
from apps.workers.models import StoredMeta, TickOutcome

log = logging.getLogger("logocache.store")


# -------------------------------------------------------------------
# time helpers
# -------------------------------------------------------------------

def utc_now() -> datetime:
    """Return timezone-aware UTC now()."""
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    try:
        if s.endswith("Z"):
            return datetime.fromisoformat(s.replace("Z", "+00:00")).astimezone(timezone.utc)
        dt = datetime.fromisoformat(s)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (TypeError, ValueError):
        return None


# -------------------------------------------------------------------
# key schema
# -------------------------------------------------------------------

class StateKey(str, Enum):
    tickers = "cfg:tickers"
    cursor = "state:cursor"
    blocked_until = "state:blocked_until"
    cycle_active_until = "state:cycle_active_until"
    cycle_started_at = "state:cycle_started_at"
    last_minute_run = "state:last_minute_run"
    last_run = "state:last_run"
    last_run_result = "state:last_run_result"


TICKER_PREFIX = "ticker:"


def ticker_key(ticker: str) -> str:
    return f"{TICKER_PREFIX}{ticker.upper()}"


def ticker_result_key(ticker: str) -> str:
    return f"{TICKER_PREFIX}{ticker.upper()}:result"


_EXT_BY_MIME = {
    "image/svg+xml": "svg",
    "image/png": "png",
    "image/jpeg": "jpg",
}


def blob_key(ticker: str, mime: str) -> str:
    """logos/AAPL.svg, logos/MSFT.png, ... (unknown types → .bin)"""
    ct = (mime or "").split(";", 1)[0].strip().lower()
    return f"logos/{ticker.upper()}.{_EXT_BY_MIME.get(ct, 'bin')}"


# -------------------------------------------------------------------
# store interfaces
# -------------------------------------------------------------------

class MetaStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def put(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> None: ...
    def list(self, prefix: str) -> List[str]: ...


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> None: ...
    def get(self, key: str) -> Optional[bytes]: ...


class RedisMetaStore:
    """String key-value store on Redis. Every Redis failure becomes StoreError."""

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 2.0) -> "RedisMetaStore":
        return cls(
            redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        )

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            raise StoreError(f"get {key}: {type(e).__name__}") from e

    def put(self, key: str, value: str) -> None:
        try:
            self.client.set(key, value)
        except redis.RedisError as e:
            raise StoreError(f"put {key}: {type(e).__name__}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            raise StoreError(f"delete {key}: {type(e).__name__}") from e

    def list(self, prefix: str) -> List[str]:
        try:
            return sorted(self.client.scan_iter(match=f"{prefix}*"))
        except redis.RedisError as e:
            raise StoreError(f"list {prefix}*: {type(e).__name__}") from e

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            raise StoreError(f"ping: {type(e).__name__}") from e


class RedisBlobStore:
    """
    Bytes live in a Redis hash next to their content type:
        HSET logos/AAPL.svg body <bytes> content_type image/svg+xml
    Needs a client with decode_responses=False.
    """

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 2.0) -> "RedisBlobStore":
        return cls(
            redis.from_url(
                url,
                decode_responses=False,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        )

    def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.hset(key, mapping={"body": data, "content_type": content_type})
        except redis.RedisError as e:
            raise StoreError(f"blob put {key}: {type(e).__name__}") from e

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self.client.hget(key, "body")
        except redis.RedisError as e:
            raise StoreError(f"blob get {key}: {type(e).__name__}") from e


class R2BlobStore:
    """Cloudflare R2 (S3 API) bucket via boto3."""

    def __init__(self, client: Any, bucket: str):
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_credentials(
        cls,
        *,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
    ) -> "R2BlobStore":
        import boto3
        from botocore.config import Config

        client = boto3.client(
            "s3",
            endpoint_url=endpoint,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name="auto",
            config=Config(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "adaptive"},
            ),
        )
        return cls(client, bucket)

    def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"r2 put {key}: {type(e).__name__}") from e

    def get(self, key: str) -> Optional[bytes]:
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
            return obj["Body"].read()
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("NoSuchKey", "404", "NotFound"):
                return None
            raise StoreError(f"r2 get {key}: {code or type(e).__name__}") from e
        except BotoCoreError as e:
            raise StoreError(f"r2 get {key}: {type(e).__name__}") from e


# -------------------------------------------------------------------
# typed accessors
# -------------------------------------------------------------------

class LogoState:
    """
    Typed view over a MetaStore. Callers never build key strings themselves;
    they go through StateKey / ticker_key() here.
    """

    def __init__(self, store: MetaStore):
        self.store = store

    # json
    def get_json(self, key: str) -> Any:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            log.warning("corrupt JSON under %s; treating as absent", key)
            return None

    def put_json(self, key: str, value: Any) -> None:
        self.store.put(key, json.dumps(value, separators=(",", ":")))

    # timestamps
    def get_time(self, key: StateKey) -> Optional[datetime]:
        return parse_iso(self.store.get(key.value))

    def set_time(self, key: StateKey, dt: datetime) -> None:
        self.store.put(key.value, to_iso(dt))

    def clear(self, key: StateKey) -> None:
        self.store.delete(key.value)

    # cursor
    def get_cursor(self, n: int) -> int:
        """Stored cursor, or 0 when missing / garbage / out of [0, n)."""
        raw = self.store.get(StateKey.cursor.value)
        try:
            idx = int(raw) if raw is not None else 0
        except ValueError:
            idx = 0
        if idx < 0 or idx >= n:
            return 0
        return idx

    def set_cursor(self, idx: int) -> None:
        self.store.put(StateKey.cursor.value, str(int(idx)))

    # published ticker list
    def get_tickers(self) -> Optional[List[str]]:
        val = self.get_json(StateKey.tickers.value)
        if not isinstance(val, list):
            return None
        return [str(t).upper() for t in val if t]

    def publish_tickers(self, tickers: Sequence[str]) -> None:
        self.put_json(StateKey.tickers.value, list(tickers))

    # per-ticker records
    def get_meta(self, ticker: str) -> Optional[StoredMeta]:
        val = self.get_json(ticker_key(ticker))
        if not isinstance(val, dict):
            return None
        try:
            return StoredMeta(**val)
        except ValueError:
            log.warning("invalid meta record for %s; treating as absent", ticker)
            return None

    def put_meta(self, meta: StoredMeta) -> None:
        self.put_json(ticker_key(meta.ticker), meta.model_dump())

    def get_result(self, ticker: str) -> Optional[dict]:
        val = self.get_json(ticker_result_key(ticker))
        return val if isinstance(val, dict) else None

    def put_result(self, ticker: str, outcome: TickOutcome) -> None:
        self.put_json(ticker_result_key(ticker), outcome.model_dump(mode="json"))

    def stored_tickers(self) -> List[str]:
        """Tickers with a stored meta record (result keys excluded)."""
        out: List[str] = []
        for key in self.store.list(TICKER_PREFIX):
            rest = key[len(TICKER_PREFIX):]
            if rest and ":" not in rest:
                out.append(rest)
        return out

    # global audit
    def record_run(self, now: datetime, outcome: TickOutcome) -> None:
        self.set_time(StateKey.last_run, now)
        self.put_json(StateKey.last_run_result.value, outcome.model_dump(mode="json"))


def build_stores(settings: Any) -> tuple[LogoState, BlobStore]:
    """Wire metadata + blob stores from Settings."""
    state = LogoState(RedisMetaStore.from_url(settings.redis_url))

    backend = (settings.blob_backend or "redis").strip().lower()
    if backend == "r2":
        if not (settings.r2_endpoint and settings.r2_access_key_id and settings.r2_secret_access_key):
            raise RuntimeError(
                "BLOB_BACKEND=r2 requires R2_ENDPOINT, R2_ACCESS_KEY_ID and R2_SECRET_ACCESS_KEY"
            )
        blobs: BlobStore = R2BlobStore.from_credentials(
            endpoint=settings.r2_endpoint,
            access_key=settings.r2_access_key_id,
            secret_key=settings.r2_secret_access_key,
            bucket=settings.r2_bucket,
        )
    elif backend == "redis":
        blobs = RedisBlobStore.from_url(settings.redis_url)
    else:
        raise RuntimeError(f"unknown BLOB_BACKEND={settings.blob_backend!r} (use redis or r2)")

    return state, blobs
