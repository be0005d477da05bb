# apps/api/app/deps.py
#
# Per-process singletons handed to routes via Depends(). Tests swap them with
# app.dependency_overrides.

from __future__ import annotations

from functools import lru_cache
from typing import Tuple

from apps.api.app.config import settings
from apps.workers.jobs import build_refresher
from apps.workers.refresh import LogoRefresher
from apps.workers.store import BlobStore, LogoState, build_stores


@lru_cache(maxsize=1)
def _stores() -> Tuple[LogoState, BlobStore]:
    return build_stores(settings)


def get_state() -> LogoState:
    return _stores()[0]


def get_blobs() -> BlobStore:
    return _stores()[1]


@lru_cache(maxsize=1)
def get_refresher() -> LogoRefresher:
    return build_refresher(settings)
