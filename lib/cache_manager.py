"""Centralized cache utilities (TTLCache settings, key builders, cache singletons)."""
from __future__ import annotations

import os
from cachetools import TTLCache

# Fetched chart snapshots (in-memory, per process)
SNAPSHOT_CACHE_VERSION = int(os.getenv("SNAPSHOT_CACHE_VERSION", "1"))
SNAPSHOT_CACHE_MAXSIZE = int(os.getenv("SNAPSHOT_CACHE_MAXSIZE", "64"))
SNAPSHOT_CACHE_TTL_S = int(os.getenv("SNAPSHOT_CACHE_TTL_S", "21600"))

# Persisted chart progress (one JSON file per chart date)
CHART_CACHE_DIR = os.getenv("CHART_CACHE_DIR", os.path.join(os.path.expanduser("~"), ".cache", "chart-shopper"))
CHART_CACHE_EXPIRY_DAYS = int(os.getenv("CHART_CACHE_EXPIRY_DAYS", "7"))
CHART_CACHE_VERSION = int(os.getenv("CHART_CACHE_VERSION", "1"))

# Lazy-initialized caches
_snapshot_cache: TTLCache | None = None
_chart_cache = None


def get_snapshot_cache() -> TTLCache:
    global _snapshot_cache
    if _snapshot_cache is None:
        _snapshot_cache = TTLCache(maxsize=SNAPSHOT_CACHE_MAXSIZE, ttl=SNAPSHOT_CACHE_TTL_S)
    return _snapshot_cache


def build_snapshot_cache_key(date: str) -> str:
    return f"chart:{SNAPSHOT_CACHE_VERSION}:{date}"


def build_chart_cache_key(date: str) -> str:
    return f"billboard_cache_v{CHART_CACHE_VERSION}_{date}"


def get_chart_cache():
    """Process-wide ChartCache rooted at CHART_CACHE_DIR."""
    global _chart_cache
    if _chart_cache is None:
        from lib.chart.cache import ChartCache

        _chart_cache = ChartCache(CHART_CACHE_DIR, expiry_days=CHART_CACHE_EXPIRY_DAYS)
    return _chart_cache
