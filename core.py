#!/usr/bin/env python3
"""
Billboard Hot 100 の週次チャートを取得して
- チャートエントリ（順位 / タイトル / アーティスト / 先週順位 / 最高位 / 週数 / NEW）
- Spotify 検索によるトラック候補

を Python オブジェクトで返すコアモジュール。
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from datetime import date as _date, datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
import spotipy
from spotipy.oauth2 import SpotifyClientCredentials

from lib.cache_manager import build_snapshot_cache_key, get_snapshot_cache
from lib.chart.models import CandidateTrack, ChartSnapshot, TrackRecord
from lib.chart.parser import parse_chart_html

CHART_URL_TEMPLATE = os.getenv("CHART_URL_TEMPLATE", "https://www.billboard.com/charts/hot-100/{date}/")
CHART_HTTP_TIMEOUT_S = float(os.getenv("CHART_HTTP_TIMEOUT_S", "30"))
SPOTIFY_MARKET = os.getenv("SPOTIFY_MARKET") or None
SPOTIFY_HTTP_TIMEOUT_S = float(os.getenv("SPOTIFY_HTTP_TIMEOUT_S", "10"))

# Charts are dated by the Saturday of the chart week
CHART_WEEKDAY = 5

CHART_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")

# Configure logger for this module
logger = logging.getLogger(__name__)


class ChartFetchError(Exception):
    """Chart could not be loaded; carries the HTTP status and diagnostics."""

    def __init__(self, message: str, status_code: int | None = None, meta: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.meta = meta or {}


class InvalidChartDateError(ChartFetchError):
    """Malformed chart date. Raised before any request is made."""


class NoChartDataError(ChartFetchError):
    """The page was fetched but held no recognizable chart entries."""


# =========================
# Chart dates
# =========================

def validate_chart_date(chart_date: str) -> str:
    s = (chart_date or "").strip()
    if not _DATE_RE.fullmatch(s):
        raise InvalidChartDateError(f"Invalid date format, expected YYYY-MM-DD: {chart_date!r}")
    try:
        datetime.strptime(s, "%Y-%m-%d")
    except ValueError as e:
        raise InvalidChartDateError(f"Invalid date: {chart_date!r} ({e})") from e
    return s


def current_chart_date(today: _date | None = None) -> str:
    """Most recent chart week date (Saturday, today included)."""
    today = today or _date.today()
    days_back = (today.weekday() - CHART_WEEKDAY) % 7
    return (today - timedelta(days=days_back)).isoformat()


# =========================
# Chart fetch
# =========================

async def fetch_chart_html(chart_date: str, client: httpx.AsyncClient | None = None) -> str:
    """
    チャートページの HTML を取得する。
    日付形式が不正ならリクエスト前に InvalidChartDateError。
    2xx 以外 / タイムアウト / 接続エラーは ChartFetchError。
    """
    chart_date = validate_chart_date(chart_date)
    url = CHART_URL_TEMPLATE.format(date=chart_date)

    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(follow_redirects=True, timeout=httpx.Timeout(CHART_HTTP_TIMEOUT_S))
    try:
        try:
            resp = await client.get(url, headers=CHART_HEADERS)
        except httpx.HTTPError as e:
            logger.warning(f"[Chart] fetch failed date={chart_date}: {e}")
            raise ChartFetchError(f"Failed to fetch chart: {e}", meta={"url": url}) from e
    finally:
        if own_client:
            await client.aclose()

    if not resp.is_success:
        logger.warning(f"[Chart] date={chart_date} status={resp.status_code}")
        raise ChartFetchError(
            f"Billboard returned status {resp.status_code}",
            status_code=resp.status_code,
            meta={"url": url, "final_url": str(resp.url)},
        )
    logger.info(f"[Chart] fetched date={chart_date} bytes={len(resp.text)}")
    return resp.text


async def fetch_chart(
    chart_date: str,
    client: httpx.AsyncClient | None = None,
    refresh: bool = False,
) -> ChartSnapshot:
    """Fetch and parse one chart week. Parsed snapshots are kept in a TTLCache."""
    chart_date = validate_chart_date(chart_date)
    cache = get_snapshot_cache()
    key = build_snapshot_cache_key(chart_date)
    if not refresh:
        cached = cache.get(key)
        if cached is not None:
            logger.info(f"[Chart] snapshot cache hit date={chart_date}")
            return cached

    html = await fetch_chart_html(chart_date, client=client)
    entries = parse_chart_html(html)
    if not entries:
        raise NoChartDataError(f"No chart data found for {chart_date}", meta={"bytes": len(html)})

    snapshot = ChartSnapshot(date=chart_date, entries=tuple(entries))
    cache[key] = snapshot
    return snapshot


# =========================
# Spotify
# =========================

_spotify_client: spotipy.Spotify | None = None


def get_spotify_client() -> spotipy.Spotify:
    """
    環境変数から Spotify API のクレデンシャルを読み込み、
    Spotipy クライアントを返す。

    必要な環境変数:
    - SPOTIFY_CLIENT_ID
    - SPOTIFY_CLIENT_SECRET

    spotipy 側のリトライは切ってある（429 は MatchingEngine がバックオフする）。
    """
    global _spotify_client
    if _spotify_client is not None:
        return _spotify_client

    client_id = os.getenv("SPOTIFY_CLIENT_ID")
    client_secret = os.getenv("SPOTIFY_CLIENT_SECRET")

    if not client_id or not client_secret:
        raise RuntimeError(
            "Spotify client credentials are not set. "
            "Please set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET."
        )

    auth_manager = SpotifyClientCredentials(
        client_id=client_id,
        client_secret=client_secret,
    )
    _spotify_client = spotipy.Spotify(
        auth_manager=auth_manager,
        requests_timeout=SPOTIFY_HTTP_TIMEOUT_S,
        retries=0,
        status_retries=0,
    )
    return _spotify_client


def spotify_track_to_candidate(item: Dict[str, Any]) -> CandidateTrack:
    album = item.get("album") or {}
    images = album.get("images") or []
    artists = ", ".join(a.get("name", "") for a in item.get("artists") or [] if a.get("name"))
    return {
        "id": item.get("id") or "",
        "name": item.get("name") or "",
        "artists": artists,
        "album_name": album.get("name") or "",
        "images": images[0].get("url", "") if images else "",
        "duration_ms": int(item.get("duration_ms") or 0),
        "is_explicit": bool(item.get("explicit")),
        "release_date": album.get("release_date") or "",
        "external_urls": (item.get("external_urls") or {}).get("spotify", ""),
    }


def search_spotify_tracks(query: str, limit: int = 5, sp: spotipy.Spotify | None = None) -> List[CandidateTrack]:
    """Spotify track search. SpotifyException propagates to the caller."""
    sp = sp or get_spotify_client()
    results = sp.search(q=query, type="track", limit=limit, market=SPOTIFY_MARKET)
    items = (results or {}).get("tracks", {}).get("items", []) or []
    return [spotify_track_to_candidate(it) for it in items if it]


async def search_tracks(query: str, limit: int) -> List[CandidateTrack]:
    """Async adapter used by MatchingEngine (spotipy is blocking)."""
    return await asyncio.to_thread(search_spotify_tracks, query, limit)


def resolve_isrcs(tracks: List[TrackRecord], sp: spotipy.Spotify | None = None) -> int:
    """
    Replace placeholder ISRCs of matched tracks with the real ones.
    Returns how many tracks were resolved.
    """
    pending = [t for t in tracks if t.is_matched and not t.isrc_resolved]
    if not pending:
        return 0
    sp = sp or get_spotify_client()
    resolved = 0
    for start in range(0, len(pending), 50):
        batch = pending[start:start + 50]
        try:
            res = sp.tracks([t.spotify_id for t in batch], market=SPOTIFY_MARKET)
        except Exception as e:
            logger.warning(f"[Spotify] ISRC lookup failed for batch at {start}: {e}")
            continue
        by_id: Dict[str, Optional[str]] = {}
        for item in (res or {}).get("tracks") or []:
            if item and item.get("id"):
                by_id[item["id"]] = (item.get("external_ids") or {}).get("isrc")
        for t in batch:
            isrc = by_id.get(t.spotify_id)
            if isrc:
                t.isrc = isrc.upper()
                t.isrc_resolved = True
                resolved += 1
    logger.info(f"[Spotify] resolved ISRC for {resolved}/{len(pending)} tracks")
    return resolved
