from __future__ import annotations

import asyncio
from dataclasses import replace
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# .env -> .env.local (override) before core reads its settings
_here = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(_here, ".env"))
load_dotenv(os.path.join(_here, ".env.local"), override=True)

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from pydantic import BaseModel

from core import (
    ChartFetchError,
    InvalidChartDateError,
    NoChartDataError,
    current_chart_date,
    fetch_chart,
    resolve_isrcs,
    search_tracks,
    validate_chart_date,
)
from lib.cache_manager import get_chart_cache
from lib.chart.downloads import plan_downloads
from lib.chart.models import MatchProgress
from lib.chart.runs import ChartNotCachedError, ChartRunManager, MatchAlreadyRunningError
import logging

# Basic logging configuration to ensure logger outputs appear in the terminal
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("uvicorn.error")
logger.setLevel(logging.INFO)


# =========================
# Pydantic models
# =========================

class ChartEntryModel(BaseModel):
    rank: int
    title: str
    artist: str
    last_week_rank: int = 0
    peak_rank: int = 0
    weeks_on_chart: int = 0
    is_new: bool = False


class TrackModel(BaseModel):
    name: str
    artists: str
    track_number: int
    spotify_id: str = ""
    album_name: str = ""
    images: str = ""
    duration_ms: int = 0
    is_explicit: bool = False
    external_urls: str = ""
    release_date: str = ""
    isrc: str = ""
    isrc_resolved: bool = False


class ProgressModel(BaseModel):
    status: str
    matched_indices: List[int]
    matched_count: int
    current_index: int
    total: int
    progress: int
    current_track: str = ""
    message: str = ""
    retries: Dict[str, int] = {}
    tracks: List[TrackModel]


class ChartResponse(BaseModel):
    date: str
    chart_date: str
    entries: List[ChartEntryModel]
    running: bool = False
    progress: Optional[ProgressModel] = None


class DownloadItemModel(BaseModel):
    index: int
    spotify_id: str
    isrc: str
    title: str
    artist: str
    album: str
    output_dir: str
    filename: str
    output_path: str


class DownloadPlanResponse(BaseModel):
    date: str
    chart_date: str
    items: List[DownloadItemModel]
    isrc_resolved: int = 0


# =========================
# FastAPI app & CORS
# =========================

app = FastAPI(
    title="Chart Shopper",
    version="1.0.0",
)

# Add GZip middleware for response compression (100 tracks with artwork URLs)
app.add_middleware(GZipMiddleware, minimum_size=1000)

# デフォルトの許可オリジン
default_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]

# 環境変数 ALLOWED_ORIGINS があればそれを優先（カンマ区切り）
env_origins = os.getenv("ALLOWED_ORIGINS")
if env_origins:
    origins = [o.strip() for o in env_origins.split(",") if o.strip()]
else:
    origins = default_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _log_startup():
    logger.info("chart-shopper: startup event triggered")


@app.on_event("shutdown")
async def _shutdown_runs():
    runs = getattr(app.state, "chart_runs", None)
    if runs is not None:
        await runs.shutdown()


def get_chart_runs(request: Request) -> ChartRunManager:
    """One ChartRunManager per app, created on first use."""
    runs = getattr(request.app.state, "chart_runs", None)
    if runs is None:
        runs = ChartRunManager(fetch_chart, search_tracks, get_chart_cache())
        request.app.state.chart_runs = runs
    return runs


# =========================
# Health check
# =========================

@app.get("/health", tags=["system"])
def health() -> Dict[str, Any]:
    return {
        "ok": True,
        "status": "ok",
        "build_commit": os.getenv("RENDER_GIT_COMMIT", "local")[:7],
    }


@app.get("/", tags=["system"])
def root() -> Dict[str, Any]:
    return {"ok": True, "status": "ok"}


# =========================
# Core helpers
# =========================

def _validate_date(date: str) -> str:
    try:
        return validate_chart_date(date)
    except InvalidChartDateError as e:
        raise HTTPException(status_code=422, detail={"error": str(e), "date": date})


def _fetch_error_to_http(e: ChartFetchError, date: str) -> HTTPException:
    if isinstance(e, InvalidChartDateError):
        return HTTPException(status_code=422, detail={"error": str(e), "date": date})
    if isinstance(e, NoChartDataError):
        return HTTPException(status_code=404, detail={"error": str(e), "date": date, "meta": e.meta})
    return HTTPException(status_code=502, detail={
        "error": str(e),
        "date": date,
        "status_code": e.status_code,
        "meta": e.meta,
    })


def _already_running(date: str) -> HTTPException:
    return HTTPException(status_code=409, detail={"error": "Matching is already running", "date": date})


def _progress_dict(progress: Optional[MatchProgress]) -> Optional[Dict[str, Any]]:
    return progress.to_dict() if progress is not None else None


# =========================
# Endpoints
# =========================

@app.get("/api/chart/current-date", tags=["chart"])
def get_current_chart_date() -> Dict[str, Any]:
    return {"date": current_chart_date()}


@app.get("/api/chart/{date}", response_model=ChartResponse, tags=["chart"])
async def get_chart(date: str, request: Request):
    """
    キャッシュ済み（または実行中）のチャートとマッチ状況を返す。
    無ければ 404（POST /fetch で取得）。
    """
    date = _validate_date(date)
    runs = get_chart_runs(request)
    runs.open_chart(date)
    chart = runs.chart(date)
    if chart is None:
        raise HTTPException(status_code=404, detail={"error": "Chart not loaded", "date": date})
    chart_date, entries = chart
    return {
        "date": date,
        "chart_date": chart_date,
        "entries": [e.to_dict() for e in entries],
        "running": runs.is_running(date),
        "progress": _progress_dict(runs.progress(date)),
    }


@app.post("/api/chart/{date}/fetch", tags=["chart"])
async def fetch_and_match(date: str, request: Request) -> Dict[str, Any]:
    """チャートを取得して index 0 からマッチングを開始する。"""
    date = _validate_date(date)
    runs = get_chart_runs(request)
    try:
        progress = await runs.fetch_and_match(date)
    except MatchAlreadyRunningError:
        raise _already_running(date)
    except ChartFetchError as e:
        logger.error(f"[api/chart/fetch] date={date}: {e} status={e.status_code} meta={e.meta}")
        raise _fetch_error_to_http(e, date)
    chart_date, entries = runs.chart(date)
    return {
        "date": date,
        "chart_date": chart_date,
        "entries": [e.to_dict() for e in entries],
        "progress": progress.to_dict(),
    }


@app.post("/api/chart/{date}/resume", tags=["chart"])
async def resume_matching(date: str, request: Request) -> Dict[str, Any]:
    date = _validate_date(date)
    runs = get_chart_runs(request)
    try:
        progress = runs.resume(date)
    except MatchAlreadyRunningError:
        raise _already_running(date)
    except ChartNotCachedError as e:
        raise HTTPException(status_code=404, detail={"error": str(e), "date": date})
    return {"date": date, "progress": progress.to_dict()}


@app.post("/api/chart/{date}/reset", tags=["chart"])
async def reset_matching(date: str, request: Request) -> Dict[str, Any]:
    date = _validate_date(date)
    runs = get_chart_runs(request)
    try:
        progress = await runs.reset(date)
    except MatchAlreadyRunningError:
        raise _already_running(date)
    except ChartFetchError as e:
        raise _fetch_error_to_http(e, date)
    return {"date": date, "progress": progress.to_dict()}


@app.post("/api/chart/{date}/stop", tags=["chart"])
async def stop_matching(date: str, request: Request) -> Dict[str, Any]:
    date = _validate_date(date)
    stopped = get_chart_runs(request).stop(date)
    return {"date": date, "stopped": stopped}


@app.get("/api/chart/{date}/progress", tags=["chart"])
async def get_progress(
    date: str,
    request: Request,
    wait: bool = Query(False, description="Block until the active run finishes"),
    timeout_s: float = Query(60.0, description="Max seconds to wait when wait=1"),
) -> Dict[str, Any]:
    date = _validate_date(date)
    runs = get_chart_runs(request)
    if wait:
        progress = await runs.wait(date, timeout=timeout_s)
    else:
        progress = runs.progress(date)
    if progress is None:
        raise HTTPException(status_code=404, detail={"error": "No matching state", "date": date})
    return {"date": date, "running": runs.is_running(date), "progress": progress.to_dict()}


@app.get("/api/chart/{date}/downloads", response_model=DownloadPlanResponse, tags=["chart"])
async def get_download_plan(
    date: str,
    request: Request,
    download_path: Optional[str] = Query(None, description="Base folder (defaults to DOWNLOAD_PATH)"),
    filename_format: Optional[str] = Query(None, description="title-artist | artist-title | title | template"),
    use_chart_folder: bool = Query(True),
    include_track_number: bool = Query(True),
    resolve_isrc: bool = Query(False, description="Replace placeholder ISRCs via Spotify"),
):
    """マッチ済みトラックだけをダウンロード入力として返す。"""
    date = _validate_date(date)
    runs = get_chart_runs(request)
    progress = runs.progress(date)
    chart = runs.chart(date)
    if progress is None or chart is None:
        raise HTTPException(status_code=404, detail={"error": "Chart not loaded", "date": date})
    chart_date, _ = chart
    tracks = [replace(t) for t in progress.tracks]

    resolved = 0
    if resolve_isrc:
        try:
            resolved = await asyncio.to_thread(resolve_isrcs, tracks)
        except Exception as e:
            raise HTTPException(status_code=400, detail={"error": f"ISRC lookup failed: {e}"})

    items = plan_downloads(
        chart_date,
        tracks,
        download_path=download_path,
        filename_format=filename_format,
        use_chart_folder=use_chart_folder,
        include_track_number=include_track_number,
    )
    return {
        "date": date,
        "chart_date": chart_date,
        "items": [it.to_dict() for it in items],
        "isrc_resolved": resolved,
    }


# =========================
# Local dev entrypoint
# =========================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
