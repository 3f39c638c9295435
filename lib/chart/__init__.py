"""
Weekly chart extraction and Spotify matching.

Public API:
  - parse_chart_html(html) -> list[ChartEntry]
  - MatchingEngine(search, cache=...).run_matching(entries, tracks, start_index, ...)
  - ChartCache(directory).load(date) / save(...)
  - ChartRunManager(load_chart, search, cache)
  - plan_downloads(chart_date, tracks, download_path)
"""
from lib.chart.cache import ChartCache
from lib.chart.downloads import DownloadItem, plan_downloads
from lib.chart.matcher import MatchingEngine, is_rate_limit_error
from lib.chart.models import (
    CandidateTrack,
    ChartCacheRecord,
    ChartEntry,
    ChartSnapshot,
    MatchProgress,
    MatchProgressState,
    RunStatus,
    TrackRecord,
    tracks_from_entries,
)
from lib.chart.normalizer import build_search_query, clean_text, primary_artist
from lib.chart.parser import DirectTitleStrategy, ExtractionStrategy, RowStructuralStrategy, parse_chart_html
from lib.chart.runs import ChartNotCachedError, ChartRunManager, MatchAlreadyRunningError

__all__ = [
    "ChartCache",
    "DownloadItem",
    "plan_downloads",
    "MatchingEngine",
    "is_rate_limit_error",
    "CandidateTrack",
    "ChartCacheRecord",
    "ChartEntry",
    "ChartSnapshot",
    "MatchProgress",
    "MatchProgressState",
    "RunStatus",
    "TrackRecord",
    "tracks_from_entries",
    "build_search_query",
    "clean_text",
    "primary_artist",
    "DirectTitleStrategy",
    "ExtractionStrategy",
    "RowStructuralStrategy",
    "parse_chart_html",
    "ChartNotCachedError",
    "ChartRunManager",
    "MatchAlreadyRunningError",
]
