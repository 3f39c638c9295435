"""
Caller-side orchestration of matching runs.

MatchingEngine assumes it is the only run for its chart. ChartRunManager
enforces that: at most one active run per chart date, claimed with an
``idle -> running`` transition that happens before the first await.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from lib.chart.matcher import MatchingEngine, SearchFn, SleepFn
from lib.chart.models import (
    ChartCacheRecord,
    ChartEntry,
    ChartSnapshot,
    MatchProgress,
    RunStatus,
    TrackRecord,
    tracks_from_entries,
)

logger = logging.getLogger(__name__)

LoadChartFn = Callable[[str], Awaitable[ChartSnapshot]]


class MatchAlreadyRunningError(RuntimeError):
    def __init__(self, date: str):
        super().__init__(f"matching is already running for {date}")
        self.date = date


class ChartNotCachedError(LookupError):
    def __init__(self, date: str):
        super().__init__(f"no cached chart for {date}")
        self.date = date


@dataclass
class _Run:
    engine: Optional[MatchingEngine] = None
    task: Optional[asyncio.Task] = None
    stop_requested: bool = False


def static_progress(
    status: RunStatus,
    tracks: List[TrackRecord],
    matched_indices: Iterable[int],
    message: str = "",
    current_index: int = 0,
) -> MatchProgress:
    """Progress view for a chart with no engine attached (cached or just queued)."""
    matched = frozenset(matched_indices)
    total = len(tracks)
    return MatchProgress(
        status=status,
        matched_indices=matched,
        matched_count=len(matched),
        current_index=current_index,
        total=total,
        progress=int(len(matched) * 100 / total) if total else 0,
        current_track="",
        message=message,
        retries={},
        tracks=tuple(replace(t) for t in tracks),
    )


class ChartRunManager:
    def __init__(
        self,
        load_chart: LoadChartFn,
        search: SearchFn,
        cache,
        sleep: SleepFn = asyncio.sleep,
    ):
        self._load_chart = load_chart
        self._search = search
        self._cache = cache
        self._sleep = sleep
        self._runs: Dict[str, _Run] = {}
        self._last: Dict[str, MatchProgress] = {}
        self._charts: Dict[str, Tuple[str, List[ChartEntry]]] = {}

    # -------- guard --------

    def is_running(self, date: str) -> bool:
        return date in self._runs

    def _claim(self, date: str) -> _Run:
        if date in self._runs:
            raise MatchAlreadyRunningError(date)
        run = _Run()
        self._runs[date] = run
        return run

    def _release(self, date: str) -> None:
        self._runs.pop(date, None)

    # -------- operations --------

    def open_chart(self, date: str) -> Optional[ChartCacheRecord]:
        """Cached chart for ``date`` (entries, tracks, matched set) or None."""
        record = self._cache.load(date)
        if record is not None:
            logger.info(f"[Runs] loaded cached chart {date} matched={record.matched_count}/{len(record.entries)}")
            self._last.setdefault(
                date,
                static_progress(RunStatus.IDLE, record.tracks, record.matched_indices, "Loaded from cache"),
            )
        return record

    async def fetch_and_match(self, date: str) -> MatchProgress:
        """Download the chart and match every entry from index 0."""
        run = self._claim(date)
        try:
            snapshot = await self._load_chart(date)
        except BaseException:
            self._release(date)
            raise
        tracks = tracks_from_entries(snapshot.entries)
        return self._launch(run, date, snapshot.date, list(snapshot.entries), tracks, 0, set(), 0)

    def resume(self, date: str) -> MatchProgress:
        """Continue from the first unmatched index of the cached chart."""
        run = self._claim(date)
        record = self._cache.load(date)
        if record is None:
            self._release(date)
            raise ChartNotCachedError(date)

        start = record.first_unmatched_index()
        if start >= len(record.entries):
            self._release(date)
            progress = static_progress(
                RunStatus.COMPLETED, record.tracks, record.matched_indices, "All tracks already matched"
            )
            self._last[date] = progress
            return progress

        matched = set(record.matched_indices)
        return self._launch(
            run, date, record.chart_date, record.entries, record.tracks, start, matched, len(matched)
        )

    async def reset(self, date: str) -> MatchProgress:
        """Drop every previous match and start over from index 0."""
        run = self._claim(date)
        record = self._cache.load(date)
        if record is not None:
            entries, chart_date = record.entries, record.chart_date
        else:
            try:
                snapshot = await self._load_chart(date)
            except BaseException:
                self._release(date)
                raise
            entries, chart_date = list(snapshot.entries), snapshot.date
        return self._launch(run, date, chart_date, entries, tracks_from_entries(entries), 0, set(), 0)

    def chart(self, date: str) -> Optional[Tuple[str, List[ChartEntry]]]:
        """(chart_date, entries) of the last run for ``date``, else from the cache."""
        if date in self._charts:
            return self._charts[date]
        record = self._cache.load(date)
        if record is None:
            return None
        return record.chart_date, record.entries

    def stop(self, date: str) -> bool:
        """
        Ask the run for ``date`` to halt. A run still loading its chart
        remembers the request and stops before its first search.
        """
        run = self._runs.get(date)
        if run is None:
            return False
        run.stop_requested = True
        if run.engine is not None:
            run.engine.request_stop()
        return True

    def progress(self, date: str) -> Optional[MatchProgress]:
        run = self._runs.get(date)
        if run is not None and run.engine is not None and run.engine.state.status != RunStatus.IDLE:
            return run.engine.progress
        if date in self._last:
            return self._last[date]
        record = self._cache.load(date)
        if record is None:
            return None
        return static_progress(RunStatus.IDLE, record.tracks, record.matched_indices, "Loaded from cache")

    async def wait(self, date: str, timeout: float | None = None) -> Optional[MatchProgress]:
        """Wait for the active run (never cancels it) and return the latest progress."""
        run = self._runs.get(date)
        if run is not None and run.task is not None:
            await asyncio.wait({run.task}, timeout=timeout)
        return self.progress(date)

    async def shutdown(self) -> None:
        for date in list(self._runs):
            self.stop(date)
        tasks = [r.task for r in self._runs.values() if r.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -------- internals --------

    def _launch(
        self,
        run: _Run,
        date: str,
        chart_date: str,
        entries: List[ChartEntry],
        tracks: List[TrackRecord],
        start_index: int,
        matched: set,
        matched_count: int,
    ) -> MatchProgress:
        engine = MatchingEngine(
            self._search,
            cache=self._cache,
            date=date,
            chart_date=chart_date,
            sleep=self._sleep,
        )
        run.engine = engine
        if run.stop_requested:
            engine.request_stop()
        self._charts[date] = (chart_date, list(entries))
        run.task = asyncio.create_task(
            engine.run_matching(entries, tracks, start_index, matched, matched_count)
        )
        run.task.add_done_callback(lambda t: self._finish(date, engine, t))
        progress = static_progress(
            RunStatus.RUNNING, tracks, matched, "Matching tracks...", current_index=start_index
        )
        self._last[date] = progress
        logger.info(f"[Runs] started {date} from index {start_index} ({len(entries)} entries)")
        return progress

    def _finish(self, date: str, engine: MatchingEngine, task: asyncio.Task) -> None:
        self._release(date)
        if task.cancelled():
            logger.info(f"[Runs] run for {date} cancelled")
        elif task.exception() is not None:
            logger.error(f"[Runs] run for {date} failed: {task.exception()}")
        self._last[date] = engine.progress
