"""
チャートエントリと Spotify カタログの突き合わせ（再開 / 停止 / リセット対応）。

1 回の実行 = 1 つの MatchingEngine。エントリは index 順に 1 件ずつ処理する。

停止は協調的: stop フラグはエントリ処理の先頭とリトライ待ちの後でだけ見る。
そのため停止が効くまで最大でリトライ待ち 1 回分（最悪 RATE_LIMIT_DELAY x 3 = 30s）かかる。
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import replace
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from lib.chart.models import (
    CandidateTrack,
    ChartEntry,
    MatchProgress,
    MatchProgressState,
    RunStatus,
    TrackRecord,
)
from lib.chart.normalizer import build_search_query

logger = logging.getLogger(__name__)

MATCH_MAX_RETRIES = int(os.getenv("MATCH_MAX_RETRIES", "3"))
MATCH_BASE_DELAY_S = float(os.getenv("MATCH_BASE_DELAY_S", "1.5"))
MATCH_RATE_LIMIT_DELAY_S = float(os.getenv("MATCH_RATE_LIMIT_DELAY_S", "10"))
MATCH_SEARCH_LIMIT = int(os.getenv("MATCH_SEARCH_LIMIT", "5"))

_RATE_LIMIT_MARKERS = ("429", "rate", "too many", "quota")

SearchFn = Callable[[str, int], Awaitable[List[CandidateTrack]]]
SleepFn = Callable[[float], Awaitable[None]]
ProgressFn = Callable[[MatchProgress], None]


def is_rate_limit_error(err: BaseException) -> bool:
    text = str(err).lower()
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)


class MatchingEngine:
    """
    Sequential matcher for one chart.

    ``search`` is the catalog collaborator (query, limit) -> candidates.
    ``cache`` (a ChartCache) is rewritten after every confirmed match and
    once more when the run ends, whether it completed or was stopped.
    """

    def __init__(
        self,
        search: SearchFn,
        cache=None,
        date: str = "",
        chart_date: str = "",
        sleep: SleepFn = asyncio.sleep,
        on_progress: Optional[ProgressFn] = None,
        max_retries: int = MATCH_MAX_RETRIES,
        base_delay: float = MATCH_BASE_DELAY_S,
        rate_limit_delay: float = MATCH_RATE_LIMIT_DELAY_S,
        search_limit: int = MATCH_SEARCH_LIMIT,
    ):
        self._search = search
        self._cache = cache
        self.date = date
        self.chart_date = chart_date or date
        self._sleep = sleep
        self._on_progress = on_progress
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.rate_limit_delay = rate_limit_delay
        self.search_limit = search_limit

        self.state = MatchProgressState()
        self.entries: List[ChartEntry] = []
        self.tracks: List[TrackRecord] = []
        self._latest: Optional[MatchProgress] = None

    # -------- observers --------

    @property
    def progress(self) -> MatchProgress:
        if self._latest is None:
            self._latest = self.state.snapshot(self.tracks)
        return self._latest

    def _publish(self, message: str | None = None) -> None:
        if message is not None:
            self.state.message = message
        self._latest = self.state.snapshot(self.tracks)
        if self._on_progress is not None:
            try:
                self._on_progress(self._latest)
            except Exception as e:
                logger.warning(f"[Match] progress observer failed: {e}")

    def request_stop(self) -> None:
        """Ask the run to halt at its next check point."""
        self.state.stop_requested = True
        self._publish("Stopping...")

    # -------- run --------

    async def run_matching(
        self,
        entries: Sequence[ChartEntry],
        current_tracks: Sequence[TrackRecord],
        start_index: int = 0,
        resume_matched_indices: Optional[Iterable[int]] = None,
        resume_matched_count: Optional[int] = None,
    ) -> MatchProgress:
        """
        Visit ``entries[start_index:]`` in order and match every index not
        already in the matched set. Returns the final progress snapshot.

        Resume: pass the first unmatched index together with the current
        matched set / count. Reset: pass fresh tracks and no matched set.
        """
        if len(current_tracks) != len(entries):
            raise ValueError(
                f"tracks ({len(current_tracks)}) must align with entries ({len(entries)})"
            )

        self.entries = list(entries)
        self.tracks = [replace(t) for t in current_tracks]
        state = self.state
        state.total = len(self.entries)
        state.matched_indices = set(resume_matched_indices or ())
        state.matched_count = (
            resume_matched_count if resume_matched_count is not None else len(state.matched_indices)
        )
        state.current_index = start_index
        state.status = RunStatus.RUNNING
        state.retries = {}
        self._publish("Matching tracks...")

        total = len(self.entries)
        logger.info(
            f"[Match] start date={self.date} from={start_index} total={total} "
            f"already_matched={state.matched_count}"
        )
        completed = False
        try:
            for i in range(start_index, total):
                if state.stop_requested:
                    break
                if i in state.matched_indices:
                    continue

                entry = self.entries[i]
                state.current_index = i
                state.current_track = f"{entry.title} - {entry.artist}"
                state.progress = int(i * 100 / total)
                self._publish(f"Matching {i + 1}/{total}")

                await self._match_entry(i, entry)

                if i < total - 1 and not state.stop_requested:
                    await self._sleep(self.base_delay)
            completed = not state.stop_requested
        finally:
            if completed:
                state.status = RunStatus.COMPLETED
                state.progress = 100
                state.current_track = ""
                message = f"Matched {state.matched_count}/{total} tracks"
            else:
                state.status = RunStatus.STOPPED
                message = f"Stopped. Matched {state.matched_count}/{total} tracks"
            self._persist()
            self._publish(message)
            logger.info(f"[Match] {state.status.value} date={self.date} matched={state.matched_count}/{total}")

        return self.progress

    async def _match_entry(self, index: int, entry: ChartEntry) -> None:
        state = self.state
        query = build_search_query(entry.title, entry.artist)
        attempt = 0

        while attempt < self.max_retries and not state.stop_requested:
            try:
                logger.debug(f"[Match] search #{index} q={query!r} attempt={attempt + 1}")
                results = await self._search(query, self.search_limit)
            except Exception as e:
                attempt += 1
                state.retries[index] = attempt
                if is_rate_limit_error(e):
                    wait = self.rate_limit_delay * attempt
                    logger.warning(f"[Match] rate limited on #{index} ({e}); waiting {wait:g}s")
                    self._publish(f"Rate limited, waiting {wait:g}s...")
                    await self._sleep(wait)
                elif attempt < self.max_retries:
                    wait = self.base_delay * attempt
                    logger.warning(
                        f"[Match] search failed on #{index} attempt {attempt}/{self.max_retries}: {e}"
                    )
                    self._publish(f"Retrying {entry.title} ({attempt}/{self.max_retries})...")
                    await self._sleep(wait)
                else:
                    logger.error(f"[Match] giving up on #{index} {entry.title!r}: {e}")
                    self._publish(f"Failed to match {entry.title}")
                continue

            if results and results[0].get("id"):
                self.tracks[index].apply_candidate(results[0])
                state.matched_indices.add(index)
                state.matched_count += 1
                logger.info(f"[Match] #{index} {entry.title!r} -> {results[0].get('id')}")
                self._persist()
                self._publish(f"Matched {entry.title}")
            else:
                logger.info(f"[Match] #{index} {entry.title!r}: no result")
            return

    def _persist(self) -> None:
        if self._cache is None or not self.date:
            return
        try:
            self._cache.save(
                self.date,
                self.chart_date,
                self.entries,
                self.tracks,
                self.state.matched_indices,
            )
        except Exception as e:
            logger.warning(f"[Match] failed to persist progress for {self.date}: {e}")
