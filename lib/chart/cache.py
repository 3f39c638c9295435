"""
Persisted chart progress.

One JSON file per requested chart date. Records older than ``expiry_days``
are treated as absent and removed by the read that finds them.
"""
from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from lib.cache_manager import build_chart_cache_key
from lib.chart.models import ChartCacheRecord, ChartEntry, TrackRecord

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChartCache:
    def __init__(
        self,
        directory: str | Path,
        expiry_days: int = 7,
        clock: Callable[[], int] = _now_ms,
    ):
        self.directory = Path(directory)
        self.expiry_ms = expiry_days * DAY_MS
        self._clock = clock

    def _path(self, date: str) -> Path:
        return self.directory / f"{build_chart_cache_key(date)}.json"

    def load(self, date: str) -> Optional[ChartCacheRecord]:
        path = self._path(date)
        if not path.exists():
            return None
        try:
            record = ChartCacheRecord.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except Exception as e:
            logger.warning(f"[ChartCache] unreadable record for {date}: {e}")
            return None

        age_ms = self._clock() - record.timestamp
        if age_ms > self.expiry_ms:
            logger.info(f"[ChartCache] expired record for {date} (age={age_ms // DAY_MS}d); removing")
            self.delete(date)
            return None
        return record

    def save(
        self,
        date: str,
        chart_date: str,
        entries: Iterable[ChartEntry],
        tracks: Iterable[TrackRecord],
        matched_indices: Iterable[int],
    ) -> ChartCacheRecord:
        record = ChartCacheRecord(
            date=date,
            chart_date=chart_date,
            entries=list(entries),
            tracks=list(tracks),
            matched_indices=sorted(set(matched_indices)),
            timestamp=self._clock(),
        )
        self.save_record(record)
        return record

    def save_record(self, record: ChartCacheRecord) -> None:
        """Replace the whole record for ``record.date``."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(record.date)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(record.to_dict(), ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)
        logger.debug(f"[ChartCache] saved {record.date} matched={record.matched_count}/{len(record.entries)}")

    def delete(self, date: str) -> None:
        try:
            self._path(date).unlink()
        except FileNotFoundError:
            pass

    def dates(self) -> List[str]:
        if not self.directory.exists():
            return []
        out = []
        for p in sorted(self.directory.glob("*.json")):
            try:
                out.append(json.loads(p.read_text(encoding="utf-8"))["date"])
            except Exception:
                continue
        return out

    def clear(self) -> None:
        for date in self.dates():
            self.delete(date)
