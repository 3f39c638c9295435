import json
import tempfile
import unittest
from pathlib import Path

from lib.chart.cache import DAY_MS, ChartCache
from lib.chart.models import ChartEntry, TrackRecord, tracks_from_entries


class FakeClock:
    def __init__(self, now_ms: int):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


ENTRIES = [
    ChartEntry(rank=1, title="Song A", artist="Artist X", peak_rank=1, weeks_on_chart=3),
    ChartEntry(rank=2, title="Song B", artist="Artist Y", is_new=True),
]


class ChartCacheTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.clock = FakeClock(1_714_780_800_000)
        self.cache = ChartCache(self._tmp.name, expiry_days=7, clock=self.clock)

    def _save(self):
        tracks = tracks_from_entries(ENTRIES)
        tracks[0].spotify_id = "abc123"
        tracks[0].isrc = "abc123"
        return self.cache.save("2024-05-04", "2024-05-04", ENTRIES, tracks, {0})

    def test_round_trip(self):
        saved = self._save()
        loaded = self.cache.load("2024-05-04")

        self.assertEqual(saved.timestamp, 1_714_780_800_000)
        self.assertEqual(loaded.entries, ENTRIES)
        self.assertEqual(loaded.tracks[0].spotify_id, "abc123")
        self.assertFalse(loaded.tracks[0].isrc_resolved)
        self.assertEqual(loaded.matched_indices, [0])
        self.assertEqual(loaded.first_unmatched_index(), 1)

    def test_hit_after_six_days_miss_after_eight(self):
        self._save()

        self.clock.now_ms += 6 * DAY_MS
        self.assertIsNotNone(self.cache.load("2024-05-04"))

        self.clock.now_ms += 2 * DAY_MS
        self.assertIsNone(self.cache.load("2024-05-04"))
        self.assertEqual(list(Path(self._tmp.name).glob("*.json")), [])

    def test_missing_date_is_none(self):
        self.assertIsNone(self.cache.load("2024-05-11"))

    def test_save_replaces_whole_record(self):
        self._save()
        fresh = tracks_from_entries(ENTRIES)
        self.cache.save("2024-05-04", "2024-05-04", ENTRIES, fresh, [])

        loaded = self.cache.load("2024-05-04")
        self.assertEqual(loaded.matched_indices, [])
        self.assertFalse(any(t.is_matched for t in loaded.tracks))

    def test_corrupt_file_is_a_miss(self):
        self._save()
        path = next(Path(self._tmp.name).glob("*.json"))
        path.write_text("{not json", encoding="utf-8")
        self.assertIsNone(self.cache.load("2024-05-04"))

    def test_persisted_fields(self):
        self._save()
        path = next(Path(self._tmp.name).glob("*.json"))
        raw = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(
            set(raw),
            {"date", "chart_date", "entries", "tracks", "matched_indices", "timestamp"},
        )

    def test_delete_and_clear(self):
        self._save()
        self.cache.save("2024-05-11", "2024-05-11", ENTRIES, [TrackRecord("a", "b", 1)] * 2, [])
        self.assertEqual(sorted(self.cache.dates()), ["2024-05-04", "2024-05-11"])

        self.cache.delete("2024-05-04")
        self.assertIsNone(self.cache.load("2024-05-04"))

        self.cache.clear()
        self.assertEqual(self.cache.dates(), [])


if __name__ == "__main__":
    unittest.main()
