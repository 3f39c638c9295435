import os
import re
import tempfile
import unittest

from fastapi.testclient import TestClient

from app import app
from core import ChartFetchError, NoChartDataError
from lib.chart.cache import ChartCache
from lib.chart.models import ChartEntry, ChartSnapshot
from lib.chart.runs import ChartRunManager

ENTRIES = (
    ChartEntry(rank=1, title="Song A", artist="Artist X", peak_rank=1, weeks_on_chart=4),
    ChartEntry(rank=2, title="Song/B", artist="Artist Y", is_new=True),
)


async def no_sleep(seconds):
    return None


async def load_chart(date):
    return ChartSnapshot(date=date, entries=ENTRIES)


async def search(query, limit):
    if query.startswith("Song A"):
        return [{"id": "abc123", "album_name": "Album A", "release_date": "2024-01-19"}]
    return []


class ChartApiTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.cache = ChartCache(self._tmp.name)
        self._use(load_chart)
        self.client = TestClient(app)
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def _use(self, loader):
        self.runs = ChartRunManager(loader, search, self.cache, sleep=no_sleep)
        app.state.chart_runs = self.runs

    def test_health(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["ok"])

    def test_current_date(self):
        resp = self.client.get("/api/chart/current-date")
        self.assertEqual(resp.status_code, 200)
        self.assertRegex(resp.json()["date"], r"^\d{4}-\d{2}-\d{2}$")

    def test_invalid_date_is_422(self):
        resp = self.client.get("/api/chart/2024-5-4")
        self.assertEqual(resp.status_code, 422)
        resp = self.client.post("/api/chart/not-a-date/fetch")
        self.assertEqual(resp.status_code, 422)

    def test_unknown_chart_is_404(self):
        self.assertEqual(self.client.get("/api/chart/2024-05-04").status_code, 404)
        self.assertEqual(self.client.post("/api/chart/2024-05-04/resume").status_code, 404)
        self.assertEqual(self.client.get("/api/chart/2024-05-04/progress").status_code, 404)

    def test_fetch_match_and_read_back(self):
        resp = self.client.post("/api/chart/2024-05-04/fetch")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["chart_date"], "2024-05-04")
        self.assertEqual([e["title"] for e in body["entries"]], ["Song A", "Song/B"])
        self.assertEqual(body["progress"]["status"], "running")

        resp = self.client.get("/api/chart/2024-05-04/progress", params={"wait": "true"})
        progress = resp.json()["progress"]
        self.assertEqual(progress["status"], "completed")
        self.assertEqual(progress["matched_indices"], [0])
        self.assertEqual(progress["tracks"][0]["spotify_id"], "abc123")
        self.assertEqual(progress["tracks"][0]["isrc"], "abc123")

        resp = self.client.get("/api/chart/2024-05-04")
        self.assertEqual(resp.status_code, 200)
        chart = resp.json()
        self.assertFalse(chart["running"])
        self.assertTrue(chart["entries"][1]["is_new"])
        self.assertEqual(chart["progress"]["matched_count"], 1)

        resp = self.client.post("/api/chart/2024-05-04/resume")
        self.assertEqual(resp.status_code, 200)
        resp = self.client.get("/api/chart/2024-05-04/progress", params={"wait": "true"})
        self.assertEqual(resp.json()["progress"]["matched_count"], 1)

    def test_download_plan_lists_matched_tracks_only(self):
        self.client.post("/api/chart/2024-05-04/fetch")
        self.client.get("/api/chart/2024-05-04/progress", params={"wait": "true"})

        resp = self.client.get(
            "/api/chart/2024-05-04/downloads",
            params={"download_path": f"{os.sep}music"},
        )
        self.assertEqual(resp.status_code, 200)
        items = resp.json()["items"]
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["filename"], "01. Song A - Artist X.flac")
        self.assertEqual(
            items[0]["output_dir"],
            os.sep.join(["", "music", "Billboard Hot 100 - 2024-05-04"]),
        )

    def test_concurrent_start_is_409(self):
        self.runs._claim("2024-05-04")
        try:
            self.assertEqual(self.client.post("/api/chart/2024-05-04/fetch").status_code, 409)
            self.assertEqual(self.client.post("/api/chart/2024-05-04/reset").status_code, 409)
        finally:
            self.runs._release("2024-05-04")

    def test_fetch_failure_is_502_with_status(self):
        async def failing(date):
            raise ChartFetchError("Billboard returned status 403", status_code=403)

        self._use(failing)
        resp = self.client.post("/api/chart/2024-05-04/fetch")
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json()["detail"]["status_code"], 403)
        self.assertFalse(self.runs.is_running("2024-05-04"))

    def test_no_chart_data_is_404(self):
        async def empty(date):
            raise NoChartDataError("No chart data found for 2024-05-04")

        self._use(empty)
        resp = self.client.post("/api/chart/2024-05-04/fetch")
        self.assertEqual(resp.status_code, 404)
        self.assertTrue(re.search("No chart data", resp.json()["detail"]["error"]))

    def test_stop_without_run(self):
        resp = self.client.post("/api/chart/2024-05-04/stop")
        self.assertEqual(resp.json(), {"date": "2024-05-04", "stopped": False})


if __name__ == "__main__":
    unittest.main()
