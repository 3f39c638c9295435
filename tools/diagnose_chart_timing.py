#!/usr/bin/env python3
"""
Chart timing diagnosis tool.
Measures: chart fetch+parse time, cache hit time, matching throughput.
"""
import sys
import time

import requests

BACKEND_URL = "http://127.0.0.1:8000"


def measure_fetch(date, label):
    """Start fetch+match for one chart date and time the response."""
    print(f"\n{'='*60}")
    print(f"{label}")
    print(f"{'='*60}")

    t0 = time.time()
    try:
        response = requests.post(f"{BACKEND_URL}/api/chart/{date}/fetch", timeout=60)
        elapsed_ms = (time.time() - t0) * 1000
        if response.status_code == 409:
            print("\n⚠ A matching run is already active for this date")
            return None
        response.raise_for_status()
        data = response.json()
    except Exception as e:
        print(f"\n❌ Error: {e}")
        return None

    entries = len(data.get("entries", []))
    print(f"\n📊 Fetch + parse:              {elapsed_ms:8.1f} ms")
    print(f"  chart_date:                 {data.get('chart_date')}")
    print(f"  entries:                    {entries}")
    return {"fetch_ms": elapsed_ms, "entries": entries}


def measure_matching(date, poll_s=5.0, max_polls=120):
    """Poll progress until the run ends; report tracks/min."""
    t0 = time.time()
    last = None
    for _ in range(max_polls):
        try:
            resp = requests.get(f"{BACKEND_URL}/api/chart/{date}/progress", timeout=30)
            resp.raise_for_status()
            body = resp.json()
        except Exception as e:
            print(f"\n❌ Error: {e}")
            return None
        last = body.get("progress") or {}
        print(
            f"  [{time.time() - t0:6.1f}s] {last.get('status')} "
            f"{last.get('matched_count')}/{last.get('total')} {last.get('message', '')}"
        )
        if not body.get("running"):
            break
        time.sleep(poll_s)

    elapsed_s = time.time() - t0
    matched = (last or {}).get("matched_count", 0) or 0
    per_min = matched / elapsed_s * 60 if elapsed_s > 0 else 0
    print(f"\n✅ Matched {matched} tracks in {elapsed_s:.0f}s ({per_min:.1f} tracks/min)")
    return {"elapsed_s": elapsed_s, "matched": matched}


def measure_cached(date):
    t0 = time.time()
    resp = requests.get(f"{BACKEND_URL}/api/chart/{date}", timeout=30)
    elapsed_ms = (time.time() - t0) * 1000
    print(f"\n📦 Cached read: status={resp.status_code} {elapsed_ms:.1f} ms")
    return elapsed_ms


def main():
    date = sys.argv[1] if len(sys.argv) > 1 else requests.get(
        f"{BACKEND_URL}/api/chart/current-date", timeout=10
    ).json()["date"]

    print(f"""
╔══════════════════════════════════════════════════════════════╗
║  Chart Timing Diagnosis Tool  ({date})                   ║
╚══════════════════════════════════════════════════════════════╝
    """)

    fetched = measure_fetch(date, "TEST 1: Fetch + parse")
    if not fetched:
        return
    measure_matching(date)
    measure_cached(date)


if __name__ == "__main__":
    main()
