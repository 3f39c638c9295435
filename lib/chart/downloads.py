"""
Download input for matched chart tracks.

Only matched tracks are handed to the downloader; each one gets a sanitized
target folder and file name.
"""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Sequence

from lib.chart.models import TrackRecord
from lib.filename import build_filename, normalize_path, sanitize_filename, sanitize_folder_path

DOWNLOAD_PATH = os.getenv("DOWNLOAD_PATH", "")
FILENAME_FORMAT = os.getenv("FILENAME_FORMAT", "title-artist")

CHART_FOLDER_TEMPLATE = "Billboard Hot 100 - {chart_date}"


@dataclass
class DownloadItem:
    index: int
    spotify_id: str
    isrc: str
    title: str
    artist: str
    album: str
    output_dir: str
    filename: str
    output_path: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def chart_folder_name(chart_date: str) -> str:
    return sanitize_filename(CHART_FOLDER_TEMPLATE.format(chart_date=chart_date))


def plan_downloads(
    chart_date: str,
    tracks: Sequence[TrackRecord],
    download_path: str | None = None,
    filename_format: str | None = None,
    use_chart_folder: bool = True,
    include_track_number: bool = True,
    sep: str = os.sep,
) -> List[DownloadItem]:
    base = normalize_path(download_path if download_path is not None else DOWNLOAD_PATH, sep)
    if use_chart_folder:
        folder = chart_folder_name(chart_date)
        base = f"{base.rstrip(sep)}{sep}{folder}" if base else folder
    output_dir = sanitize_folder_path(base, sep) if base else ""

    items: List[DownloadItem] = []
    for i, track in enumerate(tracks):
        if not track.is_matched:
            continue
        filename = build_filename(
            track.name,
            track.artists,
            album_name=track.album_name,
            release_date=track.release_date,
            filename_format=filename_format or FILENAME_FORMAT,
            playlist_name=CHART_FOLDER_TEMPLATE.format(chart_date=chart_date),
            include_track_number=include_track_number,
            position=track.track_number,
        )
        items.append(
            DownloadItem(
                index=i,
                spotify_id=track.spotify_id,
                isrc=track.isrc,
                title=track.name,
                artist=track.artists,
                album=track.album_name,
                output_dir=output_dir,
                filename=filename,
                output_path=f"{output_dir.rstrip(sep)}{sep}{filename}" if output_dir else filename,
            )
        )
    return items
