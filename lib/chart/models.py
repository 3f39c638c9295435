"""
チャート / マッチングのデータモデル。
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Set, Tuple, TypedDict


class RunStatus(str, Enum):
    """
    マッチング実行全体の状態。
    idle -> running -> {completed, stopped}
    """
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"


class CandidateTrack(TypedDict, total=False):
    """
    検索コラボレータが返す候補トラック（先頭のみ使用）。

    Fields:
        id: カタログ ID（Spotify track id）
        name: トラック名
        artists: アーティスト名（", " 区切り）
        album_name: アルバム名
        images: アートワーク URL
        duration_ms: 再生時間 (ms)
        is_explicit: explicit フラグ
        release_date: リリース日 (YYYY / YYYY-MM / YYYY-MM-DD)
        external_urls: 外部リンク
    """
    id: str
    name: str
    artists: str
    album_name: str
    images: str
    duration_ms: int
    is_explicit: bool
    release_date: str
    external_urls: str


@dataclass(frozen=True)
class ChartEntry:
    """One ranked chart position."""
    rank: int
    title: str
    artist: str
    last_week_rank: int = 0
    peak_rank: int = 0
    weeks_on_chart: int = 0
    is_new: bool = False

    def is_valid(self) -> bool:
        return bool(self.title) and bool(self.artist) and self.rank >= 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChartEntry":
        return cls(
            rank=int(data.get("rank") or 0),
            title=data.get("title") or "",
            artist=data.get("artist") or "",
            last_week_rank=int(data.get("last_week_rank") or 0),
            peak_rank=int(data.get("peak_rank") or 0),
            weeks_on_chart=int(data.get("weeks_on_chart") or 0),
            is_new=bool(data.get("is_new")),
        )


@dataclass(frozen=True)
class ChartSnapshot:
    """Immutable extraction result for one chart date."""
    date: str
    entries: Tuple[ChartEntry, ...]

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class TrackRecord:
    """
    ChartEntry と index で対応するトラック情報。
    spotify_id が空なら未マッチ。

    isrc はマッチ直後は spotify_id のコピー（仮の値）で、
    isrc_resolved=False のまま。下流で正式な ISRC に置き換える。
    """
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

    @property
    def is_matched(self) -> bool:
        return bool(self.spotify_id)

    @classmethod
    def from_entry(cls, entry: ChartEntry) -> "TrackRecord":
        return cls(name=entry.title, artists=entry.artist, track_number=entry.rank)

    def apply_candidate(self, candidate: CandidateTrack) -> None:
        self.spotify_id = candidate.get("id") or ""
        self.album_name = candidate.get("album_name") or ""
        self.images = candidate.get("images") or ""
        self.duration_ms = int(candidate.get("duration_ms") or 0)
        self.external_urls = candidate.get("external_urls") or ""
        self.is_explicit = bool(candidate.get("is_explicit"))
        self.release_date = candidate.get("release_date") or ""
        # placeholder until a downstream lookup resolves the real ISRC
        self.isrc = self.spotify_id
        self.isrc_resolved = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackRecord":
        return cls(
            name=data.get("name") or "",
            artists=data.get("artists") or "",
            track_number=int(data.get("track_number") or 0),
            spotify_id=data.get("spotify_id") or "",
            album_name=data.get("album_name") or "",
            images=data.get("images") or "",
            duration_ms=int(data.get("duration_ms") or 0),
            is_explicit=bool(data.get("is_explicit")),
            external_urls=data.get("external_urls") or "",
            release_date=data.get("release_date") or "",
            isrc=data.get("isrc") or "",
            isrc_resolved=bool(data.get("isrc_resolved")),
        )


def tracks_from_entries(entries: List[ChartEntry] | Tuple[ChartEntry, ...]) -> List[TrackRecord]:
    """Fresh (all unmatched) track records aligned with ``entries``."""
    return [TrackRecord.from_entry(e) for e in entries]


@dataclass(frozen=True)
class MatchProgress:
    """Read-only view of a run, handed to observers."""
    status: RunStatus
    matched_indices: frozenset
    matched_count: int
    current_index: int
    total: int
    progress: int
    current_track: str
    message: str
    retries: Dict[int, int]
    tracks: Tuple[TrackRecord, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "matched_indices": sorted(self.matched_indices),
            "matched_count": self.matched_count,
            "current_index": self.current_index,
            "total": self.total,
            "progress": self.progress,
            "current_track": self.current_track,
            "message": self.message,
            "retries": {str(k): v for k, v in self.retries.items()},
            "tracks": [t.to_dict() for t in self.tracks],
        }


@dataclass
class MatchProgressState:
    """Mutable state owned by a single matching run."""
    total: int = 0
    matched_indices: Set[int] = field(default_factory=set)
    matched_count: int = 0
    current_index: int = 0
    stop_requested: bool = False
    status: RunStatus = RunStatus.IDLE
    current_track: str = ""
    message: str = ""
    progress: int = 0
    retries: Dict[int, int] = field(default_factory=dict)

    def snapshot(self, tracks: List[TrackRecord]) -> MatchProgress:
        # copies of the tracks so observers never see a later mutation
        return MatchProgress(
            status=self.status,
            matched_indices=frozenset(self.matched_indices),
            matched_count=self.matched_count,
            current_index=self.current_index,
            total=self.total,
            progress=self.progress,
            current_track=self.current_track,
            message=self.message,
            retries=dict(self.retries),
            tracks=tuple(replace(t) for t in tracks),
        )


@dataclass
class ChartCacheRecord:
    """Persisted progress of one chart date."""
    date: str
    chart_date: str
    entries: List[ChartEntry]
    tracks: List[TrackRecord]
    matched_indices: List[int]
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "chart_date": self.chart_date,
            "entries": [e.to_dict() for e in self.entries],
            "tracks": [t.to_dict() for t in self.tracks],
            "matched_indices": sorted(self.matched_indices),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChartCacheRecord":
        return cls(
            date=data["date"],
            chart_date=data.get("chart_date") or data["date"],
            entries=[ChartEntry.from_dict(e) for e in data.get("entries") or []],
            tracks=[TrackRecord.from_dict(t) for t in data.get("tracks") or []],
            matched_indices=[int(i) for i in data.get("matched_indices") or []],
            timestamp=int(data["timestamp"]),
        )

    @property
    def matched_count(self) -> int:
        return len(self.matched_indices)

    def first_unmatched_index(self) -> int:
        """Index to resume from; ``len(entries)`` when everything is matched."""
        matched = set(self.matched_indices)
        for i in range(len(self.entries)):
            if i not in matched:
                return i
        return len(self.entries)
