"""
ファイル名 / フォルダパスのサニタイズ（Windows / macOS / Linux 共通で安全な名前にする）。
"""
from __future__ import annotations

import os
import re
import unicodedata
from typing import List

FALLBACK_NAME = "Unknown"
DEFAULT_EXTENSION = ".flac"

_UNSAFE_RE = re.compile(r'[<>:"\\|?*]')
_SURROGATE_RE = re.compile(r"[\ud800-\udfff]")
_WS_RE = re.compile(r"\s+")
_UNDERSCORE_RE = re.compile(r"_+")
_KEEP_CONTROLS = ("\t", "\n", "\r")

# "{track}. " -> "{track} - " -> "{track}" の順に削る
_CONNECTOR_PATTERNS = (r"\{%s\}\.\s*", r"\{%s\}\s*-\s*", r"\{%s\}\s*")

NAMED_LAYOUTS = ("title-artist", "artist-title", "title")


def _to_text(name: str | bytes) -> str:
    if isinstance(name, bytes):
        name = name.decode("utf-8", errors="surrogateescape")
    return _SURROGATE_RE.sub("_", name or "")


def sanitize_filename(name: str | bytes) -> str:
    """
    1 セグメント分のファイル名を安全にする。

    - "/" と < > : " \\ | ? * はスペースに置換
    - 制御文字は削除（タブ / 改行は空白扱いで後で 1 つに詰める）
    - 前後の空白・ドット・アンダースコアを削り、連続空白 / 連続 "_" を詰める
    - 不正なエンコーディング部分は "_"
    - 空になったら "Unknown"
    """
    s = _to_text(name)
    s = s.replace("/", " ")
    s = _UNSAFE_RE.sub(" ", s)
    s = "".join(
        ch for ch in s
        if ch in _KEEP_CONTROLS or unicodedata.category(ch) != "Cc"
    )
    s = s.strip().strip(". ")
    s = _WS_RE.sub(" ", s)
    s = _UNDERSCORE_RE.sub("_", s)
    # dots too, otherwise "a._" would need a second pass
    s = s.strip(" ._")
    return s or FALLBACK_NAME


def _is_unc(path: str) -> bool:
    return path.startswith("\\\\") or path.startswith("//")


def _split_parts(path: str, sep: str, unc: bool) -> List[str]:
    if unc or sep == "\\":
        return re.split(r"[\\/]", path)
    return path.split("/")


def sanitize_folder_path(path: str, sep: str = os.sep) -> str:
    """
    Sanitize every segment of ``path`` and join with ``sep``.

    A UNC prefix (leading double separator) keeps its host and share
    segments verbatim. Otherwise a drive segment ("C:") or an empty root
    segment is kept as is. Empty inner segments are dropped, and an empty
    path stays empty instead of becoming the root.
    """
    path = path or ""
    if not path:
        return ""
    unc = _is_unc(path)
    work = path[2:] if unc else path
    parts = _split_parts(work, sep, unc)

    out: List[str] = []
    kept_prefix = 0
    for i, part in enumerate(parts):
        if unc and kept_prefix < 2:
            if part:
                out.append(part)
                kept_prefix += 1
            continue
        if not unc and i == 0:
            if len(part) == 2 and part[1] == ":" and part[0].isalpha():
                out.append(part)
                continue
            if part == "":
                out.append(part)
                continue
        if not part:
            continue
        out.append(sanitize_filename(part))

    result = sep.join(out)
    if unc:
        return sep * 2 + result
    if out == [""]:
        return sep
    return result


def normalize_path(path: str, sep: str = os.sep) -> str:
    """Unify "/" and "\\" to ``sep``, keeping a UNC prefix."""
    path = path or ""
    if _is_unc(path):
        return sep * 2 + re.sub(r"[\\/]", lambda _: sep, path[2:])
    return path.replace("/", sep)


def _drop_placeholder(template: str, key: str) -> str:
    for pattern in _CONNECTOR_PATTERNS:
        template = re.sub(pattern % key, "", template)
    return template


def build_filename(
    track_name: str,
    artist_name: str,
    album_name: str = "",
    album_artist: str = "",
    release_date: str = "",
    filename_format: str = "title-artist",
    playlist_name: str = "",
    playlist_owner: str = "",
    include_track_number: bool = False,
    position: int = 0,
    disc_number: int = 0,
    extension: str = DEFAULT_EXTENSION,
) -> str:
    """
    Compose the output file name for one track.

    ``filename_format`` is either a template using {title} {artist} {album}
    {album_artist} {year} {playlist} {creator} {disc} {track}, or one of the
    named layouts "title-artist" (default), "artist-title", "title".
    A missing track/disc number removes its placeholder together with a
    directly bound ". " or " - " connector.
    """
    safe_title = sanitize_filename(track_name)
    safe_artist = sanitize_filename(artist_name)
    year = release_date[:4] if release_date and len(release_date) >= 4 else ""
    fmt = filename_format or "title-artist"

    if "{" in fmt:
        values = {
            "title": safe_title,
            "artist": safe_artist,
            "album": sanitize_filename(album_name),
            "album_artist": sanitize_filename(album_artist),
            "year": year,
            "playlist": sanitize_filename(playlist_name),
            "creator": sanitize_filename(playlist_owner),
        }
        name = fmt
        for key, value in values.items():
            name = name.replace("{%s}" % key, value)
        if disc_number and disc_number > 0:
            name = name.replace("{disc}", str(disc_number))
        else:
            name = _drop_placeholder(name, "disc")
        if position and position > 0:
            name = name.replace("{track}", f"{position:02d}")
        else:
            name = _drop_placeholder(name, "track")
    else:
        if fmt == "artist-title":
            name = f"{safe_artist} - {safe_title}"
        elif fmt == "title":
            name = safe_title
        else:
            name = f"{safe_title} - {safe_artist}"
        if include_track_number and position and position > 0:
            name = f"{position:02d}. {name}"

    return name + extension
