"""
テキスト正規化ヘルパー: チャート HTML 断片を表示用文字列にする。
"""
from __future__ import annotations

import html as _html
import re

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_ARTIST_SPLIT_RE = re.compile(r"[,&]|featuring|feat\.", re.IGNORECASE)
_MAX_DECODE_PASSES = 5


def clean_text(text: str) -> str:
    """
    HTML 断片を表示用に整える:
    - エンティティのデコードとタグ削除を、変化がなくなるまで繰り返す
      ("&amp;amp;" や "&lt;b&gt;" のような二重エスケープも 1 回で落ちる)
    - 前後の空白を削り、連続空白を 1 つに詰める
    """
    s = text or ""
    for _ in range(_MAX_DECODE_PASSES):
        decoded = _TAG_RE.sub("", _html.unescape(s))
        if decoded == s:
            break
        s = decoded
    return _WS_RE.sub(" ", s).strip()


def primary_artist(artist: str) -> str:
    """
    先頭のクレジットだけ残す。
    "A, B" / "A & B" / "A Featuring B" / "A feat. B" -> "A"
    """
    return _ARTIST_SPLIT_RE.split(artist or "", maxsplit=1)[0].strip()


def build_search_query(title: str, artist: str) -> str:
    return f"{title} {primary_artist(artist)}".strip()
