"""
Chart HTML parsing.

The chart page has no versioned contract, so extraction is an ordered list
of strategies. Each one is pure (html in, entries out) and the first one
returning a non-empty list wins.
"""
from __future__ import annotations

import logging
import re
from typing import List, Sequence

from bs4 import BeautifulSoup

from lib.chart.models import ChartEntry
from lib.chart.normalizer import clean_text

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"\d+")
_NEW_RE = re.compile(r"NEW(\s|$)")

_TITLE_RE = re.compile(r'<h3[^>]*id="title-of-a-story"[^>]*>\s*(.*?)\s*</h3>', re.S)
_RANK_TOKEN_RE = re.compile(r">\s*(\d{1,3})\s*<")
_LABEL_AFTER_TITLE_RE = re.compile(
    r'^\s*<span[^>]*class="[^"]*c-label[^"]*"[^>]*>\s*(.*?)\s*</span>', re.S
)
_ARTIST_LINK_RE = re.compile(r'<a[^>]*href="/artist/[^"]*"[^>]*>\s*(.*?)\s*</a>', re.S)

RANK_LOOKBEHIND_CHARS = 300
ARTIST_LOOKAHEAD_CHARS = 500
MAX_ARTIST_LINKS = 3

# li positions inside a row (0-indexed)
LAST_WEEK_LI = 3
PEAK_LI = 4
WEEKS_LI = 5


class ExtractionStrategy:
    """One way of turning a chart document into entries."""

    name = "base"

    def try_extract(self, html: str) -> List[ChartEntry]:
        raise NotImplementedError


class RowStructuralStrategy(ExtractionStrategy):
    """
    ul.o-chart-results-list-row ごとに 1 エントリ。
    rank / title / artist / 統計 (先週・最高位・週数) / NEW を取る。
    """

    name = "rows"

    def try_extract(self, html: str) -> List[ChartEntry]:
        soup = BeautifulSoup(html or "", "html.parser")
        rows = soup.select("ul.o-chart-results-list-row")
        entries: List[ChartEntry] = []
        for row in rows:
            entry = self._extract_row(row)
            if entry.is_valid():
                entries.append(entry)
        logger.debug(f"[Chart parse] rows={len(rows)} valid={len(entries)}")
        return entries

    def _extract_row(self, row) -> ChartEntry:
        rank = 0
        # first all-digit label anywhere in the row: with an empty rank label
        # the last-week column (then peak, weeks) supplies the rank
        for label in row.select("li > span.c-label"):
            m = _DIGITS_RE.fullmatch(label.get_text(strip=True))
            if m:
                rank = int(m.group(0))
                break

        title = ""
        artist = ""
        heading = row.select_one("h3#title-of-a-story")
        if heading is not None:
            title = clean_text(heading.get_text())
            sibling = heading.find_next_sibling()
            if sibling is not None and sibling.name == "span" and "c-label" in (sibling.get("class") or []):
                artist = clean_text(sibling.get_text())
        if not artist:
            link = row.select_one('a[href^="/artist/"]')
            if link is not None:
                artist = clean_text(link.get_text())

        items = row.find_all("li")
        is_new = any(_NEW_RE.match(s) for s in row.find_all(string=True))

        return ChartEntry(
            rank=rank,
            title=title,
            artist=artist,
            last_week_rank=_stat_at(items, LAST_WEEK_LI),
            peak_rank=_stat_at(items, PEAK_LI),
            weeks_on_chart=_stat_at(items, WEEKS_LI),
            is_new=is_new,
        )


def _stat_at(items, index: int) -> int:
    """Numeric label inside the ``index``-th li, 0 when missing."""
    if index >= len(items):
        return 0
    item = items[index]
    for s in item.find_all(string=True):
        text = s.strip()
        if text.isdigit():
            return int(text)
    m = _DIGITS_RE.search(item.get_text())
    return int(m.group(0)) if m else 0


class DirectTitleStrategy(ExtractionStrategy):
    """
    Degraded path: every title heading in document order, with rank and
    artist recovered from the text around it.
    """

    name = "titles"

    def try_extract(self, html: str) -> List[ChartEntry]:
        html = html or ""
        entries: List[ChartEntry] = []
        for i, m in enumerate(_TITLE_RE.finditer(html)):
            title = clean_text(m.group(1))
            if not title:
                continue

            rank = i + 1
            before = html[max(0, m.start() - RANK_LOOKBEHIND_CHARS):m.start()]
            tokens = _RANK_TOKEN_RE.findall(before)
            if tokens:
                candidate = int(tokens[-1])
                if 1 <= candidate <= 100:
                    rank = candidate

            after = html[m.end():m.end() + ARTIST_LOOKAHEAD_CHARS]
            artist = ""
            label = _LABEL_AFTER_TITLE_RE.match(after)
            if label:
                artist = clean_text(label.group(1))
            if not artist:
                names = []
                for link in _ARTIST_LINK_RE.finditer(after):
                    if len(names) >= MAX_ARTIST_LINKS:
                        break
                    name = clean_text(link.group(1))
                    if name:
                        names.append(name)
                artist = ", ".join(names)

            if title and artist:
                entries.append(ChartEntry(rank=rank, title=title, artist=artist))
        logger.debug(f"[Chart parse] title headings -> {len(entries)} entries")
        return entries


DEFAULT_STRATEGIES: Sequence[ExtractionStrategy] = (
    RowStructuralStrategy(),
    DirectTitleStrategy(),
)


def parse_chart_html(
    html: str,
    strategies: Sequence[ExtractionStrategy] | None = None,
) -> List[ChartEntry]:
    """
    Try each strategy in order and return the first non-empty result.
    An empty list means the document had no recognizable chart data.
    """
    for strategy in strategies or DEFAULT_STRATEGIES:
        try:
            entries = strategy.try_extract(html)
        except Exception as e:
            logger.warning(f"[Chart parse] strategy={strategy.name} failed: {e}")
            continue
        if entries:
            logger.info(f"[Chart parse] strategy={strategy.name} entries={len(entries)}")
            return entries
    return []
