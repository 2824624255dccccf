"""Heuristic-text strategy: price lines anchor blocks in the visible text.

Lowest confidence. Always applicable, so the chain always ends here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

from ..models import StrategyName
from ..normalizer import CURRENCY_MARKERS, ISO_CURRENCIES, detect_basis, detect_taxes_included
from ..utils import clean_text
from .base import AttemptResult, ExtractionStrategy, StrategyContext, _log

_MARKERS = "|".join(re.escape(marker) for marker, _ in CURRENCY_MARKERS)
_CODES = "|".join(sorted(ISO_CURRENCIES))
PRICE_LINE_RE = re.compile(
    rf"(?:(?:{_MARKERS})|\b(?:{_CODES})\b)\s?\d|\d[\d.,' ]*\s?(?:(?:{_MARKERS})|\b(?:{_CODES})\b)"
)
RATING_LINE_RE = re.compile(
    r"(?P<value>\d{1,3}(?:[.,]\d{1,2})?)\s*(?:/\s*(?:5|10|100)\b|out\s+of\s+(?:5|10)\b|von\s+(?:5|10)\b|sur\s+(?:5|10)\b)",
    re.I,
)

UI_PREFIXES = (
    "sort", "filter", "show", "see ", "view", "book", "select", "reserve", "free cancellation",
    "per night", "includes", "taxes", "reviews", "map", "search", "sign in", "log in", "menu",
    "previous", "next", "load more", "results", "price", "total", "from ",
)

LOOKBACK_LINES = 6
MAX_TEXT_CHARS = 250_000


@dataclass
class _Block:
    title_index: int
    name: str
    location: Optional[str] = None
    price_lines: List[str] = field(default_factory=list)
    qualifiers: List[str] = field(default_factory=list)
    last_index: int = 0
    review_score: Optional[str] = None
    rating_text: Optional[str] = None
    taxes_text: Optional[str] = None

    def row(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "address": self.location,
            "price_text": " ".join(self.price_lines + self.qualifiers),
            "review_score": self.review_score,
            "rating_text": self.rating_text,
            "taxes_fees_text": self.taxes_text,
        }


def is_price_line(line: str) -> bool:
    return bool(PRICE_LINE_RE.search(line))


def is_title_like(line: str) -> bool:
    if not 3 <= len(line) <= 120 or is_price_line(line) or RATING_LINE_RE.search(line):
        return False
    letters = sum(1 for ch in line if ch.isalpha())
    visible = sum(1 for ch in line if not ch.isspace())
    if letters < 3 or letters * 2 < visible:
        return False
    lowered = line.lower()
    return not lowered.startswith(UI_PREFIXES) and not lowered.endswith(":")


def visible_lines(html: str, container: Optional[str] = None) -> List[str]:
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style", "noscript", "template", "svg"]):
        element.decompose()
    root = None
    if container:
        try:
            root = soup.select_one(container)
        except (SelectorSyntaxError, NotImplementedError):
            root = None
    text = (root or soup).get_text("\n")[:MAX_TEXT_CHARS]
    return [line for line in (clean_text(raw) for raw in text.split("\n")) if line]


def blocks_from_lines(lines: List[str]) -> List[_Block]:
    """Group each price line with the nearest preceding title-like line."""
    blocks: List[_Block] = []
    floor = 0
    for index, line in enumerate(lines):
        if not is_price_line(line):
            continue

        # First title-like line after the previous price is the name, the next one the location.
        titles = [i for i in range(max(floor, index - LOOKBACK_LINES), index) if is_title_like(lines[i])]
        title_index = titles[0] if titles else None

        current = blocks[-1] if blocks else None
        if current and (title_index is None or title_index == current.title_index) and index - current.last_index <= 2:
            current.price_lines.append(line)
            current.last_index = index
        elif title_index is not None and (current is None or title_index != current.title_index):
            block = _Block(title_index=title_index, name=lines[title_index], price_lines=[line], last_index=index)
            if len(titles) > 1:
                block.location = lines[titles[1]]
            for between in lines[title_index + 1:index]:
                match = RATING_LINE_RE.search(between)
                if match and block.review_score is None:
                    block.review_score = match.group("value")
                    block.rating_text = between
            blocks.append(block)
            current = block
        else:
            continue

        for ahead in lines[index + 1:index + 3]:
            if is_price_line(ahead) or (is_title_like(ahead) and detect_basis(ahead) is None):
                break
            if detect_basis(ahead) is not None and not re.search(r"\d", ahead):
                current.qualifiers.append(ahead)
            elif detect_taxes_included(ahead) is not None or re.search(r"\btax|steuer|fees?\b", ahead, re.I):
                current.taxes_text = ahead
        floor = index + 1
    return blocks


class HeuristicTextStrategy(ExtractionStrategy):
    name = StrategyName.HEURISTIC

    async def attempt(self, context: StrategyContext) -> AttemptResult:
        html = await context.binding.read_dom_snapshot(None)
        if not html:
            return []

        scroll_target = context.request.scroll_target
        container = scroll_target if scroll_target and scroll_target != "window" else None
        blocks = blocks_from_lines(visible_lines(html, container))
        context.source_detail = "text"
        context.notes.append(f"heuristic blocks={len(blocks)}")
        _log(context.logger, "info", f"🔎 Heuristic text pass found {len(blocks)} price-anchored blocks")
        return context.candidates(self.name, [block.row() for block in blocks])
