"""Site-hint selector packs and page classification.

A pack lists card selectors in priority order and, per canonical field, the
selectors tried inside each card. Site packs extend the generic pack: their
selectors come first, the generic ones stay as fallback.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..binding import PageBinding
from ..reliability.errors import BindingUnavailable, EnhancedError

logger = logging.getLogger(__name__)

PAGE_TYPES = ("vax", "wad", "navitrip_cp", "booking", "airbnb", "generic")


@dataclass
class SelectorPack:
    name: str
    cards: List[str]
    fields: Dict[str, List[str]] = field(default_factory=dict)
    rating_context: str = ""

    def extend(self, name: str, cards: List[str], fields: Dict[str, List[str]], rating_context: str = "") -> "SelectorPack":
        merged = {key: list(fields.get(key, [])) + list(selectors) for key, selectors in self.fields.items()}
        for key, selectors in fields.items():
            merged.setdefault(key, list(selectors))
        return SelectorPack(
            name=name,
            cards=list(cards) + [c for c in self.cards if c not in cards],
            fields=merged,
            rating_context=rating_context or self.rating_context,
        )


GENERIC_PACK = SelectorPack(
    name="generic",
    cards=[
        "[itemscope][itemtype*='Hotel']",
        "[itemscope][itemtype*='LodgingBusiness']",
        "[itemscope][itemtype*='Product']",
        ".hotel-card",
        "[data-result-id]",
        "[data-hotel-id]",
        "[data-property-id]",
        "tr.result-row",
        ".result-row",
        ".hotel-result",
        ".hotel",
        ".property",
        ".search-card",
        "[role='listitem']",
        "[role='article']",
        ".card",
    ],
    fields={
        "name": [
            "[itemprop='name']", ".hotel-name", ".property-name", "[data-testid*='title']",
            "[role='heading']", "h2", "h3", "h4", ".name", ".title",
        ],
        "price": [
            "[itemprop='price']", "[data-test='price']", "[data-testid*='price']", ".price",
            ".rate", "[class*='price']", "[class*='Price']",
        ],
        "address": [
            "[itemprop='address']", "[data-testid='address']", ".address", ".location",
            "[class*='address']", "[class*='location']",
        ],
        "review": [
            "[itemprop='ratingValue']", "[data-testid*='review-score']", ".review-score",
            ".guest-rating", ".score", ".rating",
        ],
        "stars": [".stars", ".star-rating", "[class*='stars']"],
        "brand": ["[itemprop='brand']", ".brand", ".chain"],
        "availability": [".availability", ".sold-out", "[data-availability]", "[class*='soldout']"],
        "cancel": ["[data-testid*='cancel']", ".cancellation", "[class*='cancel']", "[class*='refund']"],
        "taxes": ["[data-testid*='taxes']", ".taxes", "[class*='tax']", ".fees"],
        "link": ["a[href*='hotel']", "a[href*='property']", "a[href*='rooms']", "a[href]"],
    },
)

PACKS: Dict[str, SelectorPack] = {
    "generic": GENERIC_PACK,
    "booking": GENERIC_PACK.extend(
        "booking",
        cards=["div[data-testid='property-card']", "[data-testid='property-card']"],
        fields={
            "name": ["[data-testid='title']", "div[data-testid='title'] a", "a[data-testid='title-link']"],
            "price": ["[data-testid='price-and-discounted-price']", "[data-testid='price-display']"],
            "address": ["[data-testid='address']"],
            "review": ["[data-testid='review-score'] div[aria-label*='scored']",
                       "[data-testid='review-score'] div:first-child"],
            "taxes": ["[data-testid='taxes-and-charges']"],
            "link": ["a[data-testid='title-link']", "a[data-testid='property-card-desktop-single-image']"],
        },
        rating_context="/10",
    ),
    "airbnb": GENERIC_PACK.extend(
        "airbnb",
        cards=["[data-testid='card-container']", "[data-testid='listing-card']", "[itemprop='itemListElement']"],
        fields={
            "name": ["[data-testid='listing-card-title']", "[data-testid='listing-card-name']"],
            "price": ["[data-testid='price-availability-row']", "[data-testid='price-availability']"],
            "review": ["[data-testid='listing-card-rating']", "span[aria-label*='rating']"],
            "address": ["[data-testid='listing-card-subtitle']"],
            "link": ["a[href*='/rooms/']"],
        },
    ),
    "vax": GENERIC_PACK.extend(
        "vax",
        cards=[".hotel-card", ".hotel-result", "[data-hotel-id]", ".resultItem", ".result-item"],
        fields={
            "name": [".hotel-name", ".hotelName", ".product-name"],
            "price": [".price", ".total-price", ".pkg-price"],
            "stars": ["[data-stars]", ".hotel-rating"],
        },
    ),
    "wad": GENERIC_PACK.extend(
        "wad",
        cards=["[data-result-id]", ".search-card", ".hotel-card"],
        fields={
            "name": [".hotel-name", ".property-title"],
            "price": [".price", ".rate", ".amount"],
        },
    ),
    "navitrip_cp": GENERIC_PACK.extend(
        "navitrip_cp",
        cards=["tr.result-row", ".result-row", "table.results tr[id]", ".hotel"],
        fields={
            "name": [".hotel-name", "td.name", "a.hotelLink"],
            "price": [".price", "td.price", ".rate"],
            "address": [".address", "td.address"],
        },
    ),
}


def get_pack(page_type: Optional[str]) -> SelectorPack:
    return PACKS.get((page_type or "generic").lower(), GENERIC_PACK)


# Too broad to locate the results list by.
BROAD_CARDS = frozenset({"[role='listitem']", "[role='article']", ".card", ".hotel", ".property", ".search-card"})


def results_container(pack: SelectorPack, override: Optional[str] = None) -> str:
    """Selector for the parent of the first result card."""
    cards = [override] if override else [card for card in pack.cards if card not in BROAD_CARDS]
    return f":has(> :is({', '.join(cards)}))"


# ───────── page classification ─────────

CLASSIFY_SIGNALS_JS = """
() => {
  const heading = document.querySelector('h1,h2,[role=heading]');
  const sources = [...document.querySelectorAll('script[src],link[href]')].map(el => el.src || el.href);
  return {
    host: location.hostname.toLowerCase(),
    title: (document.title || '').toLowerCase(),
    heading: ((heading && heading.textContent) || '').toLowerCase(),
    sources: sources.join(' '),
    head: document.documentElement.innerHTML.slice(0, 20000),
  };
}
"""


def classify_page(signals: Dict[str, Any]) -> str:
    """Pick a page type from host, title, heading, script sources and markup head."""
    host = str(signals.get("host") or "").lower()
    text = f"{signals.get('title') or ''} {signals.get('heading') or ''}".lower()
    sources = str(signals.get("sources") or "")
    head = str(signals.get("head") or "")

    if re.search(r"worldagentdirect|delta", host) or re.search(r"\bwad\b|world agent", text):
        return "wad"
    if re.search(r"vacationaccess|vax", host) or re.search(r"bookingservices|algv|funjet|mlt", sources, re.I):
        return "vax"
    if re.search(r"navitrip|cpmaxx|cruiseplanners", host) or re.search(r"__viewstate|aspnetform", head, re.I):
        return "navitrip_cp"
    if re.search(r"(^|\.)booking\.com$", host):
        return "booking"
    if re.search(r"(^|\.)airbnb\.", host):
        return "airbnb"
    return "generic"


async def detect_page_type(binding: PageBinding, page_hint: Optional[str] = None) -> str:
    """Use the caller's hint when given, else classify from in-page signals."""
    if page_hint:
        hint = page_hint.lower()
        if hint not in PAGE_TYPES:
            logger.info(f"No selector pack for page hint '{hint}', generic selectors apply")
        return hint
    try:
        signals = await binding.evaluate_in_page(CLASSIFY_SIGNALS_JS)
    except BindingUnavailable:
        raise
    except EnhancedError as e:
        logger.warning(f"Page classification failed, assuming generic: {e.message}")
        return "generic"
    if not isinstance(signals, dict):
        return "generic"
    return classify_page(signals)
