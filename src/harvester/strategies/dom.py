"""Semantic-DOM strategy: JSON-LD, microdata and selector-pack cards."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, List, Optional

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from ..models import StrategyName
from ..utils import clean_text
from .base import NOT_APPLICABLE, AttemptResult, ExtractionStrategy, StrategyContext, _log
from .selector_packs import SelectorPack, get_pack

LODGING_TYPES = {
    "hotel", "lodgingbusiness", "resort", "motel", "hostel", "bedandbreakfast",
    "vacationrental", "accommodation", "apartment", "house", "hotelroom", "product", "campground",
}

ID_ATTRIBUTES = ("data-hotel-id", "data-result-id", "data-property-id", "data-listing-id", "data-id")
IMAGE_ATTRIBUTES = ("src", "srcset", "data-src", "data-srcset", "data-lazy-src", "style")


# ───────── JSON-LD ─────────

def _jsonld_nodes(document: Any) -> Iterator[Dict[str, Any]]:
    """Flatten arrays, @graph containers and ItemList elements."""
    if isinstance(document, list):
        for item in document:
            yield from _jsonld_nodes(item)
        return
    if not isinstance(document, dict):
        return
    if "@graph" in document:
        yield from _jsonld_nodes(document["@graph"])
    elements = document.get("itemListElement")
    if isinstance(elements, list):
        for element in elements:
            if isinstance(element, dict) and isinstance(element.get("item"), dict):
                yield from _jsonld_nodes(element["item"])
            else:
                yield from _jsonld_nodes(element)
    yield document


def _jsonld_type(node: Dict[str, Any]) -> List[str]:
    types = node.get("@type")
    if isinstance(types, str):
        types = [types]
    return [str(t).lower() for t in types or []]


def _first_offer(offers: Any) -> Dict[str, Any]:
    if isinstance(offers, list):
        offers = offers[0] if offers else {}
    return offers if isinstance(offers, dict) else {}


def map_jsonld(node: Dict[str, Any]) -> Dict[str, Any]:
    offer = _first_offer(node.get("offers"))
    aggregate = node.get("aggregateRating") if isinstance(node.get("aggregateRating"), dict) else {}
    star = node.get("starRating")
    if isinstance(star, dict):
        star = star.get("ratingValue")
    geo = node.get("geo") if isinstance(node.get("geo"), dict) else {}
    brand = node.get("brand")
    if isinstance(brand, dict):
        brand = brand.get("name")
    best = aggregate.get("bestRating")

    return {
        "id": node.get("identifier") if isinstance(node.get("identifier"), (str, int)) else node.get("@id"),
        "name": node.get("name"),
        "brand": brand,
        "address": node.get("address"),
        "lat": geo.get("latitude"),
        "lon": geo.get("longitude"),
        "star_rating": star,
        "review_score": aggregate.get("ratingValue"),
        "rating_text": f"/{best}" if best not in (None, "") else None,
        "price_text": offer.get("price") if offer.get("price") not in (None, "") else node.get("priceRange"),
        "currency": offer.get("priceCurrency"),
        "availability": _jsonld_availability(offer.get("availability")),
        "images": node.get("image") if isinstance(node.get("image"), list) else [node.get("image")] if node.get("image") else [],
        "detail_url": node.get("url"),
    }


def _jsonld_availability(value: Any) -> Optional[bool]:
    if not isinstance(value, str):
        return None
    value = value.rsplit("/", 1)[-1].lower()
    if value in ("instock", "limitedavailability", "onlineonly", "presale"):
        return True
    if value in ("outofstock", "soldout", "discontinued"):
        return False
    return None


def extract_jsonld(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for script in soup.select("script[type='application/ld+json']"):
        try:
            document = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        for node in _jsonld_nodes(document):
            if LODGING_TYPES.intersection(_jsonld_type(node)) and node.get("name"):
                rows.append(map_jsonld(node))
    return rows


# ───────── cards ─────────

def _value(element: Optional[Tag]) -> Optional[str]:
    if element is None:
        return None
    content = element.get("content")
    if isinstance(content, str) and content.strip():
        return clean_text(content)
    return clean_text(element.get_text(" ", strip=True))


def _select_field(card: Tag, selectors: List[str]) -> Optional[str]:
    for selector in selectors:
        value = _value(card.select_one(selector))
        if value:
            return value
    return None


def _stars(card: Tag, pack: SelectorPack) -> Optional[str]:
    marked = card.select_one("[data-stars]")
    if marked is not None:
        return str(marked.get("data-stars"))
    labelled = card.select_one("[aria-label*='star' i]")
    if labelled is not None:
        return str(labelled.get("aria-label"))
    value = _select_field(card, pack.fields.get("stars", []))
    if value:
        return value
    glyphs = card.get_text().count("★")
    return "★" * glyphs if glyphs else None


def _card_id(card: Tag) -> Optional[str]:
    for attribute in ID_ATTRIBUTES:
        if card.get(attribute):
            return str(card.get(attribute))
    inner = card.select_one("[data-id]")
    return str(inner.get("data-id")) if inner is not None else None


def _images(card: Tag) -> List[Dict[str, str]]:
    images = []
    for element in card.select("img, picture source, [style*='background']"):
        attrs = {key: str(element.get(key)) for key in IMAGE_ATTRIBUTES if element.get(key)}
        if attrs:
            images.append(attrs)
    return images


def card_to_row(card: Tag, pack: SelectorPack) -> Dict[str, Any]:
    fields = pack.fields
    link = None
    for selector in fields.get("link", []):
        anchor = card.select_one(selector)
        if anchor is not None and anchor.get("href"):
            link = str(anchor.get("href"))
            break
    if link is None and card.name == "a" and card.get("href"):
        link = str(card.get("href"))

    return {
        "id": _card_id(card),
        "name": _select_field(card, fields.get("name", [])),
        "brand": _select_field(card, fields.get("brand", [])),
        "address": _select_field(card, fields.get("address", [])),
        "star_rating": _stars(card, pack),
        "review_score": _select_field(card, fields.get("review", [])),
        "rating_text": pack.rating_context or None,
        "price_text": _select_field(card, fields.get("price", [])),
        "taxes_fees_text": _select_field(card, fields.get("taxes", [])),
        "cancel_text": _select_field(card, fields.get("cancel", [])),
        "availability": _select_field(card, fields.get("availability", [])),
        "images": _images(card),
        "detail_url": link,
    }


def _has_core_fields(row: Dict[str, Any]) -> bool:
    """Name plus a price, availability flag or site id."""
    if not row.get("name"):
        return False
    priced = any(ch.isdigit() for ch in str(row.get("price_text") or ""))
    return priced or row.get("availability") is not None or bool(row.get("id"))


def _outermost(cards: List[Tag]) -> List[Tag]:
    # Drop cards nested inside another matched card.
    ids = {id(card) for card in cards}
    return [card for card in cards if not any(id(parent) in ids for parent in card.parents)]


def extract_cards(soup: BeautifulSoup, pack: SelectorPack, override: Optional[str] = None) -> tuple:
    """Return (selector, rows) for the first card selector yielding named rows."""
    selectors = [override] if override else pack.cards
    for selector in selectors:
        try:
            cards = soup.select(selector)
        except (SelectorSyntaxError, NotImplementedError):
            continue
        cards = _outermost(cards)
        rows = [card_to_row(card, pack) for card in cards]
        if any(row.get("name") for row in rows):
            return selector, rows
    return None, []


class SemanticDomStrategy(ExtractionStrategy):
    name = StrategyName.DOM

    async def attempt(self, context: StrategyContext) -> AttemptResult:
        html = await context.binding.read_dom_snapshot(None)
        if not html or not html.strip():
            return NOT_APPLICABLE

        soup = BeautifulSoup(html, "html.parser")
        pack = get_pack(context.page_type)
        override = context.request.dom_selector_override

        jsonld_rows = [] if override else extract_jsonld(soup)
        selector, card_rows = extract_cards(soup, pack, override)

        if not jsonld_rows and not card_rows:
            return NOT_APPLICABLE

        jsonld_usable = sum(1 for row in jsonld_rows if _has_core_fields(row))
        card_usable = sum(1 for row in card_rows if _has_core_fields(row))
        if not card_rows or (jsonld_usable and jsonld_usable >= card_usable):
            context.source_detail = "jsonld"
            context.notes.append(f"jsonld items={len(jsonld_rows)}")
            _log(context.logger, "info", f"🔖 {len(jsonld_rows)} JSON-LD items")
            return context.candidates(self.name, jsonld_rows)

        context.source_detail = f"dom={selector}"
        context.notes.append(f"dom={selector} pack={pack.name} cards={len(card_rows)}")
        _log(context.logger, "info", f"🧩 {len(card_rows)} cards via {selector!r} ({pack.name} pack)")
        return context.candidates(self.name, card_rows)
