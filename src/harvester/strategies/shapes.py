"""Shape validation for untyped JSON found in captures and hydration blobs.

Nothing here trusts the input. Every lookup returns a tagged result,
``ShapeMatch`` or ``ShapeMismatch``, and row mapping only copies values it
can read.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from ..normalizer import join_address

NAME_KEYS = ("name", "propertyName", "hotelName", "displayName", "title")
PRICE_KEYS = (
    "price", "prices", "rate", "rates", "lowestPrice", "displayPrice", "priceText",
    "totalPrice", "pricing", "priceBreakdown", "amount", "minPrice", "offers",
)

# Tried in order before any traversal.
KEY_PATHS = (
    "hotels",
    "properties",
    "results",
    "data.hotels",
    "data.properties",
    "data.results",
    "data.search.results",
    "props.pageProps.results",
    "props.pageProps.hotels",
    "search.results.hotels",
    "results.hotels",
    "searchResults",
    "listings",
    "items",
)

MAX_DEPTH = 8
MAX_NODES = 20000
SAMPLE_SIZE = 20


@dataclass
class ShapeMatch:
    rows: List[Dict[str, Any]]
    path: str


@dataclass
class ShapeMismatch:
    reason: str


ShapeResult = Union[ShapeMatch, ShapeMismatch]


def get_path(document: Any, path: str) -> Any:
    """Dotted-path lookup; None on any miss."""
    node = document
    for part in path.split("."):
        if isinstance(node, dict):
            node = node.get(part)
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return None
    return node


def looks_like_record(value: Any) -> bool:
    """An object with a name-like key and a price-like key."""
    if not isinstance(value, dict):
        return False
    has_name = any(isinstance(value.get(k), str) and value.get(k).strip() for k in NAME_KEYS)
    has_price = any(value.get(k) not in (None, "", [], {}) for k in PRICE_KEYS)
    return has_name and has_price


def validate_rows(value: Any, path: str) -> ShapeResult:
    """Accept a non-empty array whose sampled items are mostly record-like."""
    if not isinstance(value, list):
        return ShapeMismatch(f"{path}: not an array")
    rows = [item for item in value if isinstance(item, dict)]
    if not rows:
        return ShapeMismatch(f"{path}: no objects")
    sample = rows[:SAMPLE_SIZE]
    hits = sum(1 for row in sample if looks_like_record(row))
    if hits * 2 < len(sample):
        return ShapeMismatch(f"{path}: {hits}/{len(sample)} record-like")
    return ShapeMatch(rows=[row for row in rows if looks_like_record(row)], path=path)


def _normalized_cache_rows(value: Dict[str, Any]) -> List[Dict[str, Any]]:
    # Apollo-style caches keep entities as values keyed by "Type:id".
    return [v for v in value.values() if looks_like_record(v)]


def find_record_arrays(document: Any, key_paths: Iterable[str] = KEY_PATHS) -> ShapeResult:
    """Locate the record collection: known key paths first, then a bounded walk.

    The walk visits at most ``MAX_NODES`` nodes up to ``MAX_DEPTH`` deep and
    keeps the largest record-like array it sees.
    """
    if document is None:
        return ShapeMismatch("empty document")

    if isinstance(document, list):
        direct = validate_rows(document, "$")
        if isinstance(direct, ShapeMatch):
            return direct

    for path in key_paths:
        found = get_path(document, path)
        if found is None:
            continue
        result = validate_rows(found, path)
        if isinstance(result, ShapeMatch):
            return result

    best: Optional[ShapeMatch] = None
    visited = 0
    queue = deque([(document, "$", 0)])
    while queue and visited < MAX_NODES:
        node, path, depth = queue.popleft()
        visited += 1
        if isinstance(node, list):
            result = validate_rows(node, path)
            if isinstance(result, ShapeMatch):
                if best is None or len(result.rows) > len(best.rows):
                    best = result
                continue
            children = enumerate(node[:SAMPLE_SIZE])
        elif isinstance(node, dict):
            cached = _normalized_cache_rows(node)
            if len(cached) >= 2 and (best is None or len(cached) > len(best.rows)):
                best = ShapeMatch(rows=cached, path=path)
            children = node.items()
        else:
            continue
        if depth >= MAX_DEPTH:
            continue
        for key, child in children:
            if isinstance(child, (dict, list)):
                queue.append((child, f"{path}.{key}", depth + 1))

    if best is not None:
        return best
    return ShapeMismatch(f"no record-like array in {visited} nodes")


# ───────── row mapping ─────────

def _first(row: Dict[str, Any], *paths: str) -> Any:
    for path in paths:
        value = get_path(row, path)
        if value not in (None, "", [], {}):
            return value
    return None


def _scalar(value: Any) -> Any:
    return value if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _images(row: Dict[str, Any]) -> List[Any]:
    images: List[Any] = []
    for key in ("images", "media", "photos", "gallery"):
        value = row.get(key)
        if isinstance(value, list):
            images.extend(value)
    for key in ("image", "imageUrl", "photo", "thumbnail", "thumbnailUrl", "mainImage"):
        value = row.get(key)
        if isinstance(value, (str, dict)):
            images.append(value)
        elif isinstance(value, list):
            images.extend(value)
    return images


def map_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """Map a vendor row onto the canonical candidate keys."""
    address = row.get("address")
    if isinstance(address, dict):
        address = join_address(address)
    elif not isinstance(address, str):
        address = _scalar(_first(row, "location.address", "location.name", "city", "area"))

    rating = row.get("rating")
    stars = _first(row, "starRating", "stars", "hotelClass", "rating.stars", "category.stars")
    review = _first(row, "review.score", "reviewScore", "guestRating", "rating.score", "rating.value")
    if review is None and _scalar(rating) is not None:
        review = rating
    scale = _first(row, "review.scale", "review.outOf", "reviewScoreScale", "rating.scale", "rating.best")

    price_text = _first(
        row, "price.display", "price.formatted", "price.text", "lowestPrice.display",
        "rate.display", "displayPrice", "priceText", "totalPrice.formatted",
    )
    price_amount = _first(row, "price.amount", "price.value", "lowestPrice.amount", "rate.amount", "minPrice")
    if price_text is None and _scalar(row.get("price")) is not None:
        price_text = row.get("price")

    availability = _first(row, "available", "isAvailable", "availability")
    sold_out = row.get("soldOut")
    if availability is None and isinstance(sold_out, bool):
        availability = not sold_out

    refundable = _first(row, "cancellationPolicy.refundable", "refundable", "freeCancellation")
    slug = row.get("slug")

    return {
        "id": _scalar(_first(row, "id", "hotelId", "propertyId", "code", "slug")),
        "name": _scalar(_first(row, *NAME_KEYS)),
        "brand": _scalar(_first(row, "brand", "brand.name", "chain", "chain.name", "vendor")),
        "lat": _scalar(_first(row, "geo.lat", "geo.latitude", "latitude", "coordinates.lat", "location.lat")),
        "lon": _scalar(_first(row, "geo.lng", "geo.lon", "geo.longitude", "longitude",
                              "coordinates.lng", "coordinates.lon", "location.lng")),
        "address": address,
        "star_rating": _scalar(stars),
        "review_score": _scalar(review),
        "rating_text": f"/{scale}" if _scalar(scale) is not None else None,
        "price_text": _scalar(price_text),
        "price_amount": _scalar(price_amount),
        "currency": _scalar(_first(row, "price.currency", "price.currencyCode", "currency", "currencyCode")),
        "taxes_fees_text": _scalar(_first(row, "fees.display", "taxesAndFees", "price.taxesAndFees")),
        "cancel_text": _scalar(_first(row, "cancellationPolicy.short", "cancellation.summary",
                                      "refundability", "cancellationPolicy")),
        "refundable": refundable if isinstance(refundable, bool) else None,
        "availability": availability if isinstance(availability, (bool, str)) else None,
        "images": _images(row),
        "detail_url": _scalar(_first(row, "url", "canonicalUrl", "detailUrl", "link", "href"))
        or (f"/hotels/{slug}" if isinstance(slug, str) and slug else None),
    }
