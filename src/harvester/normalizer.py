"""Field normalization: raw page text to typed record values.

Every function here is pure and never raises on bad input. Anything that
cannot be parsed stays ``None`` with the raw text preserved, so a record can
always be re-normalized from its own raw strings.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import NormalizedRecord, Price, PriceBasis, Provenance, Rating, RawCandidate
from .utils import clean_text, resolve_url

# ───────── currency tables ─────────

# Longest markers first so "US$" wins over "$".
CURRENCY_MARKERS: List[Tuple[str, str]] = [
    ("US$", "USD"), ("CA$", "CAD"), ("AU$", "AUD"), ("NZ$", "NZD"), ("HK$", "HKD"),
    ("C$", "CAD"), ("A$", "AUD"), ("R$", "BRL"), ("S$", "SGD"),
    ("€", "EUR"), ("£", "GBP"), ("¥", "JPY"), ("₹", "INR"), ("₩", "KRW"),
    ("₺", "TRY"), ("₽", "RUB"), ("฿", "THB"), ("₪", "ILS"), ("$", "USD"),
]

ISO_CURRENCIES = {
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD", "INR", "AED", "SAR",
    "QAR", "MXN", "BRL", "SEK", "NOK", "DKK", "PLN", "CZK", "HUF", "TRY", "THB",
    "SGD", "HKD", "KRW", "ZAR", "CNY", "ILS", "RUB", "EGP", "MAD", "ISK",
}

ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "ISK", "CLP", "VND"}

_ISO_RE = re.compile(r"(?<![A-Za-z])(" + "|".join(sorted(ISO_CURRENCIES)) + r")(?![A-Za-z])")

# Grouped thousands ("1.234,56", "1 234", "1,234.56") first, then plain decimals.
_AMOUNT_RE = re.compile(
    r"(?P<grouped>\d{1,3}(?P<sep>[.,' ])\d{3}(?:(?P=sep)\d{3})*(?:[.,]\d{1,2})?)(?!\d)"
    r"|(?P<plain>\d+(?:[.,]\d{1,2})?)(?!\d)"
)

# Numbers that count something other than money.
_NON_PRICE_FOLLOWERS = re.compile(
    r"^\s*(?:nights?|nächte|nacht|nuits?|noches?|notti|adults?|erwachsene|guests?|gäste|"
    r"rooms?|zimmer|stars?|sterne|reviews?|bewertungen|%|km|mi|m\b|x\b)",
    re.IGNORECASE,
)

# ───────── multilingual qualifier lexicon ─────────

PER_NIGHT_PATTERNS = [
    r"per\s+night", r"/\s*(?:night|nt|nacht|nuit|noche|notte)\b", r"\ba\s+night\b",
    r"\bnightly\b", r"\bpro\s+nacht\b", r"\bje\s+nacht\b", r"\bpar\s+nuit\b",
    r"\bpor\s+noche\b", r"\bper\s+notte\b", r"\ba\s+notte\b",
]

PER_STAY_PATTERNS = [
    r"\btotal\b", r"\bper\s+stay\b", r"\bfor\s+\d+\s+nights?\b", r"\binsgesamt\b",
    r"\bgesamt(?:preis)?\b", r"\bfür\s+\d+\s+nächte\b", r"\bpour\s+\d+\s+nuits?\b",
    r"\bséjour\b", r"\bpor\s+\d+\s+noches\b", r"\bper\s+\d+\s+notti\b", r"\bestancia\b",
]

TAX_EXCLUDED_PATTERNS = [
    r"\bzzgl\.?\s*(?:steuern|mwst|gebühren)", r"\bexcl(?:\.|uding|udes)?\s+(?:taxes|tax|vat)",
    r"\+\s*(?:taxes|tax|fees)", r"\bplus\s+(?:taxes|tax)", r"\bbefore\s+tax(?:es)?",
    r"\btaxes\s+(?:and\s+fees\s+)?(?:not\s+included|extra)", r"\bhors\s+taxes\b",
    r"\bohne\s+steuern\b", r"\bimpuestos\s+no\s+incluidos\b", r"\btasse\s+escluse\b",
]

TAX_INCLUDED_PATTERNS = [
    r"\bincl(?:\.|uding|udes)?\s+(?:all\s+)?(?:taxes|tax|vat)", r"\btaxes\s+(?:and\s+fees\s+)?included",
    r"\binkl\.?\s*(?:steuern|mwst)", r"\bsteuern\s+inbegriffen\b", r"\btaxes\s+comprises\b",
    r"\bttc\b", r"\bimpuestos\s+incluidos\b", r"\btasse\s+incluse\b",
]


def _matches_any(patterns: Iterable[str], text: str) -> bool:
    return any(re.search(p, text, re.IGNORECASE) for p in patterns)


def detect_basis(text: str) -> Optional[PriceBasis]:
    """Per-night vs per-stay from qualifier words; None when absent or contradictory."""
    per_night = _matches_any(PER_NIGHT_PATTERNS, text)
    per_stay = _matches_any(PER_STAY_PATTERNS, text)
    if per_night and not per_stay:
        return PriceBasis.PER_NIGHT
    if per_stay and not per_night:
        return PriceBasis.PER_STAY
    return None


def detect_taxes_included(text: str) -> Optional[bool]:
    if _matches_any(TAX_EXCLUDED_PATTERNS, text):
        return False
    if _matches_any(TAX_INCLUDED_PATTERNS, text):
        return True
    return None


def _find_currencies(text: str) -> List[Tuple[int, int, str]]:
    """All currency markers as (start, end, code), symbols and ISO codes."""
    found: List[Tuple[int, int, str]] = []
    taken: set = set()
    for marker, code in CURRENCY_MARKERS:
        start = text.find(marker)
        while start != -1:
            span = range(start, start + len(marker))
            if not any(i in taken for i in span):
                found.append((start, start + len(marker), code))
                taken.update(span)
            start = text.find(marker, start + len(marker))
    for match in _ISO_RE.finditer(text):
        found.append((match.start(), match.end(), match.group(1)))
    for match in re.finditer(r"\bFr\.", text):
        found.append((match.start(), match.end(), "CHF"))
    return sorted(found)


def _parse_amount(match: "re.Match[str]") -> Optional[Decimal]:
    try:
        if match.group("grouped"):
            token = match.group("grouped")
            decimal_seps = {",", "."} - {match.group("sep")}
            head, dec = token, ""
            if len(token) > 3 and token[-3] in decimal_seps:
                head, dec = token[:-3], token[-2:]
            elif len(token) > 2 and token[-2] in decimal_seps:
                head, dec = token[:-2], token[-1:]
            digits = re.sub(r"\D", "", head)
            return Decimal(f"{digits}.{dec}" if dec else digits)
        token = match.group("plain").replace(",", ".")
        return Decimal(token)
    except InvalidOperation:
        return None


def to_minor_units(amount: Decimal, currency: Optional[str]) -> int:
    exponent = 0 if currency in ZERO_DECIMAL_CURRENCIES else 2
    return int((amount * (10 ** exponent)).to_integral_value(rounding=ROUND_HALF_UP))


def normalize_price(raw: Any, currency_hint: Optional[str] = None) -> Price:
    """Parse a price into integer minor units, currency, basis and tax flag.

    Several distinct competing amounts (strike-through prices, ranges) set
    ``ambiguous`` and leave the amount empty rather than picking one.
    """
    hint = (currency_hint or "").strip().upper() or None
    if hint not in ISO_CURRENCIES:
        hint = None

    if raw is None or isinstance(raw, bool):
        return Price()

    if isinstance(raw, (int, float, Decimal)):
        try:
            amount = Decimal(str(raw))
        except InvalidOperation:
            return Price(raw=str(raw))
        if not amount.is_finite() or amount < 0:
            return Price(raw=str(raw))
        minor = to_minor_units(amount, hint)
        # raw carries the currency so the text path reproduces this price
        exponent = 0 if hint in ZERO_DECIMAL_CURRENCIES else 2
        text = f"{Decimal(minor).scaleb(-exponent):.{exponent}f}"
        return Price(amount_minor_units=minor, currency=hint, raw=f"{text} {hint}" if hint else text)

    text = clean_text(raw)
    if not text:
        return Price()

    currencies = _find_currencies(text)
    codes = {code for _, _, code in currencies}
    if len(codes) == 1:
        currency = next(iter(codes))
    elif not codes:
        currency = hint
    else:
        currency = hint if hint in codes else None

    adjacent: List[Decimal] = []
    loose: List[Decimal] = []
    for match in _AMOUNT_RE.finditer(text):
        amount = _parse_amount(match)
        if amount is None:
            continue
        near_currency = any(
            0 <= match.start() - end <= 2 or 0 <= start - match.end() <= 2
            for start, end, _ in currencies
        )
        if near_currency:
            adjacent.append(amount)
        elif not _NON_PRICE_FOLLOWERS.match(text[match.end():]):
            loose.append(amount)

    amounts = adjacent or loose
    distinct = sorted(set(amounts))
    basis = detect_basis(text)
    taxes = detect_taxes_included(text)

    if len(codes) > 1 or len(distinct) > 1:
        return Price(currency=currency, basis=basis, taxes_included=taxes, raw=text, ambiguous=True)
    if not distinct:
        return Price(currency=currency, basis=basis, taxes_included=taxes, raw=text)

    return Price(
        amount_minor_units=to_minor_units(distinct[0], currency),
        currency=currency,
        basis=basis,
        taxes_included=taxes,
        raw=text,
    )


# ───────── rating ─────────

_RATING_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)?")
_SCALE_10_RE = re.compile(r"/\s*10(?!\d)|\bout\s+of\s+10\b|\bvon\s+10\b|\bsur\s+10\b|\bde\s+10\b|\bsu\s+10\b", re.I)
_SCALE_5_RE = re.compile(r"/\s*5(?!\d)|\bout\s+of\s+5\b|\bvon\s+5\b|\bsur\s+5\b|\bstars?\b|\bsterne\b|étoiles|[★⭐]", re.I)
_SCALE_100_RE = re.compile(r"/\s*100(?!\d)|%")
_FILLED_GLYPHS = "★⭐"


def normalize_rating(value: Any, context: str = "") -> Rating:
    """Detect the rating scale and project the value onto 0-5."""
    if value is None or isinstance(value, bool):
        value_text = ""
    elif isinstance(value, (int, float, Decimal)):
        value_text = str(value)
    else:
        value_text = clean_text(value) or ""

    context = clean_text(context) or ""
    text = f"{value_text} {context}".strip() if context and context not in value_text else value_text
    if not text:
        return Rating()

    raw: Optional[float] = None
    number = _RATING_NUMBER_RE.search(value_text or text)
    glyphs = sum(text.count(g) for g in _FILLED_GLYPHS)
    if number:
        try:
            raw = float(number.group().replace(",", "."))
        except ValueError:
            raw = None
    elif glyphs:
        raw = float(glyphs)

    if raw is None:
        return Rating(text=text)

    if _SCALE_10_RE.search(text):
        scale = 10
    elif _SCALE_5_RE.search(text):
        scale = 5
    elif _SCALE_100_RE.search(text):
        scale = 100
    elif raw <= 5:
        scale = 5
    elif raw <= 10:
        scale = 10
    elif raw <= 100:
        scale = 100
    else:
        return Rating(raw=raw, text=text)

    if raw < 0 or raw > scale:
        return Rating(raw=raw, scale=scale, text=text)

    return Rating(raw=raw, scale=scale, normalized=round(raw / scale * 5, 2), text=text)


# ───────── media ─────────

_SRCSET_SPLIT_RE = re.compile(r",\s+|,(?=https?:|/)")
_BACKGROUND_RE = re.compile(r"url\(\s*['\"]?([^'\")]+)['\"]?\s*\)", re.I)


def _parse_srcset(srcset: str) -> List[Tuple[str, Optional[int]]]:
    entries = []
    for part in _SRCSET_SPLIT_RE.split(srcset.strip()):
        bits = part.strip().split()
        if not bits:
            continue
        width = None
        if len(bits) > 1 and bits[1].lower().endswith("w"):
            try:
                width = int(float(bits[1][:-1]))
            except ValueError:
                width = None
        entries.append((bits[0], width))
    return entries


def _best_from_source(source: Any, base_url: Optional[str], max_width: int) -> Optional[str]:
    if isinstance(source, str):
        return resolve_url(source, base_url)
    if not isinstance(source, dict):
        return None

    sized: List[Tuple[str, int]] = []
    for key in ("srcset", "data-srcset", "data_srcset"):
        if source.get(key):
            for url, width in _parse_srcset(str(source[key])):
                resolved = resolve_url(url, base_url)
                if resolved and width:
                    sized.append((resolved, width))
    if sized:
        under = [item for item in sized if item[1] <= max_width]
        if under:
            return max(under, key=lambda item: item[1])[0]
        return min(sized, key=lambda item: item[1])[0]

    plain: List[str] = []
    for key in ("data-src", "data_src", "data-lazy-src", "src", "url"):
        if source.get(key):
            plain.append(str(source[key]))
    for key in ("style", "background", "background-image"):
        if source.get(key):
            plain.extend(_BACKGROUND_RE.findall(str(source[key])))
    for url in plain:
        resolved = resolve_url(url, base_url)
        if resolved:
            return resolved
    return None


def pick_media(sources: Any, base_url: Optional[str] = None, max_width: int = 1600, limit: int = 10) -> List[str]:
    """Largest-under-ceiling image per source, http(s) only, de-duplicated."""
    if sources is None:
        return []
    if isinstance(sources, (str, dict)):
        sources = [sources]
    media: List[str] = []
    for source in sources:
        url = _best_from_source(source, base_url, max_width)
        if url and url not in media:
            media.append(url)
        if len(media) >= limit:
            break
    return media


# ───────── text folding and record mapping ─────────

STOP_WORDS = {
    "the", "a", "an", "and", "of", "at", "by", "in", "on", "&",
    "der", "die", "das", "und", "le", "la", "les", "de", "du", "des", "el", "los", "y",
}


def fold_text(value: Optional[str]) -> str:
    """Lowercase, strip accents and punctuation, drop stop words, collapse spaces."""
    if not value:
        return ""
    folded = unicodedata.normalize("NFKD", str(value))
    folded = folded.encode("ascii", "ignore").decode("ascii").lower()
    folded = re.sub(r"[^\w\s]", " ", folded)
    return " ".join(word for word in folded.split() if word not in STOP_WORDS)


def join_address(address: Any) -> Optional[str]:
    """Flatten structured addresses into one comma-separated line."""
    if isinstance(address, dict):
        keys = ("full", "streetAddress", "line1", "line2", "city", "addressLocality",
                "region", "addressRegion", "postalCode", "country", "addressCountry")
        parts: List[str] = []
        for key in keys:
            part = address.get(key)
            if isinstance(part, dict):
                part = part.get("name")
            part = clean_text(part)
            if part and part not in parts:
                parts.append(part)
        return ", ".join(parts) or None
    return clean_text(address)


_AVAILABLE_WORDS = re.compile(r"\b(?:available|in stock|book now|verfügbar|disponible|disponibile)\b", re.I)
_UNAVAILABLE_WORDS = re.compile(
    r"\b(?:sold out|unavailable|not available|no availability|ausgebucht|nicht verfügbar|complet|agotado|esaurito)\b",
    re.I,
)


def parse_availability(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = clean_text(value)
    if not text:
        return None
    if _UNAVAILABLE_WORDS.search(text):
        return False
    if _AVAILABLE_WORDS.search(text):
        return True
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        number = re.search(r"-?\d+(?:\.\d+)?", str(value))
        return float(number.group()) if number else None


def fingerprint_id(name: Optional[str], location: Optional[str]) -> str:
    key = f"{fold_text(name)}|{fold_text(location)}"
    return "fp-" + hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]


def normalize_record(
    candidate: RawCandidate,
    page_index: int,
    base_url: Optional[str] = None,
    max_image_width: int = 1600,
    max_images: int = 10,
    source_detail: Optional[str] = None,
) -> NormalizedRecord:
    """Map one raw candidate onto the canonical record."""
    payload: Dict[str, Any] = candidate.payload or {}

    name = clean_text(payload.get("name"))
    location = join_address(payload.get("address"))
    raw_id = payload.get("id")
    external_id = clean_text(raw_id) if raw_id not in (None, "", False) else None

    price_source = payload.get("price_text")
    if price_source in (None, ""):
        price_source = payload.get("price_amount")
    price = normalize_price(price_source, currency_hint=payload.get("currency"))
    taxes_text = clean_text(payload.get("taxes_fees_text"))
    if price.taxes_included is None and taxes_text:
        taxes = detect_taxes_included(taxes_text)
        if taxes is None and re.search(r"\d", taxes_text):
            taxes = False
        price = price.model_copy(update={"taxes_included": taxes})

    rating = normalize_rating(payload.get("review_score"), context=payload.get("rating_text") or "")
    stars_value = payload.get("star_rating")
    stars = normalize_rating(stars_value, context="stars") if stars_value not in (None, "") else None

    refundable = payload.get("refundable")
    return NormalizedRecord(
        id=external_id or fingerprint_id(name, location),
        external_id=external_id,
        name=name,
        location=location,
        rating=rating,
        stars=stars,
        price=price,
        media=pick_media(payload.get("images"), base_url, max_image_width, max_images),
        availability=parse_availability(payload.get("availability")),
        brand=clean_text(payload.get("brand")),
        lat=_to_float(payload.get("lat")),
        lon=_to_float(payload.get("lon")),
        detail_url=resolve_url(clean_text(payload.get("detail_url")), base_url),
        cancellation=clean_text(payload.get("cancel_text")),
        refundable=refundable if isinstance(refundable, bool) else None,
        provenance=Provenance(
            strategy=candidate.source_strategy,
            page_index=page_index,
            source_detail=source_detail,
        ),
    )
