"""Tests for price, rating, media and record normalization."""

import pytest

from harvester.models import PriceBasis, RawCandidate, StrategyName
from harvester.normalizer import (
    fold_text, join_address, normalize_price, normalize_rating, normalize_record, parse_availability, pick_media,
)


class TestNormalizePrice:
    """Currency, separators, basis and tax qualifiers."""

    def test_german_per_night_excluding_taxes(self):
        price = normalize_price("ab €150 pro Nacht zzgl. Steuern")
        assert price.amount_minor_units == 15000
        assert price.currency == "EUR"
        assert price.basis == PriceBasis.PER_NIGHT
        assert price.taxes_included is False
        assert price.ambiguous is False
        assert price.raw == "ab €150 pro Nacht zzgl. Steuern"

    @pytest.mark.parametrize("raw,minor,currency", [
        ("1.234,56 €", 123456, "EUR"),
        ("US$1,234.56", 123456, "USD"),
        ("CHF 1 234", 123400, "CHF"),
        ("¥12,000", 12000, "JPY"),
        ("£89.99", 8999, "GBP"),
        ("₹4,500", 450000, "INR"),
    ])
    def test_locale_separators_and_currency_exponent(self, raw, minor, currency):
        price = normalize_price(raw)
        assert price.amount_minor_units == minor
        assert price.currency == currency
        assert isinstance(price.amount_minor_units, int)

    def test_per_stay_including_taxes(self):
        price = normalize_price("$620 total for 4 nights, includes taxes")
        assert price.amount_minor_units == 62000
        assert price.basis == PriceBasis.PER_STAY
        assert price.taxes_included is True

    def test_competing_amounts_are_ambiguous(self):
        price = normalize_price("€200 €150")
        assert price.ambiguous is True
        assert price.amount_minor_units is None
        assert price.currency == "EUR"
        assert price.raw == "€200 €150"

    def test_currency_hint_applies_to_bare_numbers(self):
        assert normalize_price(149.5, currency_hint="eur").amount_minor_units == 14950
        assert normalize_price("149", currency_hint="EUR").currency == "EUR"

    def test_unparseable_keeps_raw(self):
        price = normalize_price("Preis auf Anfrage")
        assert price.amount_minor_units is None
        assert price.raw == "Preis auf Anfrage"

    def test_night_counts_are_not_amounts(self):
        price = normalize_price("2 nights, €310")
        assert price.amount_minor_units == 31000

    def test_idempotent_on_raw(self):
        first = normalize_price("ab €150 pro Nacht zzgl. Steuern")
        assert normalize_price(first.raw) == first


class TestNormalizeRating:
    """Scale detection and projection onto 0-5."""

    def test_ten_point_scale(self):
        rating = normalize_rating("8.6", context="/10")
        assert rating.raw == 8.6
        assert rating.scale == 10
        assert rating.normalized == 4.3

    @pytest.mark.parametrize("value,context,scale,normalized", [
        ("4.5", "out of 5", 5, 4.5),
        ("92%", "", 100, 4.6),
        ("9,2", "von 10", 10, 4.6),
        ("★★★★", "", 5, 4.0),
        ("4", "stars", 5, 4.0),
        (7.8, "", 10, 3.9),
    ])
    def test_scale_variants(self, value, context, scale, normalized):
        rating = normalize_rating(value, context=context)
        assert rating.scale == scale
        assert rating.normalized == normalized

    def test_out_of_range_is_not_normalized(self):
        rating = normalize_rating("12", context="/10")
        assert rating.normalized is None
        assert rating.raw == 12.0

    def test_missing_value(self):
        assert normalize_rating(None).normalized is None

    def test_idempotent_on_text(self):
        first = normalize_rating("8.6", context="/10")
        assert normalize_rating(first.text) == first


class TestPickMedia:
    """Largest width under the ceiling, http(s) only."""

    def test_srcset_picks_largest_under_ceiling(self):
        source = {"srcset": "/img/a-800.jpg 800w, /img/a-1600.jpg 1600w, /img/a-2400.jpg 2400w"}
        media = pick_media([source], base_url="https://hotels.example.com/search")
        assert media == ["https://hotels.example.com/img/a-1600.jpg"]

    def test_rejects_data_and_blob_urls(self):
        media = pick_media(["data:image/png;base64,AAAA", "blob:https://x/y", "//cdn.example.com/p.jpg"])
        assert media == ["https://cdn.example.com/p.jpg"]

    def test_background_image_and_dedup(self):
        sources = [
            {"style": "background-image: url('https://cdn.example.com/a.jpg')"},
            {"data-src": "https://cdn.example.com/a.jpg"},
        ]
        assert pick_media(sources) == ["https://cdn.example.com/a.jpg"]


class TestRecordMapping:
    """Candidate payload to NormalizedRecord."""

    def test_full_row(self):
        candidate = RawCandidate(source_strategy=StrategyName.NETWORK, payload={
            "id": "H-1",
            "name": "  Hotel   Beispiel ",
            "address": {"line1": "Hauptstraße 1", "city": "Berlin", "country": "DE"},
            "price_text": "€150 pro Nacht",
            "taxes_fees_text": "+ €12 taxes and fees",
            "review_score": 8.6,
            "rating_text": "/10",
            "star_rating": 4,
            "images": [{"url": "/p/1.jpg"}],
            "detail_url": "/hotels/beispiel",
            "refundable": True,
        })
        record = normalize_record(candidate, page_index=2, base_url="https://hotels.example.com/search")
        assert record.id == "H-1"
        assert record.name == "Hotel Beispiel"
        assert record.location == "Hauptstraße 1, Berlin, DE"
        assert record.price.amount_minor_units == 15000
        assert record.price.taxes_included is False
        assert record.rating.normalized == 4.3
        assert record.stars.normalized == 4.0
        assert record.media == ["https://hotels.example.com/p/1.jpg"]
        assert record.detail_url == "https://hotels.example.com/hotels/beispiel"
        assert record.refundable is True
        assert record.provenance.strategy == StrategyName.NETWORK
        assert record.provenance.page_index == 2

    def test_fingerprint_id_without_site_id(self):
        candidate = RawCandidate(source_strategy=StrategyName.DOM, payload={"name": "Hotel Beispiel"})
        record = normalize_record(candidate, page_index=0)
        assert record.external_id is None
        assert record.id.startswith("fp-")

    def test_helpers(self):
        assert fold_text("The Grand Hôtel & Spa!") == "grand hotel spa"
        assert join_address({"city": "Berlin", "addressCountry": {"name": "DE"}}) == "Berlin, DE"
        assert parse_availability("Sold out") is False
        assert parse_availability("Available") is True
        assert parse_availability(None) is None

    @pytest.mark.parametrize("amount,currency,raw,minor", [
        (150, "EUR", "150.00 EUR", 15000),
        (89.5, "usd", "89.50 USD", 8950),
        (12000, "JPY", "12000 JPY", 12000),
        (150, None, "150.00", 15000),
    ])
    def test_split_amount_and_currency_survive_renormalizing(self, amount, currency, raw, minor):
        candidate = RawCandidate(source_strategy=StrategyName.NETWORK, payload={
            "name": "Hotel Beispiel", "price_amount": amount, "currency": currency,
        })
        price = normalize_record(candidate, page_index=0).price
        assert price.raw == raw
        assert price.amount_minor_units == minor
        assert normalize_price(price.raw) == price
