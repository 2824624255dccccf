"""Tests for the four extraction strategies and their shared helpers."""

import json

import pytest

from conftest import FakeBinding, json_response
from harvester.models import ExtractionRequest, RejectionReason, StrategyName
from harvester.strategies import (
    NOT_APPLICABLE, HeuristicTextStrategy, HydrationStateStrategy, NetworkCaptureStrategy,
    SemanticDomStrategy, StrategyContext, classify_page, default_chain,
)
from harvester.strategies.heuristic import blocks_from_lines, visible_lines
from harvester.strategies.shapes import ShapeMatch, ShapeMismatch, find_record_arrays, map_row

HOTELS_JSON = json.dumps({
    "data": {
        "search": {
            "results": [
                {"hotelId": "B1", "name": "Hotel Adlon", "price": {"display": "€310", "currency": "EUR"},
                 "address": {"line1": "Unter den Linden 77", "city": "Berlin"}, "reviewScore": 9.1},
                {"hotelId": "B2", "name": "Motel One", "price": {"display": "€89", "currency": "EUR"}},
            ]
        }
    }
})

CARDS_HTML = """
<html><body>
  <div class="hotel-card" data-hotel-id="h1">
    <h3 class="hotel-name">Hotel Adlon</h3>
    <span class="address">Unter den Linden 77, Berlin</span>
    <span class="price">€310</span>
    <img srcset="/a-400.jpg 400w, /a-1200.jpg 1200w">
    <a href="/hotel/adlon">Details</a>
  </div>
  <div class="hotel-card" data-hotel-id="h2">
    <h3 class="hotel-name">Motel One</h3>
    <span class="price">€89</span>
    <span data-stars="3"></span>
  </div>
</body></html>
"""


def make_context(binding, config, **request_fields):
    request = ExtractionRequest(session_id="s1", **request_fields)
    return StrategyContext(binding=binding, request=request, config=config, page_url=binding.url)


class TestShapes:
    """Tagged shape results over untyped JSON."""

    def test_known_key_path(self):
        shape = find_record_arrays(json.loads(HOTELS_JSON))
        assert isinstance(shape, ShapeMatch)
        assert shape.path == "data.search.results"
        assert len(shape.rows) == 2

    def test_bounded_traversal_finds_nested_array(self):
        document = {"page": {"modules": [{"payload": {"cards": [
            {"title": "Casa Azul", "rate": 120}, {"title": "Casa Roja", "rate": 95},
        ]}}]}}
        shape = find_record_arrays(document)
        assert isinstance(shape, ShapeMatch)
        assert [row["title"] for row in shape.rows] == ["Casa Azul", "Casa Roja"]

    def test_apollo_style_cache(self):
        document = {"Hotel:1": {"name": "A", "price": 1}, "Hotel:2": {"name": "B", "price": 2}, "ROOT_QUERY": {}}
        shape = find_record_arrays(document)
        assert isinstance(shape, ShapeMatch)
        assert len(shape.rows) == 2

    def test_mismatch_on_unrelated_json(self):
        assert isinstance(find_record_arrays({"user": {"name": "x"}, "flags": [1, 2]}), ShapeMismatch)
        assert isinstance(find_record_arrays(None), ShapeMismatch)

    def test_map_row_aliases(self):
        row = map_row({
            "propertyId": 7, "propertyName": "Villa", "chain": "Indie",
            "geo": {"lat": 52.5, "lng": 13.4}, "starRating": 4,
            "lowestPrice": {"display": "$120"}, "cancellationPolicy": {"short": "Free cancellation", "refundable": True},
            "images": [{"url": "https://cdn.example.com/v.jpg"}], "slug": "villa",
        })
        assert row["id"] == 7
        assert row["name"] == "Villa"
        assert row["brand"] == "Indie"
        assert (row["lat"], row["lon"]) == (52.5, 13.4)
        assert row["star_rating"] == 4
        assert row["price_text"] == "$120"
        assert row["cancel_text"] == "Free cancellation"
        assert row["refundable"] is True
        assert row["detail_url"] == "/hotels/villa"


class TestNetworkCapture:
    """Result API responses recorded during the stability window."""

    @pytest.mark.asyncio
    async def test_reads_records_from_capture(self, config):
        binding = FakeBinding(captured=[json_response("https://hotels.example.com/api/search", HOTELS_JSON)])
        context = make_context(binding, config)
        context.captured = binding.captured
        candidates = await NetworkCaptureStrategy().attempt(context)
        assert [c.payload["name"] for c in candidates] == ["Hotel Adlon", "Motel One"]
        assert all(c.source_strategy == StrategyName.NETWORK for c in candidates)
        assert context.source_detail == "xhr=https://hotels.example.com/api/search"

    @pytest.mark.asyncio
    async def test_not_applicable_without_relevant_responses(self, config):
        binding = FakeBinding(captured=[json_response("https://cdn.example.com/fonts.css", "{}", "text/css")])
        context = make_context(binding, config)
        context.captured = binding.captured
        assert await NetworkCaptureStrategy().attempt(context) is NOT_APPLICABLE

    @pytest.mark.asyncio
    async def test_malformed_body_is_counted_and_skipped(self, config):
        binding = FakeBinding(captured=[
            json_response("https://hotels.example.com/api/results", "{not json"),
            json_response("https://hotels.example.com/api/search", HOTELS_JSON),
        ])
        context = make_context(binding, config)
        context.captured = binding.captured
        candidates = await NetworkCaptureStrategy().attempt(context)
        assert len(candidates) == 2
        assert [r.reason for r in context.rejections] == [RejectionReason.MALFORMED_CAPTURE]


class TestHydrationState:
    """Framework globals and inline JSON blobs."""

    @pytest.mark.asyncio
    async def test_reads_framework_global(self, config):
        state = {"globals": {"__NEXT_DATA__": {"props": {"pageProps": {"results": [
            {"id": "n1", "name": "Hotel Zoo", "price": "€140"},
        ]}}}}, "inline": []}
        context = make_context(FakeBinding(hydration=state), config)
        candidates = await HydrationStateStrategy().attempt(context)
        assert candidates[0].payload["name"] == "Hotel Zoo"
        assert context.source_detail == "hydrationKey=__NEXT_DATA__"

    @pytest.mark.asyncio
    async def test_inline_json_blob(self, config):
        blob = json.dumps({"hotels": [{"name": "Inline Inn", "rate": {"display": "£70"}}]})
        state = {"globals": {}, "inline": [{"id": None, "text": "{broken"}, {"id": "state", "text": blob}]}
        context = make_context(FakeBinding(hydration=state), config)
        candidates = await HydrationStateStrategy().attempt(context)
        assert candidates[0].payload["price_text"] == "£70"

    @pytest.mark.asyncio
    async def test_not_applicable_without_state(self, config):
        context = make_context(FakeBinding(hydration={"globals": {}, "inline": []}), config)
        assert await HydrationStateStrategy().attempt(context) is NOT_APPLICABLE

    @pytest.mark.asyncio
    async def test_mismatched_state_yields_empty(self, config):
        state = {"globals": {"__INITIAL_STATE__": {"user": {"name": "x"}}}, "inline": []}
        context = make_context(FakeBinding(hydration=state), config)
        assert await HydrationStateStrategy().attempt(context) == []


class TestSemanticDom:
    """JSON-LD, microdata and selector packs."""

    @pytest.mark.asyncio
    async def test_generic_cards(self, config):
        context = make_context(FakeBinding(CARDS_HTML), config)
        candidates = await SemanticDomStrategy().attempt(context)
        first, second = (c.payload for c in candidates)
        assert first["id"] == "h1"
        assert first["name"] == "Hotel Adlon"
        assert first["price_text"] == "€310"
        assert first["address"] == "Unter den Linden 77, Berlin"
        assert first["detail_url"] == "/hotel/adlon"
        assert first["images"] == [{"srcset": "/a-400.jpg 400w, /a-1200.jpg 1200w"}]
        assert second["star_rating"] == "3"
        assert context.source_detail == "dom=.hotel-card"

    @pytest.mark.asyncio
    async def test_selector_override(self, config):
        html = "<div class='x'><b class='name'>Only Me</b><i class='price'>$50</i></div>" + CARDS_HTML
        context = make_context(FakeBinding(html), config, dom_selector_override="div.x")
        candidates = await SemanticDomStrategy().attempt(context)
        assert [c.payload["name"] for c in candidates] == ["Only Me"]

    @pytest.mark.asyncio
    async def test_jsonld_item_list(self, config):
        jsonld = {"@context": "https://schema.org", "@type": "ItemList", "itemListElement": [
            {"@type": "ListItem", "item": {"@type": "Hotel", "name": "LD One",
                                            "offers": {"price": "99", "priceCurrency": "EUR"},
                                            "aggregateRating": {"ratingValue": 8.8, "bestRating": 10}}},
            {"@type": "ListItem", "item": {"@type": "Hotel", "name": "LD Two",
                                            "offers": {"price": "120", "priceCurrency": "EUR"}}},
        ]}
        html = f"<html><head><script type='application/ld+json'>{json.dumps(jsonld)}</script></head><body></body></html>"
        context = make_context(FakeBinding(html), config)
        candidates = await SemanticDomStrategy().attempt(context)
        assert [c.payload["name"] for c in candidates] == ["LD One", "LD Two"]
        assert candidates[0].payload["rating_text"] == "/10"
        assert context.source_detail == "jsonld"

    @pytest.mark.asyncio
    async def test_offerless_jsonld_yields_to_priced_cards(self, config):
        jsonld = {"@context": "https://schema.org", "@type": "ItemList", "itemListElement": [
            {"@type": "ListItem", "item": {"@type": "Hotel", "name": "Hotel Adlon"}},
            {"@type": "ListItem", "item": {"@type": "Hotel", "name": "Motel One"}},
        ]}
        html = f"<script type='application/ld+json'>{json.dumps(jsonld)}</script>{CARDS_HTML}"
        context = make_context(FakeBinding(html), config)
        candidates = await SemanticDomStrategy().attempt(context)
        assert candidates[0].payload["id"] == "h1"
        assert candidates[0].payload["price_text"] == "€310"
        assert context.source_detail == "dom=.hotel-card"

    @pytest.mark.asyncio
    async def test_booking_pack(self, config):
        html = """
        <div data-testid="property-card">
          <div data-testid="title">Hotel Beispiel</div>
          <span data-testid="price-and-discounted-price">€ 150</span>
          <div data-testid="review-score"><div>8.6</div><div>Fabulous</div></div>
        </div>"""
        context = make_context(FakeBinding(html), config)
        context.page_type = "booking"
        candidates = await SemanticDomStrategy().attempt(context)
        payload = candidates[0].payload
        assert payload["name"] == "Hotel Beispiel"
        assert payload["review_score"] == "8.6"
        assert payload["rating_text"] == "/10"

    @pytest.mark.asyncio
    async def test_not_applicable_on_empty_page(self, config):
        context = make_context(FakeBinding("<html><body><p>Nothing here</p></body></html>"), config)
        assert await SemanticDomStrategy().attempt(context) is NOT_APPLICABLE


class TestHeuristicText:
    """Price lines anchor blocks; the first title-like line names them."""

    def test_blocks_from_lines(self):
        lines = [
            "Sort by: price", "Hotel Beispiel", "Berlin Mitte", "8.6/10 Fabulous",
            "ab €150 pro Nacht zzgl. Steuern",
            "Motel One", "€89", "per night",
        ]
        blocks = blocks_from_lines(lines)
        assert [b.name for b in blocks] == ["Hotel Beispiel", "Motel One"]
        assert blocks[0].location == "Berlin Mitte"
        assert blocks[0].review_score == "8.6"
        assert blocks[1].row()["price_text"] == "€89 per night"

    def test_malformed_container_reads_whole_page(self):
        html = "<div id='list'><p>Motel One</p></div><p>€89</p>"
        assert visible_lines(html, "div[[") == ["Motel One", "€89"]
        assert visible_lines(html, "#list") == ["Motel One"]

    @pytest.mark.asyncio
    async def test_always_applicable(self, config):
        context = make_context(FakeBinding("<html><body><p>No prices</p></body></html>"), config)
        assert await HeuristicTextStrategy().attempt(context) == []


class TestRegistryAndClassifier:
    """Chain order and page classification."""

    def test_default_chain_order(self):
        assert [s.name for s in default_chain()] == [
            StrategyName.NETWORK, StrategyName.HYDRATION, StrategyName.DOM, StrategyName.HEURISTIC,
        ]

    @pytest.mark.parametrize("signals,expected", [
        ({"host": "www.vacationaccess.com"}, "vax"),
        ({"host": "x.example.com", "sources": "https://cdn/bookingservices/app.js"}, "vax"),
        ({"host": "www.worldagentdirect.com"}, "wad"),
        ({"host": "portal.cpmaxx.com"}, "navitrip_cp"),
        ({"host": "agent.example.com", "head": "<input name='__VIEWSTATE'>"}, "navitrip_cp"),
        ({"host": "www.booking.com"}, "booking"),
        ({"host": "www.airbnb.de"}, "airbnb"),
        ({"host": "hotels.example.com"}, "generic"),
    ])
    def test_classify_page(self, signals, expected):
        assert classify_page(signals) == expected
