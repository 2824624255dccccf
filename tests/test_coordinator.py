"""Tests for the strategy chain coordinator."""

import json

import pytest

from conftest import FakeBinding, json_response
from harvester.coordinator import StrategyChain
from harvester.models import ExtractionRequest, RejectionReason, StrategyName
from harvester.reliability.errors import BindingUnavailable, classify_binding_error

CARDS_HTML = """
<div class="hotel-card" data-hotel-id="h1"><h3 class="hotel-name">Hotel Adlon</h3><span class="price">€310</span></div>
<div class="hotel-card" data-hotel-id="h2"><h3 class="hotel-name">Motel One</h3><span class="price">€89</span></div>
"""

NAMES_ONLY_HTML = """
<div class="hotel-card"><h3>Hotel Adlon</h3></div>
<div class="hotel-card"><h3>Motel One</h3></div>
<section id="list"><p>Pension Sonne</p><p>€75 per night</p></section>
"""


def make_chain(binding, config, metrics):
    return StrategyChain(binding, config=config, metrics=metrics, clock=binding.clock, sleep=binding.clock.sleep)


class TestStrategyChain:
    """One stability wait, then strategies in fixed order."""

    @pytest.mark.asyncio
    async def test_first_usable_strategy_wins(self, clock, config, metrics):
        body = json.dumps({"hotels": [{"id": "x1", "name": "Network Hotel", "price": "€120"}]})
        binding = FakeBinding(CARDS_HTML, clock=clock,
                              captured=[json_response("https://hotels.example.com/api/hotels", body)])
        result = await make_chain(binding, config, metrics).run(ExtractionRequest(session_id="s1"))
        assert result.strategy_used == StrategyName.NETWORK
        assert [r.name for r in result.records] == ["Network Hotel"]
        assert result.stability.stable is True
        assert binding.capture_pattern is None

    @pytest.mark.asyncio
    async def test_dom_cards_are_normalized(self, clock, config, metrics):
        binding = FakeBinding(CARDS_HTML, clock=clock)
        result = await make_chain(binding, config, metrics).run(ExtractionRequest(session_id="s1"), page_index=3)
        assert result.strategy_used == StrategyName.DOM
        assert result.source_detail == "dom=.hotel-card"
        adlon = result.records[0]
        assert adlon.id == "h1"
        assert adlon.price.amount_minor_units == 31000
        assert adlon.price.currency == "EUR"
        assert adlon.provenance.page_index == 3
        assert adlon.provenance.source_detail == "dom=.hotel-card"

    @pytest.mark.asyncio
    async def test_gated_out_strategy_advances_the_chain(self, clock, config, metrics):
        binding = FakeBinding(NAMES_ONLY_HTML, clock=clock)
        request = ExtractionRequest(session_id="s1", scroll_target="#list")
        result = await make_chain(binding, config, metrics).run(request)
        assert result.strategy_used == StrategyName.HEURISTIC
        assert [r.name for r in result.records] == ["Pension Sonne"]
        assert result.records[0].price.amount_minor_units == 7500
        reasons = [r.reason for r in result.rejections]
        assert reasons == [RejectionReason.MISSING_CORE_FIELDS] * 2

    @pytest.mark.asyncio
    async def test_nothing_found_is_an_empty_outcome(self, clock, config, metrics):
        binding = FakeBinding("<html><body><p>Please wait</p></body></html>", clock=clock)
        result = await make_chain(binding, config, metrics).run(ExtractionRequest(session_id="s1"))
        assert result.strategy_used == StrategyName.NONE
        assert result.records == []
        assert "no_strategy_succeeded" in result.notes

    @pytest.mark.asyncio
    async def test_unstable_page_still_extracts(self, clock, config, metrics):
        binding = FakeBinding(CARDS_HTML, clock=clock, mutations=[0] + [2] * 100)
        result = await make_chain(binding, config, metrics).run(ExtractionRequest(session_id="s1"))
        assert result.stability.timed_out is True
        assert "stability_uncertain=ceiling" in result.notes
        assert len(result.records) == 2
        assert metrics.registry.get_sample_value("harvest_stability_timeouts_total", {"kind": "ceiling"}) == 1.0

    @pytest.mark.asyncio
    async def test_page_hint_skips_classification(self, clock, config, metrics):
        binding = FakeBinding(CARDS_HTML, clock=clock, signals={"host": "www.booking.com"})
        result = await make_chain(binding, config, metrics).run(ExtractionRequest(session_id="s1", page_hint="VAX"))
        assert result.page_type == "vax"

    @pytest.mark.asyncio
    async def test_binding_failure_propagates(self, binding, config, metrics):
        binding.fail_with = BindingUnavailable("Target page has been closed")
        with pytest.raises(BindingUnavailable):
            await make_chain(binding, config, metrics).run(ExtractionRequest(session_id="s1"))

    @pytest.mark.asyncio
    async def test_metrics_record_the_winner(self, clock, config, metrics):
        binding = FakeBinding(CARDS_HTML, clock=clock)
        await make_chain(binding, config, metrics).run(ExtractionRequest(session_id="s1"))
        sample = metrics.registry.get_sample_value(
            "harvest_strategy_attempts_total", {"strategy": "dom", "result": "succeeded"}
        )
        assert sample == 1.0
        assert metrics.registry.get_sample_value(
            "harvest_strategy_attempts_total", {"strategy": "network", "result": "not_applicable"}
        ) == 1.0


def navigation_error():
    return classify_binding_error(Exception("Execution context was destroyed, most likely because of a navigation"))


class TestNonFatalBindingErrors:
    """Page errors short of a lost binding leave the pass uncertain, not failed."""

    @pytest.mark.asyncio
    async def test_stability_error_still_extracts(self, clock, config, metrics):
        binding = FakeBinding(CARDS_HTML, clock=clock)
        raised = []

        def on_tick():
            if not raised:
                raised.append(True)
                raise navigation_error()

        binding.on_tick = on_tick
        result = await make_chain(binding, config, metrics).run(ExtractionRequest(session_id="s1"))
        assert result.stability.stable is False
        assert "stability_uncertain=error" in result.notes
        assert result.strategy_used == StrategyName.DOM
        assert len(result.records) == 2
        assert metrics.registry.get_sample_value("harvest_stability_timeouts_total", {"kind": "error"}) == 1.0

    @pytest.mark.asyncio
    async def test_every_step_failing_is_an_empty_outcome(self, binding, config, metrics):
        binding.fail_with = navigation_error()
        result = await make_chain(binding, config, metrics).run(ExtractionRequest(session_id="s1"))
        assert result.strategy_used == StrategyName.NONE
        assert result.page_type == "generic"
        assert any(note.startswith("capture_failed") for note in result.notes)
        assert "stability_uncertain=error" in result.notes
        assert "no_strategy_succeeded" in result.notes

    @pytest.mark.asyncio
    async def test_malformed_scroll_target_falls_back_to_page_text(self, clock, config, metrics):
        binding = FakeBinding("<p>Pension Sonne</p><p>€75 per night</p>", clock=clock)
        request = ExtractionRequest(session_id="s1", scroll_target="div[[")
        result = await make_chain(binding, config, metrics).run(request)
        assert result.strategy_used == StrategyName.HEURISTIC
        assert [r.name for r in result.records] == ["Pension Sonne"]


class TestResultsContainer:
    """The stability wait watches the results list, not the whole body."""

    @pytest.mark.asyncio
    async def test_watches_card_parent_by_default(self, clock, config, metrics):
        binding = FakeBinding(CARDS_HTML, clock=clock)
        await make_chain(binding, config, metrics).run(ExtractionRequest(session_id="s1"))
        container = binding.observed[0]
        assert container.startswith(":has(> :is(")
        assert ".hotel-card" in container
        assert ".card," not in container

    @pytest.mark.asyncio
    async def test_override_and_scroll_target(self, clock, config, metrics):
        binding = FakeBinding(CARDS_HTML, clock=clock)
        chain = make_chain(binding, config, metrics)
        await chain.run(ExtractionRequest(session_id="s1", dom_selector_override="li.offer"))
        assert binding.observed[0] == ":has(> :is(li.offer))"

        binding.observed.clear()
        await chain.run(ExtractionRequest(session_id="s1", scroll_target="#results"))
        assert set(binding.observed) == {"#results"}

    @pytest.mark.asyncio
    async def test_site_pack_cards_lead(self, clock, config, metrics):
        binding = FakeBinding(CARDS_HTML, clock=clock)
        await make_chain(binding, config, metrics).run(ExtractionRequest(session_id="s1", page_hint="booking"))
        assert binding.observed[0].startswith(":has(> :is(div[data-testid='property-card'], ")
