"""Shared fixtures: a scriptable page binding and a fake clock."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from harvester.binding import CapturedResponse, NetworkActivity, PageBinding
from harvester.config.production import DeploymentEnvironment, HarvesterConfig, reset_config
from harvester.observability.metrics import HarvestMetrics
from harvester.strategies.hydration import COLLECT_STATE_JS
from harvester.strategies.selector_packs import CLASSIFY_SIGNALS_JS


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBinding(PageBinding):
    """In-memory page. Scripts are consumed one value per stability tick."""

    def __init__(
        self,
        html: str = "<html><body></body></html>",
        *,
        url: str = "https://hotels.example.com/search?q=berlin",
        clock: Optional[FakeClock] = None,
        mutations: Optional[List[int]] = None,
        pending: Optional[List[int]] = None,
        captured: Optional[List[CapturedResponse]] = None,
        hydration: Optional[Dict[str, Any]] = None,
        signals: Optional[Dict[str, Any]] = None,
    ):
        self.html = html
        self.url = url
        self.clock = clock or FakeClock()
        self.mutation_script = list(mutations or [])
        self.pending_script = list(pending or [])
        self.captured = list(captured or [])
        self.hydration = hydration
        self.signals = signals if signals is not None else {"host": "hotels.example.com"}
        self.last_activity_at: Optional[float] = None
        self.frames = 0
        self.clicks: List[str] = []
        self.scrolls: List[str] = []
        self.observed: List[str] = []
        self.capture_pattern: Optional[str] = None
        self.fail_with: Optional[BaseException] = None
        self.on_tick = None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def read_dom_snapshot(self, selector: Optional[str] = None) -> str:
        self._check()
        return self.html

    async def observe_mutations(self, container_selector: str) -> int:
        self._check()
        self.observed.append(container_selector)
        if self.on_tick is not None:
            self.on_tick()
        return self.mutation_script.pop(0) if self.mutation_script else 0

    async def network_activity(self) -> NetworkActivity:
        self._check()
        pending = self.pending_script.pop(0) if self.pending_script else 0
        if pending:
            self.last_activity_at = self.clock()
        return NetworkActivity(pending=pending, last_activity_at=self.last_activity_at)

    async def start_network_capture(self, url_pattern: str) -> None:
        self._check()
        self.capture_pattern = url_pattern

    async def stop_network_capture(self) -> List[CapturedResponse]:
        self.capture_pattern = None
        return list(self.captured)

    async def evaluate_in_page(self, expression: str, arg: Any = None) -> Any:
        self._check()
        if expression == COLLECT_STATE_JS:
            return self.hydration
        if expression == CLASSIFY_SIGNALS_JS:
            return self.signals
        return None

    async def next_animation_frame(self) -> None:
        self._check()
        self.frames += 1

    async def page_url(self) -> str:
        return self.url

    async def scroll_container(self, target: str) -> None:
        self._check()
        self.scrolls.append(target)

    async def click_element(self, selector: str) -> None:
        self._check()
        self.clicks.append(selector)


def json_response(url: str, body: str, content_type: str = "application/json", status: int = 200) -> CapturedResponse:
    return CapturedResponse(url=url, status=status, content_type=content_type, body=body)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def binding(clock: FakeClock) -> FakeBinding:
    return FakeBinding(clock=clock)


@pytest.fixture
def config(monkeypatch) -> HarvesterConfig:
    for key in ("HARVEST_MAX_PAGES", "HARVEST_MAX_RECORDS", "HARVEST_STABLE_TICKS", "LOG_ROOT"):
        monkeypatch.delenv(key, raising=False)
    reset_config()
    return HarvesterConfig(DeploymentEnvironment.DEVELOPMENT)


@pytest.fixture
def metrics() -> HarvestMetrics:
    return HarvestMetrics()
