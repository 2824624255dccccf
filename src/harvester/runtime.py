from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, List, Optional, Set

from playwright.async_api import Browser, Error as PlaywrightError, Page, Request, Response, async_playwright

from .binding import CapturedResponse, NetworkActivity, PageBinding
from .config.production import BrowserConfig, CaptureConfig
from .reliability.errors import BindingUnavailable, ErrorContext, classify_binding_error

# Resource types that can carry result payloads.
RESULT_RESOURCE_TYPES = {"xhr", "fetch", "document", "other"}

MUTATION_COUNTER_JS = """
(selector) => {
  const store = window.__harvestMutations || (window.__harvestMutations = {});
  const find = () => { try { return document.querySelector(selector); } catch (e) { return null; } };
  const watch = (entry, target) => {
    entry.target = target;
    entry.observer.observe(target, { childList: true, subtree: true, characterData: true, attributes: true });
  };
  let entry = store[selector];
  if (!entry) {
    entry = { count: 0 };
    entry.observer = new MutationObserver((records) => { entry.count += records.length; });
    watch(entry, find() || document.body);
    store[selector] = entry;
    return 0;
  }
  if (entry.target === document.body || !entry.target.isConnected) {
    const container = find() || document.body;
    if (container !== entry.target) {
      entry.observer.disconnect();
      watch(entry, container);
      entry.count += 1;
    }
  }
  const count = entry.count;
  entry.count = 0;
  return count;
}
"""

ANIMATION_FRAME_JS = "() => new Promise((resolve) => requestAnimationFrame(() => resolve(true)))"

OUTER_HTML_JS = "(selector) => { const el = document.querySelector(selector); return el ? el.outerHTML : ''; }"

SCROLL_JS = """
(target) => {
  if (target === 'window') {
    window.scrollTo(0, document.documentElement.scrollHeight);
    return true;
  }
  const el = document.querySelector(target);
  if (!el) return false;
  el.scrollTop = el.scrollHeight;
  return true;
}
"""


class PlaywrightPageBinding(PageBinding):
    """Binding over the operator's Playwright ``Page``.

    Listeners are passive: they count result-relevant requests and, while a
    capture is open, read matching response bodies. Nothing here navigates.
    """

    def __init__(self, page: Page, *, capture: Optional[CaptureConfig] = None, logger: Optional[logging.Logger] = None):
        self.page = page
        self._capture_config = capture or CaptureConfig()
        self._logger = logger or logging.getLogger("harvester.runtime")
        self._relevant = re.compile(self._capture_config.result_url_pattern, re.I)
        self._pending: Set[Request] = set()
        self._last_activity_at: Optional[float] = None
        self._capture_pattern: Optional[re.Pattern] = None
        self._captured: List[CapturedResponse] = []
        self._reads: Set[asyncio.Task] = set()

        page.on("request", self._on_request)
        page.on("requestfinished", self._on_request_done)
        page.on("requestfailed", self._on_request_done)
        page.on("response", self._on_response)

    # ───────── listeners ─────────

    def _is_relevant(self, request: Request) -> bool:
        return request.resource_type in RESULT_RESOURCE_TYPES and bool(self._relevant.search(request.url))

    def _on_request(self, request: Request) -> None:
        if self._is_relevant(request):
            self._pending.add(request)
            self._last_activity_at = time.monotonic()

    def _on_request_done(self, request: Request) -> None:
        if request in self._pending:
            self._pending.discard(request)
            self._last_activity_at = time.monotonic()

    def _on_response(self, response: Response) -> None:
        if self._capture_pattern is None or not self._capture_pattern.search(response.url):
            return
        if len(self._captured) + len(self._reads) >= self._capture_config.max_responses:
            return
        task = asyncio.ensure_future(self._read_body(response))
        self._reads.add(task)
        task.add_done_callback(self._reads.discard)

    async def _read_body(self, response: Response) -> None:
        headers = response.headers
        declared = headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self._capture_config.max_body_bytes:
            self._logger.debug(f"Skipping oversized response {response.url} ({declared} bytes)")
            return
        try:
            body = await response.text()
        except PlaywrightError as e:
            # Redirects and evicted bodies have nothing to read.
            self._logger.debug(f"No body for {response.url}: {e}")
            return
        if len(body) > self._capture_config.max_body_bytes:
            return
        self._captured.append(CapturedResponse(
            url=response.url,
            status=response.status,
            content_type=headers.get("content-type"),
            body=body,
        ))

    # ───────── capabilities ─────────

    async def _guard(self, operation: str, coro, selector: Optional[str] = None) -> Any:
        try:
            return await coro
        except (PlaywrightError, OSError) as e:
            raise classify_binding_error(
                e, ErrorContext(url=self.page.url, selector=selector, parameters={"operation": operation})
            ) from e

    async def read_dom_snapshot(self, selector: Optional[str] = None) -> str:
        if selector is None:
            return await self._guard("read_dom_snapshot", self.page.content())
        return await self._guard("read_dom_snapshot", self.page.evaluate(OUTER_HTML_JS, selector), selector)

    async def observe_mutations(self, container_selector: str) -> int:
        count = await self._guard(
            "observe_mutations", self.page.evaluate(MUTATION_COUNTER_JS, container_selector), container_selector
        )
        return int(count or 0)

    async def network_activity(self) -> NetworkActivity:
        if self.page.is_closed():
            raise BindingUnavailable("Operator page is closed", context=ErrorContext(url=self.page.url))
        return NetworkActivity(pending=len(self._pending), last_activity_at=self._last_activity_at)

    async def start_network_capture(self, url_pattern: str) -> None:
        self._captured = []
        self._capture_pattern = re.compile(url_pattern, re.I)

    async def stop_network_capture(self) -> List[CapturedResponse]:
        self._capture_pattern = None
        if self._reads:
            await asyncio.gather(*list(self._reads), return_exceptions=True)
        captured, self._captured = self._captured, []
        return captured

    async def evaluate_in_page(self, expression: str, arg: Any = None) -> Any:
        if arg is None:
            return await self._guard("evaluate_in_page", self.page.evaluate(expression))
        return await self._guard("evaluate_in_page", self.page.evaluate(expression, arg))

    async def next_animation_frame(self) -> None:
        await self._guard("next_animation_frame", self.page.evaluate(ANIMATION_FRAME_JS))

    async def page_url(self) -> str:
        return self.page.url

    async def scroll_container(self, target: str) -> None:
        found = await self._guard("scroll_container", self.page.evaluate(SCROLL_JS, target), target)
        if not found:
            self._logger.warning(f"Scroll target {target!r} not found")

    async def click_element(self, selector: str) -> None:
        await self._guard("click_element", self.page.locator(selector).first.click(timeout=5000), selector)


class BrowserRuntime:
    """Attaches to the operator's browser over CDP and picks their page."""

    def __init__(self, *, browser_config: Optional[BrowserConfig] = None, capture: Optional[CaptureConfig] = None,
                 logger: Optional[logging.Logger] = None) -> None:
        self._config = browser_config or BrowserConfig()
        self._capture = capture or CaptureConfig()
        self._logger = logger or logging.getLogger("harvester.runtime")
        self._playwright = None
        self.browser: Optional[Browser] = None
        self._binding: Optional[PlaywrightPageBinding] = None

    async def start(self) -> None:
        self._logger.info(f"Attaching to operator browser at {self._config.cdp_url}…")
        self._playwright = await async_playwright().start()
        try:
            self.browser = await self._playwright.chromium.connect_over_cdp(
                self._config.cdp_url, timeout=self._config.connect_timeout_seconds * 1000
            )
        except PlaywrightError as e:
            await self.stop()
            raise BindingUnavailable(
                f"Cannot attach to browser at {self._config.cdp_url}: {e}",
                context=ErrorContext(url=self._config.cdp_url),
                cause=e,
            ) from e
        self._logger.info(f"✅ Attached ({len(self.browser.contexts)} contexts)")

    def _pick_page(self) -> Page:
        if self.browser is None or not self.browser.is_connected():
            raise BindingUnavailable("Browser is not connected", context=ErrorContext(url=self._config.cdp_url))
        pages = [page for context in self.browser.contexts for page in context.pages if not page.is_closed()]
        wanted = self._config.page_url_contains
        if wanted:
            pages = [page for page in pages if wanted in page.url]
        else:
            pages = [page for page in pages if not page.url.startswith(("about:", "chrome:", "devtools:"))]
        if not pages:
            raise BindingUnavailable("No operator page available", context=ErrorContext(url=self._config.cdp_url))
        return pages[-1]

    def binding(self) -> PlaywrightPageBinding:
        """Binding over the operator page, re-picked when the page changed or closed."""
        if self._binding is None or self._binding.page.is_closed():
            page = self._pick_page()
            self._binding = PlaywrightPageBinding(page, capture=self._capture, logger=self._logger)
            self._logger.info(f"Bound to operator page {page.url}")
        return self._binding

    @property
    def connected(self) -> bool:
        return self.browser is not None and self.browser.is_connected()

    async def stop(self) -> None:
        # Disconnects only; the operator's browser keeps running.
        self._logger.info("Detaching from operator browser…")
        self.browser = None
        self._binding = None
        if self._playwright:
            try:
                await self._playwright.stop()
            except PlaywrightError as e:
                self._logger.warning(f"Playwright shutdown error: {e}")
            self._playwright = None
