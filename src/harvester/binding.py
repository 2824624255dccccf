"""Capabilities the extraction core needs from a browser-automation binding.

The core never navigates. It reads, observes and, between pagination passes
only, scrolls or clicks a caller-designated control.
"""

from __future__ import annotations

import abc
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional


@dataclass
class CapturedResponse:
    """A response body recorded passively during the stability window."""
    url: str
    status: int
    content_type: Optional[str]
    body: str
    captured_at: float = field(default_factory=time.monotonic)


@dataclass
class NetworkActivity:
    """In-flight result-relevant requests and the last time one started or ended."""
    pending: int = 0
    last_activity_at: Optional[float] = None


class PageBinding(abc.ABC):
    """Abstract binding over the operator's already-loaded page."""

    @abc.abstractmethod
    async def read_dom_snapshot(self, selector: Optional[str] = None) -> str:
        """Outer HTML of the first element matching ``selector`` (document when None)."""

    @abc.abstractmethod
    async def observe_mutations(self, container_selector: str) -> int:
        """Mutation count in the container since the previous call (installs the observer on first call)."""

    @abc.abstractmethod
    async def network_activity(self) -> NetworkActivity:
        """Current result-relevant network activity."""

    @abc.abstractmethod
    async def start_network_capture(self, url_pattern: str) -> None:
        """Begin passively recording responses whose URL matches ``url_pattern``."""

    @abc.abstractmethod
    async def stop_network_capture(self) -> List[CapturedResponse]:
        """Stop recording and return what was captured."""

    @abc.abstractmethod
    async def evaluate_in_page(self, expression: str, arg: Any = None) -> Any:
        """Evaluate a JavaScript function expression in the page."""

    @abc.abstractmethod
    async def next_animation_frame(self) -> None:
        """Resolve after one requestAnimationFrame cycle."""

    @abc.abstractmethod
    async def page_url(self) -> str:
        ...

    @abc.abstractmethod
    async def scroll_container(self, target: str) -> None:
        """Scroll ``target`` (a selector, or ``window``) to its end."""

    @abc.abstractmethod
    async def click_element(self, selector: str) -> None:
        ...
