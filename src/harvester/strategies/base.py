"""
Base utilities and shared types for all extraction strategies.
"""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..binding import CapturedResponse, PageBinding
from ..config.production import HarvesterConfig
from ..models import ExtractionRequest, RawCandidate, Rejection, StrategyName

# Upper bound on rows a single strategy may emit in one pass.
MAX_ROWS = 5000


def _log(logger: logging.Logger, level: str, message: str):
    """Centralized logging utility for all strategies."""
    getattr(logger, level.lower())(message)


class _NotApplicable:
    """Sentinel: the strategy has nothing to look at on this page."""

    def __repr__(self) -> str:
        return "NOT_APPLICABLE"

    def __bool__(self) -> bool:
        return False


NOT_APPLICABLE = _NotApplicable()

AttemptResult = Union[List[RawCandidate], _NotApplicable]


@dataclass
class StrategyContext:
    """Everything a strategy may read during one chain pass."""
    binding: PageBinding
    request: ExtractionRequest
    config: HarvesterConfig
    page_url: str = ""
    page_type: str = "generic"
    captured: List[CapturedResponse] = field(default_factory=list)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("harvester.strategies"))
    notes: List[str] = field(default_factory=list)
    rejections: List[Rejection] = field(default_factory=list)
    source_detail: Optional[str] = None

    def candidates(self, strategy: StrategyName, rows: List[Dict[str, Any]]) -> List[RawCandidate]:
        return [RawCandidate(source_strategy=strategy, payload=row) for row in rows[:MAX_ROWS]]


class ExtractionStrategy(abc.ABC):
    """One interchangeable way of reading records off the page.

    ``attempt`` returns ``NOT_APPLICABLE`` when the page offers nothing this
    strategy can read, otherwise a (possibly empty) list of raw candidates.
    Strategies never scroll, click or navigate.
    """

    name: StrategyName

    @abc.abstractmethod
    async def attempt(self, context: StrategyContext) -> AttemptResult:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name.value}>"
