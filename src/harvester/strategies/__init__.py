# Extraction strategies, tried strictly in registration order
from typing import Dict, List, Type

from ..models import StrategyName
from .base import NOT_APPLICABLE, ExtractionStrategy, StrategyContext
from .dom import SemanticDomStrategy
from .heuristic import HeuristicTextStrategy
from .hydration import HydrationStateStrategy
from .network import NetworkCaptureStrategy
from .selector_packs import classify_page, detect_page_type, get_pack, results_container


# Strategy registry system
class StrategyRegistry:
    def __init__(self) -> None:
        self._strategies: Dict[StrategyName, Type[ExtractionStrategy]] = {}

    def register(self, name: StrategyName):
        def deco(cls):
            cls.name = name
            self._strategies[name] = cls
            return cls
        return deco

    def default_chain(self) -> List[ExtractionStrategy]:
        """Fresh instances in priority order."""
        return [cls() for cls in self._strategies.values()]

    @property
    def strategies(self) -> Dict[StrategyName, Type[ExtractionStrategy]]:
        return self._strategies


_registry = StrategyRegistry()

# Registration order is chain priority
_registry.register(StrategyName.NETWORK)(NetworkCaptureStrategy)
_registry.register(StrategyName.HYDRATION)(HydrationStateStrategy)
_registry.register(StrategyName.DOM)(SemanticDomStrategy)
_registry.register(StrategyName.HEURISTIC)(HeuristicTextStrategy)

# Exports for the coordinator
strategy_registry = _registry


def default_chain() -> List[ExtractionStrategy]:
    return _registry.default_chain()


__all__ = [
    "ExtractionStrategy",
    "StrategyContext",
    "NOT_APPLICABLE",
    "NetworkCaptureStrategy",
    "HydrationStateStrategy",
    "SemanticDomStrategy",
    "HeuristicTextStrategy",
    "strategy_registry",
    "default_chain",
    "classify_page",
    "detect_page_type",
    "get_pack",
    "results_container",
]
