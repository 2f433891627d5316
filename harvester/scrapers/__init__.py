"""Extraction strategies, their selection and the harvest orchestrator."""

from .base import AttemptContext, BaseStrategy, ProgressCallback
from .browser import BrowserProvider, BrowserSession, ExtractedElement, PageResponse, detect_block
from .factory import StrategyFactory
from .selector import StrategySelector

__all__ = [
    "AttemptContext",
    "BaseStrategy",
    "ProgressCallback",
    "BrowserProvider",
    "BrowserSession",
    "ExtractedElement",
    "PageResponse",
    "detect_block",
    "StrategyFactory",
    "StrategySelector",
]
