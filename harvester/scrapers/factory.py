"""Factory for creating and managing strategy instances."""

import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Type

import structlog

from harvester.config import Settings
from harvester.core.exceptions import ConfigurationError
from harvester.scrapers.base import BaseStrategy
from harvester.scrapers.browser import BrowserProvider
from harvester.scrapers.strategies import STRATEGY_CLASSES
from harvester.scrapers.utils.fingerprint import FingerprintProvider
from harvester.scrapers.utils.rate_limiter import AdaptiveRateLimiter


logger = structlog.get_logger(__name__)


class StrategyFactory:
    """Factory for creating and configuring strategy instances.

    Provides dependency injection for the browser, rate limiter and
    fingerprint provider shared by every strategy of a run.
    """

    def __init__(
        self,
        browser: BrowserProvider,
        rate_limiter: AdaptiveRateLimiter,
        fingerprints: FingerprintProvider,
        navigation_timeout_ms: int = 30000,
        item_cap: int = 100,
        scroll_cycles: int = 3,
        human_delay: Sequence[float] = (1.0, 4.0),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        strategy_options: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        """Initialize the strategy factory.

        Args:
            browser: Browser provider shared by all strategies
            rate_limiter: Shared adaptive rate limiter
            fingerprints: Shared fingerprint provider
            strategy_options: Extra constructor arguments keyed by strategy name
        """
        self._shared: Dict[str, Any] = {
            "browser": browser,
            "rate_limiter": rate_limiter,
            "fingerprints": fingerprints,
            "navigation_timeout_ms": navigation_timeout_ms,
            "item_cap": item_cap,
            "scroll_cycles": scroll_cycles,
            "human_delay": tuple(human_delay),
            "sleep": sleep,
            "rng": rng,
        }
        self._options = strategy_options or {}

        # Registry of strategy classes, in registration order
        self._strategy_registry: Dict[str, Type[BaseStrategy]] = {}
        for strategy_class in STRATEGY_CLASSES:
            self.register_strategy(strategy_class)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        browser: BrowserProvider,
        rate_limiter: AdaptiveRateLimiter,
        fingerprints: FingerprintProvider,
        **overrides: Any,
    ) -> "StrategyFactory":
        """Build a factory configured from application settings."""
        kwargs: Dict[str, Any] = {
            "navigation_timeout_ms": settings.NAVIGATION_TIMEOUT_MS,
            "item_cap": settings.STRATEGY_ITEM_CAP,
            "scroll_cycles": settings.SCROLL_CYCLES,
            "human_delay": settings.get_human_delay_range(),
            "strategy_options": {
                "multi-vector": {"sitemap_detail_pages": settings.SITEMAP_DETAIL_PAGES},
                "hybrid": {
                    "min_viable_items": settings.HYBRID_MIN_VIABLE_ITEMS,
                    "sitemap_detail_pages": settings.SITEMAP_DETAIL_PAGES,
                },
            },
        }
        kwargs.update(overrides)
        return cls(browser, rate_limiter, fingerprints, **kwargs)

    def register_strategy(self, strategy_class: Type[BaseStrategy]) -> None:
        """Register a strategy class under its name.

        Args:
            strategy_class: Strategy class (must inherit from BaseStrategy)
        """
        if not issubclass(strategy_class, BaseStrategy):
            raise ValueError(f"Strategy class must inherit from BaseStrategy: {strategy_class}")
        if not strategy_class.name:
            raise ValueError(f"Strategy class has no name: {strategy_class}")

        self._strategy_registry[strategy_class.name] = strategy_class
        logger.debug("strategy_registered", strategy=strategy_class.name)

    def create_strategy(self, name: str) -> BaseStrategy:
        """Create and configure a strategy instance.

        Args:
            name: Registered strategy name (e.g., "standard")

        Returns:
            Configured strategy instance

        Raises:
            ConfigurationError: If no strategy is registered under that name
        """
        strategy_class = self._strategy_registry.get(name)
        if not strategy_class:
            raise ConfigurationError(
                f"Unknown strategy {name!r}; registered: {', '.join(self._strategy_registry)}"
            )

        return strategy_class(**self._shared, **self._options.get(name, {}))

    def create_strategies(self, names: Optional[Sequence[str]] = None) -> List[BaseStrategy]:
        """Create strategy instances in registration order.

        Args:
            names: Strategy names to create; None creates every registered one

        Returns:
            Strategy instances, ordered by registration
        """
        wanted = self.get_registered_strategies() if names is None else list(names)
        for name in wanted:
            if not self.has_strategy(name):
                raise ConfigurationError(f"Unknown strategy {name!r}")
        strategies = [self.create_strategy(name) for name in self.get_registered_strategies() if name in wanted]
        logger.info("strategies_created", strategies=[strategy.name for strategy in strategies])
        return strategies

    def get_registered_strategies(self) -> List[str]:
        """Get registered strategy names in registration order."""
        return list(self._strategy_registry.keys())

    def has_strategy(self, name: str) -> bool:
        """Check if a strategy is registered under a name."""
        return name in self._strategy_registry
