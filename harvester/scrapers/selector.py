"""Heuristic strategy ranking per target."""

from datetime import datetime
from typing import Collection, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from harvester.core.exceptions import ConfigurationError
from harvester.models.outcome import StrategyOutcome
from harvester.schemas.target import Target
from harvester.scrapers.base import BaseStrategy

logger = structlog.get_logger(__name__)

BASE_SCORE = 50.0
HISTORY_WEIGHT = 30.0
SESSION_FAILURE_PENALTY = 20.0
BUSINESS_HOURS_PENALTY = 10.0


class StrategySelector:
    """Orders strategies for a target from history, bonuses and time of day.

    score = 50
          + min(30, 30 * recent success rate)
          + target bonus for the strategy
          - 20 if the strategy already failed on the target this session
          - 10 if the strategy is intrusive and it is business hours at the target

    Ties keep registration order. A selector pinned to one strategy always
    returns just that strategy.
    """

    def __init__(
        self,
        strategies: Sequence[BaseStrategy],
        fixed_strategy: Optional[str] = None,
        history_window: int = 20,
        business_hours: Tuple[int, int] = (9, 17),
    ):
        """Initialize the selector.

        Args:
            strategies: Candidate strategies in registration order
            fixed_strategy: Pin every selection to this strategy name
            history_window: Number of recent outcomes used for the success rate
            business_hours: First and last business hour, both inclusive

        Raises:
            ConfigurationError: If the pinned strategy is not among the candidates
        """
        if not strategies:
            raise ConfigurationError("At least one strategy is required")
        self.strategies = list(strategies)
        self.history_window = history_window
        self.business_hours = business_hours
        self.fixed_strategy = None
        if fixed_strategy is not None:
            matches = [strategy for strategy in self.strategies if strategy.name == fixed_strategy]
            if not matches:
                raise ConfigurationError(f"Unknown strategy {fixed_strategy!r}")
            self.fixed_strategy = matches[0]

    def success_rate(self, strategy: str, target: str, history: Sequence[StrategyOutcome]) -> float:
        """Success rate over the most recent outcomes of a strategy on a target; 0 without history."""
        relevant = [outcome for outcome in history if outcome.strategy == strategy and outcome.target == target]
        recent = relevant[-self.history_window:]
        if not recent:
            return 0.0
        return sum(1 for outcome in recent if outcome.success) / len(recent)

    def is_business_hours(self, target: Target, now: Optional[datetime] = None) -> bool:
        """Whether ``now`` falls in business hours at the target's local time.

        Aware datetimes are converted to the target's timezone; naive ones
        are taken as already local.
        """
        try:
            zone = ZoneInfo(target.timezone_id)
        except ZoneInfoNotFoundError:
            zone = None
        if now is None:
            now = datetime.now(zone) if zone else datetime.now()
        elif now.tzinfo is not None and zone is not None:
            now = now.astimezone(zone)
        start, end = self.business_hours
        return start <= now.hour <= end

    def score(
        self,
        strategy: BaseStrategy,
        target: Target,
        history: Sequence[StrategyOutcome],
        session_failures: Collection[str],
        business_hours: bool,
    ) -> float:
        rate = self.success_rate(strategy.name, target.id, history)
        value = BASE_SCORE + min(HISTORY_WEIGHT, HISTORY_WEIGHT * rate)
        value += target.strategy_bonuses.get(strategy.name, 0.0)
        if strategy.name in session_failures:
            value -= SESSION_FAILURE_PENALTY
        if strategy.intrusive and business_hours:
            value -= BUSINESS_HOURS_PENALTY
        return value

    def select(
        self,
        target: Target,
        history: Sequence[StrategyOutcome],
        session_failures: Collection[str] = (),
        now: Optional[datetime] = None,
    ) -> List[BaseStrategy]:
        """Rank strategies for a target, best first.

        Args:
            target: Target about to be attempted
            history: Outcome history (any targets; filtered here)
            session_failures: Names of strategies that failed on this target this session
            now: Current time, for the business-hours penalty

        Returns:
            Strategies ordered by descending score
        """
        if self.fixed_strategy is not None:
            return [self.fixed_strategy]

        business_hours = self.is_business_hours(target, now)
        scored = [
            (self.score(strategy, target, history, session_failures, business_hours), index, strategy)
            for index, strategy in enumerate(self.strategies)
        ]
        # Stable on index: equal scores keep registration order
        scored.sort(key=lambda entry: (-entry[0], entry[1]))
        logger.debug(
            "strategies_ranked",
            target=target.id,
            ranking=[(strategy.name, round(value, 1)) for value, _, strategy in scored],
            business_hours=business_hours,
        )
        return [strategy for _, _, strategy in scored]
