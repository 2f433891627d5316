"""Strategy attempt outcomes."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from harvester.core.exceptions import (
    BlockedError,
    ExtractionError,
    HarvesterError,
    NavigationError,
    NavigationTimeoutError,
)


class ErrorKind(str, Enum):
    NAVIGATION = "navigation"
    BLOCKED = "blocked"
    EXTRACTION = "extraction"
    TIMEOUT = "timeout"


@dataclass
class StrategyOutcome:
    """Result of one strategy attempt against one target."""

    target: str
    strategy: str
    started_at: datetime
    duration_ms: float
    success: bool
    item_count: int = 0
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    response_ms: Optional[float] = None  # Mean navigation latency of the attempt

    def __post_init__(self):
        """Validate data after initialization."""
        if self.success and self.error_kind is not None:
            raise ValueError("a successful outcome cannot carry an error_kind")
        if not self.success and self.error_kind is None:
            raise ValueError("a failed outcome requires an error_kind")

    def raise_for_error(self) -> None:
        """Raise the exception matching a failed outcome.

        The raised exception carries this outcome as ``exc.outcome`` so that
        callers wrapping the attempt (the circuit breaker) can still report it.

        Raises:
            NavigationError, NavigationTimeoutError, BlockedError, ExtractionError
        """
        if self.success:
            return
        message = self.error_message or self.error_kind.value
        exc: HarvesterError
        if self.error_kind == ErrorKind.BLOCKED:
            exc = BlockedError(self.target, message)
        elif self.error_kind == ErrorKind.TIMEOUT:
            exc = NavigationTimeoutError(self.target, message)
        elif self.error_kind == ErrorKind.NAVIGATION:
            exc = NavigationError(self.target, message)
        else:
            exc = ExtractionError(self.target, self.strategy, message)
        exc.outcome = self
        raise exc

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "strategy": self.strategy,
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.duration_ms,
            "success": self.success,
            "item_count": self.item_count,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
            "response_ms": self.response_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StrategyOutcome":
        return cls(
            target=data["target"],
            strategy=data["strategy"],
            started_at=datetime.fromisoformat(data["started_at"]),
            duration_ms=data["duration_ms"],
            success=data["success"],
            item_count=data.get("item_count", 0),
            error_kind=ErrorKind(data["error_kind"]) if data.get("error_kind") else None,
            error_message=data.get("error_message"),
            response_ms=data.get("response_ms"),
        )
