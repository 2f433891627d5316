"""Pydantic schemas for the run report.

The report is a derived, read-only aggregate over the outcome history and
the canonical items of a session. An interim copy is written after every
target so external watchers can poll it.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TargetStats(BaseModel):
    """Per-target outcome counts."""

    target: str
    status: str = "pending"
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    failures_by_kind: Dict[str, int] = Field(default_factory=dict)
    items: int = Field(0, description="Canonical items held for the target")
    completed_categories: List[str] = Field(default_factory=list)
    last_error: Optional[str] = None


class CategoryStats(BaseModel):
    """Canonical items per category."""

    category: str
    items: int = 0
    targets: List[str] = Field(default_factory=list)


class StrategyStats(BaseModel):
    """Per-strategy outcome counts."""

    strategy: str
    attempts: int = 0
    successes: int = 0
    items: int = Field(0, description="Raw items returned by successful attempts")
    success_rate: float = 0.0
    avg_duration_ms: float = 0.0


class QualitySummary(BaseModel):
    """Quality of the canonical items and pipeline rejections."""

    average_score: float = 0.0
    min_score: Optional[int] = None
    max_score: Optional[int] = None
    score_distribution: Dict[str, int] = Field(default_factory=dict)
    with_price: int = 0
    with_image: int = 0
    processed: int = 0
    accepted: int = 0
    duplicates: int = 0
    rejected: Dict[str, int] = Field(default_factory=dict)


class PerformanceSummary(BaseModel):
    """Timing of the run."""

    duration_seconds: float = 0.0
    attempts: int = 0
    avg_attempt_ms: float = 0.0
    avg_response_ms: Optional[float] = None
    items_per_minute: float = 0.0


class RunSummary(BaseModel):
    """Headline numbers of the run."""

    session_id: str
    started_at: datetime
    finished_at: datetime
    strategy: str
    targets: int = 0
    targets_completed: int = 0
    targets_failed: int = 0
    total_items: int = 0
    max_items: int = 0
    budget_reached: bool = False
    interrupted: bool = False
    resumed: bool = False


class RunReport(BaseModel):
    """Full report written to reports/report-<session_id>.json."""

    summary: RunSummary
    targets: List[TargetStats] = Field(default_factory=list)
    categories: List[CategoryStats] = Field(default_factory=list)
    strategies: List[StrategyStats] = Field(default_factory=list)
    quality: QualitySummary = Field(default_factory=QualitySummary)
    performance: PerformanceSummary = Field(default_factory=PerformanceSummary)
    circuit_breakers: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    rate_limits: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    exit_code: Optional[int] = Field(None, description="Set on the final report only")
