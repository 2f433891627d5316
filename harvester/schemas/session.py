"""Pydantic schemas for persisted harvest sessions.

A session file is written after every checkpoint and read back when a
run resumes.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

TARGET_STATUSES = ("pending", "running", "completed", "failed", "isolated", "interrupted")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TargetProgress(BaseModel):
    """Progress of one target within a session."""

    completed_categories: List[str] = Field(default_factory=list)
    item_count: int = Field(0, ge=0, description="Canonical items harvested for the target")
    status: str = Field("pending", description=f"One of: {', '.join(TARGET_STATUSES)}")
    attempts: int = Field(0, ge=0)
    last_error: Optional[str] = None

    def mark_category(self, category: str) -> None:
        if category not in self.completed_categories:
            self.completed_categories.append(category)

    def pending_categories(self, categories: List[str]) -> List[str]:
        return [category for category in categories if category not in self.completed_categories]

    @property
    def is_finished(self) -> bool:
        return self.status in ("completed", "failed", "isolated")


class SessionState(BaseModel):
    """Orchestrator-owned state of one harvest run."""

    session_id: str = Field(..., min_length=1, examples=["20260101-120000-ab12cd"])
    started_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    finished: bool = False

    # Run options, kept so a resumed run continues the same job
    strategy: str = "intelligent"
    targets: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    max_items: int = 1000

    per_target_progress: Dict[str, TargetProgress] = Field(default_factory=dict)
    totals: Dict[str, int] = Field(default_factory=dict)
    outcomes: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="StrategyOutcome.to_dict() records, oldest first",
    )

    def progress_for(self, target_id: str) -> TargetProgress:
        if target_id not in self.per_target_progress:
            self.per_target_progress[target_id] = TargetProgress()
        return self.per_target_progress[target_id]

    def total_items(self) -> int:
        return sum(progress.item_count for progress in self.per_target_progress.values())

    def touch(self) -> None:
        self.updated_at = _utcnow()
