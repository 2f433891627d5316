from .target import RateProfile, Target, load_targets
from .session import SessionState, TargetProgress
from .report import (
    CategoryStats,
    PerformanceSummary,
    QualitySummary,
    RunReport,
    RunSummary,
    StrategyStats,
    TargetStats,
)
from .ingest import IngestItem, IngestRequest, IngestResponse

__all__ = [
    # Targets
    "RateProfile",
    "Target",
    "load_targets",
    # Session
    "SessionState",
    "TargetProgress",
    # Report
    "CategoryStats",
    "PerformanceSummary",
    "QualitySummary",
    "RunReport",
    "RunSummary",
    "StrategyStats",
    "TargetStats",
    # Catalog ingest
    "IngestItem",
    "IngestRequest",
    "IngestResponse",
]
