"""Services: pipeline, catalog sinks, session persistence and reporting."""

from .storage import read_json, write_json_atomic
from .pipeline import DataPipeline, PipelineStats, item_id
from .catalog_service import CatalogSink, HttpCatalog, JsonFileCatalog
from .session_store import SessionStore, new_session_id
from .report_service import build_report, print_summary, write_report

__all__ = [
    "read_json",
    "write_json_atomic",
    "DataPipeline",
    "PipelineStats",
    "item_id",
    "CatalogSink",
    "HttpCatalog",
    "JsonFileCatalog",
    "SessionStore",
    "new_session_id",
    "build_report",
    "print_summary",
    "write_report",
]
