"""Atomic JSON file persistence shared by sessions, reports and the catalog."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

from harvester.core.exceptions import PersistenceError
from harvester.scrapers.utils.retry import persistence_retry

logger = structlog.get_logger(__name__)


@persistence_retry
def _replace_file(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        # Leave no temp files behind on failure
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to a temp file and atomically replace the destination.

    Readers never see a partially written file. An OSError is retried
    once before it surfaces.

    Args:
        path: Destination file
        data: JSON-serialisable data

    Raises:
        PersistenceError: If the file could not be written
    """
    payload = json.dumps(data, ensure_ascii=False, indent=2, default=str)
    try:
        _replace_file(Path(path), payload)
    except OSError as exc:
        logger.error("persist_failed", path=str(path), error=str(exc))
        raise PersistenceError(str(path), str(exc)) from exc


def read_json(path: Path) -> Any:
    """Read a JSON file.

    Raises:
        PersistenceError: If the file is missing, unreadable or not JSON
    """
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise PersistenceError(str(path), str(exc)) from exc
