"""Persistence of harvest sessions for checkpointing and resume."""

import asyncio
import secrets
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import ValidationError

from harvester.core.exceptions import PersistenceError
from harvester.schemas.session import SessionState
from harvester.services.storage import read_json, write_json_atomic

logger = structlog.get_logger(__name__)


def new_session_id(now: Optional[datetime] = None) -> str:
    """Sortable session id, e.g. "20260101-120000-ab12cd"."""
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%d-%H%M%S}-{secrets.token_hex(3)}"


class SessionStore:
    """Reads and writes sessions/<session_id>.json under the output directory.

    Saves go through one lock and an atomic replace, so concurrent
    checkpoints never interleave and readers never see half a file.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self._lock = asyncio.Lock()

    def path_for(self, session_id: str) -> Path:
        return self.directory / f"{session_id}.json"

    async def save(self, state: SessionState) -> bool:
        """Checkpoint a session.

        A write failure is logged and swallowed so the run can continue;
        the next checkpoint tries again.

        Returns:
            True if the file was written
        """
        async with self._lock:
            state.touch()
            try:
                write_json_atomic(self.path_for(state.session_id), state.model_dump(mode="json"))
            except PersistenceError as exc:
                logger.warning("session_checkpoint_failed", session_id=state.session_id, error=exc.message)
                return False
        logger.debug("session_checkpointed", session_id=state.session_id)
        return True

    def load(self, session_id: str) -> SessionState:
        """Load one session.

        Raises:
            PersistenceError: If the file is missing or invalid
        """
        path = self.path_for(session_id)
        data = read_json(path)
        try:
            return SessionState.model_validate(data)
        except ValidationError as exc:
            raise PersistenceError(str(path), f"invalid session file: {exc}") from exc

    def list_sessions(self) -> List[SessionState]:
        """Every readable session, newest first. Unreadable files are skipped."""
        sessions = []
        if not self.directory.exists():
            return sessions
        for path in self.directory.glob("*.json"):
            try:
                sessions.append(self.load(path.stem))
            except PersistenceError as exc:
                logger.warning("session_file_skipped", path=str(path), error=exc.message)
        sessions.sort(key=lambda state: state.started_at, reverse=True)
        return sessions

    def find_resumable(self, max_age: timedelta, now: Optional[datetime] = None) -> Optional[SessionState]:
        """Newest unfinished session started within ``max_age``.

        Args:
            max_age: Oldest acceptable session age
            now: Current time (aware), for tests

        Returns:
            The session to resume, or None
        """
        now = now or datetime.now(timezone.utc)
        for state in self.list_sessions():
            if state.finished:
                continue
            started_at = state.started_at
            if started_at.tzinfo is None:
                started_at = started_at.replace(tzinfo=timezone.utc)
            if now - started_at <= max_age:
                logger.info("session_resumable", session_id=state.session_id, started_at=started_at.isoformat())
                return state
        return None
