"""Catalog sinks: where canonical items are upserted.

JsonFileCatalog is the default sink and doubles as the resume store.
HttpCatalog forwards batches to an external ingest endpoint.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import httpx
import structlog

from harvester.core.exceptions import CatalogError, PersistenceError
from harvester.models.item import CanonicalItem
from harvester.schemas.ingest import IngestItem, IngestRequest, IngestResponse
from harvester.scrapers.utils.retry import http_retry
from harvester.services.storage import read_json, write_json_atomic

logger = structlog.get_logger(__name__)


class CatalogSink(ABC):
    """Write target for canonical items. Upserts are idempotent by id."""

    @abstractmethod
    async def upsert(self, item: CanonicalItem) -> bool:
        """Insert or refresh one item.

        Returns:
            True if the id was new to the catalog
        """

    async def upsert_many(self, items: Iterable[CanonicalItem]) -> int:
        """Upsert several items. Returns the number of new ids."""
        created = 0
        for item in items:
            if await self.upsert(item):
                created += 1
        return created

    async def flush(self) -> None:
        return None

    async def close(self) -> None:
        await self.flush()


class JsonFileCatalog(CatalogSink):
    """Catalog kept in memory and flushed atomically to a JSON state file.

    The state file belongs to one session. The orchestrator attaches it
    once the session id is known, so a resumed session reloads its own
    items and never another run's.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self._items: Dict[str, CanonicalItem] = {}
        self._lock = asyncio.Lock()

    def attach(self, path: Path) -> None:
        """Point the catalog at the state file of the current session."""
        self.path = Path(path)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._items

    def load(self) -> List[CanonicalItem]:
        """Load items persisted by a previous run; a missing file is an empty catalog.

        Raises:
            PersistenceError: If the state file exists but cannot be read
        """
        if self.path is None or not self.path.exists():
            return []
        data = read_json(self.path)
        try:
            items = [CanonicalItem.from_dict(entry) for entry in data.get("items", [])]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise PersistenceError(str(self.path), f"invalid catalog state: {exc}") from exc
        for item in items:
            self._items.setdefault(item.id, item)
        logger.info("catalog_loaded", path=str(self.path), items=len(items))
        return items

    async def upsert(self, item: CanonicalItem) -> bool:
        async with self._lock:
            existing = self._items.get(item.id)
            if existing is None:
                self._items[item.id] = item
                return True
            if item.last_seen_at > existing.last_seen_at:
                existing.last_seen_at = item.last_seen_at
            return False

    def items(self, target_id: Optional[str] = None) -> List[CanonicalItem]:
        return [item for item in self._items.values() if target_id is None or item.source_target == target_id]

    def count(self, target_id: Optional[str] = None) -> int:
        if target_id is None:
            return len(self._items)
        return sum(1 for item in self._items.values() if item.source_target == target_id)

    async def flush(self) -> None:
        """Write the state file.

        Raises:
            PersistenceError: If no state file is attached or the file could
                not be written after one retry
        """
        if self.path is None:
            raise PersistenceError("catalog state", "no state file attached")
        async with self._lock:
            payload = {"items": [item.to_dict() for item in self._items.values()]}
        write_json_atomic(self.path, payload)


class HttpCatalog(CatalogSink):
    """Forwards canonical items to CATALOG_INGEST_URL in batches.

    Items are buffered by id and POSTed on flush(), so re-upserting an
    item before a flush sends it once.
    """

    def __init__(
        self,
        ingest_url: str,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        batch_size: int = 100,
        timeout: float = 60.0,
    ):
        self.ingest_url = ingest_url
        self.api_key = api_key
        self.batch_size = batch_size
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._pending: Dict[str, CanonicalItem] = {}
        self._sent: set = set()
        self._lock = asyncio.Lock()

    async def upsert(self, item: CanonicalItem) -> bool:
        async with self._lock:
            created = item.id not in self._sent and item.id not in self._pending
            self._pending[item.id] = item
        if len(self._pending) >= self.batch_size:
            await self.flush()
        return created

    @http_retry
    async def _post(self, request: IngestRequest) -> IngestResponse:
        response = await self._client.post(
            self.ingest_url,
            content=request.model_dump_json(),
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        return IngestResponse.model_validate(response.json())

    async def flush(self) -> None:
        """POST every pending item.

        Raises:
            CatalogError: If the endpoint keeps failing after retries
        """
        async with self._lock:
            if not self._pending:
                return
            batch = list(self._pending.values())
            self._pending.clear()

        request = IngestRequest(api_key=self.api_key, items=[IngestItem.from_item(item) for item in batch])
        try:
            result = await self._post(request)
        except (httpx.HTTPError, ValueError) as exc:
            async with self._lock:
                for item in batch:
                    self._pending.setdefault(item.id, item)
            logger.error("catalog_ingest_failed", url=self.ingest_url, items=len(batch), error=str(exc))
            raise CatalogError(batch[0].id, str(exc)) from exc

        self._sent.update(item.id for item in batch)
        logger.info(
            "catalog_ingested",
            received=result.received,
            created=result.created,
            updated=result.updated,
            errors=result.errors,
        )

    async def close(self) -> None:
        try:
            await self.flush()
        finally:
            if self._owns_client:
                await self._client.aclose()
