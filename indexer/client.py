"""Client for the external search engine (Meilisearch HTTP API).

The engine owns storage and ranking. This client applies the index
configuration the pipeline depends on and exposes the handful of
operations the crawler and the search API use.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, Optional

import aiohttp

from config.settings import IndexSettings
from pipelines.models import Document
from .errors import IndexEngineError
from .types import EngineQuery, EngineResult

logger = logging.getLogger(__name__)

# Order of searchable attributes is the attribute ranking priority
SEARCHABLE_ATTRIBUTES = ["title", "description", "keywords", "content", "url"]
DISPLAYED_ATTRIBUTES = [
    "id", "url", "title", "content", "description", "keywords",
    "crawled_at", "word_count", "domain",
]
FILTERABLE_ATTRIBUTES = ["crawled_at", "crawled_at_ts", "word_count", "domain"]
SORTABLE_ATTRIBUTES = ["crawled_at", "word_count"]
RANKING_RULES = ["words", "typo", "proximity", "attribute", "sort", "exactness"]

# Large enough to count every match reachable through offset + limit
MAX_TOTAL_HITS = 11000

INDEX_SETTINGS: Dict[str, Any] = {
    "searchableAttributes": SEARCHABLE_ATTRIBUTES,
    "displayedAttributes": DISPLAYED_ATTRIBUTES,
    "filterableAttributes": FILTERABLE_ATTRIBUTES,
    "sortableAttributes": SORTABLE_ATTRIBUTES,
    "rankingRules": RANKING_RULES,
    "pagination": {"maxTotalHits": MAX_TOTAL_HITS},
}

TASK_POLL_INTERVAL = 0.05
TASK_POLL_MAX_INTERVAL = 0.5


class IndexClient:
    """Async client for one Meilisearch index."""

    def __init__(self, settings: Optional[IndexSettings] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings or IndexSettings()
        self.base_url = self.settings.url.rstrip('/')
        self.index_name = self.settings.index_name
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self) -> 'IndexClient':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self):
        if self.session is None:
            headers = {'Content-Type': 'application/json'}
            if self.settings.api_key:
                headers['Authorization'] = f"Bearer {self.settings.api_key}"
            self.session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.settings.request_timeout)
            )
            self._owns_session = True

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    @property
    def _index_path(self) -> str:
        return f"/indexes/{self.index_name}"

    async def ensure_index(self) -> None:
        """Create the index if needed and apply the ranking configuration."""
        logger.info(f"Initializing search index: {self.index_name}")
        task = await self._request('POST', '/indexes', json={'uid': self.index_name, 'primaryKey': 'id'})
        try:
            await self.wait_for_task(self._task_uid(task))
        except IndexEngineError as e:
            if e.code != 'index_already_exists':
                raise
            logger.debug(f"Index {self.index_name} already exists")

        task = await self._request('PATCH', f"{self._index_path}/settings", json=INDEX_SETTINGS)
        await self.wait_for_task(self._task_uid(task))
        logger.info(f"Index {self.index_name} configured")

    async def upsert(self, document: Document) -> None:
        """Insert or replace one document by id."""
        await self.upsert_many([document])

    async def upsert_many(self, documents: Iterable[Document]) -> None:
        payload = [doc.to_index_payload() for doc in documents]
        if not payload:
            return

        task = await self._request(
            'POST', f"{self._index_path}/documents",
            json=payload, params={'primaryKey': 'id'}
        )
        task_uid = self._task_uid(task)
        logger.debug(f"Enqueued {len(payload)} documents (task {task_uid})")
        if self.settings.wait_for_tasks:
            await self.wait_for_task(task_uid)

    async def clear_all(self) -> None:
        """Delete every document and wait until the engine has applied it."""
        logger.info(f"Clearing index: {self.index_name}")
        task = await self._request('DELETE', f"{self._index_path}/documents")
        try:
            await self.wait_for_task(self._task_uid(task))
        except IndexEngineError as e:
            if e.code != 'index_not_found':
                raise

    async def stats(self) -> Dict[str, Any]:
        """Document count, indexing flag and per-field distribution."""
        try:
            data = await self._request('GET', f"{self._index_path}/stats")
        except IndexEngineError as e:
            if e.code != 'index_not_found':
                raise
            data = {}

        return {
            'numberOfDocuments': data.get('numberOfDocuments', 0),
            'isIndexing': data.get('isIndexing', False),
            'fieldDistribution': data.get('fieldDistribution', {}),
        }

    async def search(self, query: EngineQuery) -> EngineResult:
        data = await self._request('POST', f"{self._index_path}/search", json=query.to_payload())
        hits = data.get('hits', [])
        total_hits = data.get('totalHits', data.get('estimatedTotalHits', len(hits)))
        return EngineResult(
            hits=hits,
            total_hits=total_hits,
            processing_time_ms=data.get('processingTimeMs', 0),
            query=data.get('query', query.q),
            facets=data.get('facetDistribution'),
        )

    async def health(self) -> bool:
        try:
            data = await self._request('GET', '/health')
        except IndexEngineError:
            return False
        return data.get('status') == 'available'

    async def wait_for_task(self, task_uid: int) -> Dict[str, Any]:
        """Poll an engine task until it finishes.

        Raises:
            IndexEngineError: if the task fails or does not finish in time
        """
        deadline = time.monotonic() + self.settings.task_timeout
        interval = TASK_POLL_INTERVAL

        while True:
            task = await self._request('GET', f"/tasks/{task_uid}")
            status = task.get('status')
            if status == 'succeeded':
                return task
            if status in ('failed', 'canceled'):
                error = task.get('error') or {}
                raise IndexEngineError(
                    f"Engine task {task_uid} {status}: {error.get('message', 'unknown error')}",
                    code=error.get('code')
                )
            if time.monotonic() >= deadline:
                raise IndexEngineError(f"Engine task {task_uid} did not finish in {self.settings.task_timeout}s")

            await asyncio.sleep(interval)
            interval = min(interval * 2, TASK_POLL_MAX_INTERVAL)

    async def _request(self, method: str, path: str, json: Any = None,
                       params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        if self.session is None:
            await self.open()

        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(method, url, json=json, params=params) as response:
                if response.status >= 400:
                    error = await self._error_body(response)
                    raise IndexEngineError(
                        f"Engine returned {response.status} for {method} {path}: "
                        f"{error.get('message', response.reason)}",
                        status=response.status,
                        code=error.get('code')
                    )
                if response.status == 204:
                    return {}
                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    raise IndexEngineError(
                        f"Unexpected engine response for {method} {path}: body is not JSON",
                        status=response.status
                    ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise IndexEngineError(f"Search engine unreachable: {type(e).__name__}: {e}") from e

        if body is None:
            return {}
        if not isinstance(body, dict):
            raise IndexEngineError(f"Unexpected engine response for {method} {path}: {type(body).__name__} body")
        return body

    @staticmethod
    def _task_uid(task: Dict[str, Any]) -> int:
        try:
            return task['taskUid']
        except KeyError:
            raise IndexEngineError(f"Unexpected engine response: no taskUid in {task}") from None

    @staticmethod
    async def _error_body(response: aiohttp.ClientResponse) -> Dict[str, Any]:
        try:
            body = await response.json(content_type=None)
        except (ValueError, aiohttp.ContentTypeError):
            return {}
        return body if isinstance(body, dict) else {}

