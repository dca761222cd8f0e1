"""Shared test doubles: an in-memory search engine and a scripted fetcher."""

import asyncio
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

import pytest

from indexer.client import SEARCHABLE_ATTRIBUTES
from indexer.errors import IndexEngineError
from indexer.types import EngineQuery, EngineResult
from pipelines.errors import FetchError, HttpStatusError
from pipelines.models import Document, FetchResult, document_id_for, format_timestamp
from pipelines.urls import host_of, normalize_url

LONG_TEXT = "Crawled pages need enough readable text to be worth indexing in the search engine"


def html_page(title: str, text: str = LONG_TEXT, links: Iterable[str] = ()) -> str:
    """An HTML page whose extracted content is exactly ``text``."""
    anchors = "".join(f'<a href="{href}">more</a>' for href in links)
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><nav>{anchors}</nav><main><p>{text}</p></main></body></html>"
    )


def make_document(url: str, content: str = LONG_TEXT, title: str = "Page",
                  crawled_at: Optional[datetime] = None) -> Document:
    normalized = normalize_url(url)
    return Document(
        id=document_id_for(normalized),
        url=normalized,
        title=title,
        content=content,
        crawled_at=format_timestamp(crawled_at or datetime(2024, 1, 1, tzinfo=timezone.utc)),
        domain=host_of(normalized),
    )


class FakeIndexClient:
    """In-memory stand-in for the search engine.

    Matches every query term as a substring of any searchable attribute and
    applies filters, sorting and pagination the way the engine does.
    """

    def __init__(self, fail_after: Optional[int] = None, fail_search: bool = False,
                 fail_with: Optional[Exception] = None):
        self.documents: Dict[str, Dict] = {}
        self.fail_after = fail_after
        self.fail_with = fail_with
        self.fail_search = fail_search
        self.upsert_calls = 0
        self.index_ready = False

    async def ensure_index(self):
        self.index_ready = True

    async def close(self):
        pass

    async def upsert(self, document: Document):
        self.upsert_calls += 1
        if self.fail_after is not None and self.upsert_calls > self.fail_after:
            raise self.fail_with or IndexEngineError("Search engine unreachable: ClientConnectorError: connection refused")
        self.documents[document.id] = document.to_index_payload()

    async def clear_all(self):
        self.documents.clear()

    async def stats(self):
        distribution = Counter(key for doc in self.documents.values() for key in doc)
        return {
            "numberOfDocuments": len(self.documents),
            "isIndexing": False,
            "fieldDistribution": dict(distribution),
        }

    async def search(self, query: EngineQuery) -> EngineResult:
        if self.fail_search:
            raise IndexEngineError("Engine returned 503 for POST /indexes/documents/search", status=503)

        terms = query.q.lower().split()
        hits = sorted(self.documents.values(), key=lambda doc: doc["id"])
        hits = [doc for doc in hits if all(self._contains(doc, term) for term in terms)]
        hits = [doc for doc in hits if all(f.matches(doc.get(f.attribute)) for f in query.filters)]

        for rule in reversed(query.sort):
            field, order = rule.split(":")
            hits.sort(key=lambda doc: doc[field], reverse=order == "desc")

        facets = None
        if query.facets:
            facets = {name: dict(Counter(doc[name] for doc in hits if name in doc)) for name in query.facets}

        return EngineResult(
            hits=hits[query.offset:query.offset + query.limit],
            total_hits=len(hits),
            processing_time_ms=1,
            query=query.q,
            facets=facets,
        )

    @staticmethod
    def _contains(doc: Dict, term: str) -> bool:
        return any(term in str(doc.get(attribute, "")).lower() for attribute in SEARCHABLE_ATTRIBUTES)


class FakeFetcher:
    """Serves canned pages keyed by normalized URL and records every fetch."""

    def __init__(self, pages: Optional[Dict[str, Union[str, FetchError]]] = None,
                 redirects: Optional[Dict[str, str]] = None, delay: float = 0.0):
        self.pages = {normalize_url(url): page for url, page in (pages or {}).items()}
        self.redirects = {normalize_url(src): dst for src, dst in (redirects or {}).items()}
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.on_fetch = None

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_fetch is not None:
                self.on_fetch(url)
            if self.delay:
                await asyncio.sleep(self.delay)

            final_url = self.redirects.get(normalize_url(url), url)
            page = self.pages.get(normalize_url(final_url))
            if page is None:
                raise HttpStatusError(url, 404)
            if isinstance(page, FetchError):
                raise page
            return FetchResult(
                url=url,
                status_code=200,
                body=page.encode("utf-8"),
                content_type="text/html; charset=utf-8",
                final_url=final_url,
                charset="utf-8",
            )
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_index():
    return FakeIndexClient()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()
