import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from config.settings import CrawlerSettings, Settings
from pipelines.crawler import CrawlCoordinator, CrawlJob
from server import api
from server.api import create_app

from conftest import FakeFetcher, FakeIndexClient, html_page, make_document

NINETEEN_WORDS = ("The quick brown fox jumps over the lazy dog while the cat "
                  "watches from the warm sunny windowsill nearby")


def make_client(index=None, fetcher=None, **crawler) -> TestClient:
    settings = Settings(crawler=crawler) if crawler else Settings()
    app = create_app(settings, index_client=index or FakeIndexClient(), fetcher=fetcher or FakeFetcher())
    return TestClient(app, raise_server_exceptions=False)


async def seed(index: FakeIndexClient, count: int):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for i in range(count):
        words = " ".join(["searchable"] * (10 + i))
        await index.upsert(make_document(f"https://example.com/{i}", content=words,
                                         crawled_at=start + timedelta(days=i)))


@pytest.fixture
def seeded_index():
    index = FakeIndexClient()
    asyncio.run(seed(index, 25))
    return index


class TestHealth:
    """Service metadata endpoints"""

    def test_health(self):
        response = make_client().get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert datetime.fromisoformat(data["timestamp"]).tzinfo is not None

    def test_root(self):
        response = make_client().get("/")
        assert response.status_code == 200
        assert "/api/search" in response.text

    def test_unknown_route_uses_envelope(self):
        response = make_client().get("/api/unknown")
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_cors_is_permissive(self):
        response = make_client().options(
            "/api/search",
            headers={"Origin": "https://app.example.org", "Access-Control-Request-Method": "GET"},
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"


class TestCrawlEndpoint:
    """POST /api/crawl"""

    def test_crawl_indexes_documents(self):
        index = FakeIndexClient()
        fetcher = FakeFetcher({"https://example.com/": html_page("Example", NINETEEN_WORDS)})

        response = make_client(index, fetcher).post(
            "/api/crawl", json={"urls": ["https://example.com"], "max_depth": 1}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["documents_indexed"] == 1
        assert body["data"]["urls"] == ["https://example.com"]
        assert body["data"]["message"] == "Crawl completed successfully"
        [document] = index.documents.values()
        assert document["word_count"] == 19

    def test_default_depth_from_settings(self):
        fetcher = FakeFetcher({
            "https://example.com/": html_page("Root", links=["/a"]),
            "https://example.com/a": html_page("A"),
        })

        response = make_client(fetcher=fetcher, max_depth=0).post(
            "/api/crawl", json={"urls": ["https://example.com/"]}
        )

        assert response.json()["data"]["documents_indexed"] == 1
        assert fetcher.calls == ["https://example.com/"]

    def test_empty_urls_rejected(self):
        response = make_client().post("/api/crawl", json={"urls": []})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "urls must not be empty"}

    def test_missing_urls_rejected(self):
        response = make_client().post("/api/crawl", json={"max_depth": 2})

        assert response.status_code == 400
        assert "urls" in response.json()["error"]

    def test_invalid_url_rejected(self):
        fetcher = FakeFetcher()
        response = make_client(fetcher=fetcher).post(
            "/api/crawl", json={"urls": ["https://example.com", "not a url"]}
        )

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Crawl failed: invalid URL"}
        assert fetcher.calls == []

    def test_negative_depth_rejected(self):
        response = make_client().post("/api/crawl", json={"urls": ["https://example.com"], "max_depth": -1})

        assert response.status_code == 400
        assert "max_depth" in response.json()["error"]

    def test_index_failure_returns_500_with_partial_count(self):
        fetcher = FakeFetcher({
            "https://example.com/": html_page("Root", links=["/a", "/b"]),
            "https://example.com/a": html_page("A"),
            "https://example.com/b": html_page("B"),
        })

        response = make_client(FakeIndexClient(fail_after=1), fetcher).post(
            "/api/crawl", json={"urls": ["https://example.com/"], "max_depth": 1}
        )

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"].startswith("Crawl failed:")
        assert body["data"]["documents_indexed"] == 1

    def test_unexpected_index_error_returns_500(self):
        fetcher = FakeFetcher({"https://example.com/": html_page("Root")})
        index = FakeIndexClient(fail_after=0, fail_with=RuntimeError("engine sent garbage"))

        response = make_client(index, fetcher).post("/api/crawl", json={"urls": ["https://example.com/"]})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Crawl failed: Indexing failed: RuntimeError: engine sent garbage"
        assert body["data"]["documents_indexed"] == 0

    def test_unreachable_pages_still_succeed(self):
        response = make_client(fetcher=FakeFetcher()).post(
            "/api/crawl", json={"urls": ["https://example.com/"]}
        )

        assert response.status_code == 200
        assert response.json()["data"]["documents_indexed"] == 0
        assert response.json()["data"]["failed_urls"] == 1


class DisconnectingRequest:
    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


class TestClientDisconnect:
    """Crawl cancellation when the requesting client goes away"""

    @pytest.mark.asyncio
    async def test_disconnect_stops_new_batches(self, monkeypatch):
        monkeypatch.setattr(api, "DISCONNECT_POLL_INTERVAL", 0.01)
        request = DisconnectingRequest()
        fetcher = FakeFetcher({
            "https://example.com/": html_page("Root", links=["/a", "/b"]),
            "https://example.com/a": html_page("A"),
            "https://example.com/b": html_page("B"),
        }, delay=0.2)
        fetcher.on_fetch = lambda url: setattr(request, "disconnected", True)
        job = CrawlJob(urls=["https://example.com/"], max_depth=2)

        watcher = asyncio.create_task(api._watch_disconnect(request, job))
        await CrawlCoordinator(FakeIndexClient(), CrawlerSettings(), fetcher=fetcher).run(job)
        await asyncio.wait_for(watcher, timeout=1)

        assert job.cancel_reason == "client disconnected"
        assert fetcher.calls == ["https://example.com/"]
        assert job.documents_indexed == 1

    @pytest.mark.asyncio
    async def test_connected_client_does_not_cancel(self, monkeypatch):
        monkeypatch.setattr(api, "DISCONNECT_POLL_INTERVAL", 0.01)
        fetcher = FakeFetcher({
            "https://example.com/": html_page("Root", links=["/a"]),
            "https://example.com/a": html_page("A"),
        }, delay=0.05)
        job = CrawlJob(urls=["https://example.com/"], max_depth=1)

        watcher = asyncio.create_task(api._watch_disconnect(DisconnectingRequest(), job))
        await CrawlCoordinator(FakeIndexClient(), CrawlerSettings(), fetcher=fetcher).run(job)
        watcher.cancel()
        with pytest.raises(asyncio.CancelledError):
            await watcher

        assert not job.cancelled
        assert job.documents_indexed == 2


class TestSearchEndpoint:
    """GET /api/search"""

    def test_offset_beyond_cap_rejected(self, seeded_index):
        response = make_client(seeded_index).get("/api/search?q=&limit=10&offset=10000001")

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "offset" in body["error"]

    def test_non_numeric_limit_rejected(self):
        response = make_client().get("/api/search", params={"limit": "ten"})

        assert response.status_code == 400
        assert "limit" in response.json()["error"]

    def test_unparseable_date_rejected(self):
        response = make_client().get("/api/search", params={"from_date": "yesterday"})

        assert response.status_code == 400
        assert "from_date" in response.json()["error"]

    def test_empty_query_returns_whole_index(self, seeded_index):
        response = make_client(seeded_index).get("/api/search", params={"q": "", "limit": 1000})

        data = response.json()["data"]
        assert data["total_hits"] == 25
        assert len(data["hits"]) == 25
        assert data["query"] == ""

    def test_default_page_size(self, seeded_index):
        data = make_client(seeded_index).get("/api/search").json()["data"]

        assert len(data["hits"]) == 20
        assert data["total_hits"] == 25
        assert data["facets"] == {"domain": {"example.com": 25}}

    def test_pagination_is_consistent(self, seeded_index):
        client = make_client(seeded_index)
        params = {"q": "searchable", "sort_by": "word_count", "sort_order": "desc"}

        full = client.get("/api/search", params={**params, "limit": 30}).json()["data"]
        pages = [
            client.get("/api/search", params={**params, "limit": 10, "offset": offset}).json()["data"]
            for offset in (0, 10, 20)
        ]

        assert [hit["id"] for page in pages for hit in page["hits"]] == [hit["id"] for hit in full["hits"]]
        assert all(page["total_hits"] == full["total_hits"] == 25 for page in pages)

    def test_sort_order(self, seeded_index):
        data = make_client(seeded_index).get(
            "/api/search", params={"sort_by": "word_count", "sort_order": "asc", "limit": 3}
        ).json()["data"]

        assert [hit["word_count"] for hit in data["hits"]] == [10, 11, 12]

    def test_word_count_filter_is_inclusive(self, seeded_index):
        data = make_client(seeded_index).get(
            "/api/search", params={"min_word_count": 12, "max_word_count": 14}
        ).json()["data"]

        assert sorted(hit["word_count"] for hit in data["hits"]) == [12, 13, 14]
        assert data["total_hits"] == 3

    def test_date_filter_is_inclusive(self, seeded_index):
        data = make_client(seeded_index).get(
            "/api/search", params={"from_date": "2024-01-02T00:00:00Z", "to_date": "2024-01-04T00:00:00Z"}
        ).json()["data"]

        assert data["total_hits"] == 3
        assert all("2024-01-0" in hit["crawled_at"] for hit in data["hits"])

    def test_domain_filter(self, seeded_index):
        client = make_client(seeded_index)

        assert client.get("/api/search", params={"domain": "EXAMPLE.com"}).json()["data"]["total_hits"] == 25
        assert client.get("/api/search", params={"domain": "other.org"}).json()["data"]["total_hits"] == 0

    def test_hits_match_query(self, seeded_index):
        data = make_client(seeded_index).get("/api/search", params={"q": "nothing-matches"}).json()["data"]

        assert data == {
            "hits": [],
            "processing_time_ms": 1,
            "query": "nothing-matches",
            "total_hits": 0,
            "facets": {"domain": {}},
        }

    def test_engine_failure_returns_500(self):
        response = make_client(FakeIndexClient(fail_search=True)).get("/api/search", params={"q": "x"})

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"].startswith("Index engine error")


class TestIndexManagement:
    """GET /api/stats and DELETE /api/index"""

    def test_stats(self, seeded_index):
        data = make_client(seeded_index).get("/api/stats").json()["data"]

        assert data["numberOfDocuments"] == 25
        assert data["isIndexing"] is False
        assert data["fieldDistribution"]["word_count"] == 25

    def test_clear_then_stats_reports_zero(self, seeded_index):
        client = make_client(seeded_index)

        response = client.delete("/api/index")
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"message": "Index cleared successfully"}}

        assert client.get("/api/stats").json()["data"]["numberOfDocuments"] == 0

    def test_startup_initializes_index(self):
        index = FakeIndexClient()
        with make_client(index) as client:
            assert client.get("/health").status_code == 200
        assert index.index_ready
