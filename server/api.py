"""CrawlSearch HTTP API.

Every /api route answers with the envelope ``{"success": true, "data": ...}``
or ``{"success": false, "error": "..."}``.
"""

import asyncio
import datetime
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.settings import Settings
from indexer.client import IndexClient
from indexer.errors import IndexEngineError
from indexer.query_planner import QueryPlanner, QueryValidationError, SearchQuery
from pipelines.crawler import CrawlCoordinator, CrawlJob, CrawlStatus, PageFetcher
from pipelines.urls import normalize_url
from .errors import CrawlFailedError, ValidationError
from .security.cors import setup_cors

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
DISCONNECT_POLL_INTERVAL = 0.5


class CrawlRequest(BaseModel):
    urls: List[str] = Field(..., description="Seed URLs, crawled at depth 0")
    max_depth: Optional[int] = Field(default=None, ge=0, description="Link depth limit (defaults to the configured depth)")


def success(data: Any) -> Dict[str, Any]:
    return {"success": True, "data": data}


def error_response(status_code: int, message: str, data: Any = None) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": message}
    if data is not None:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=content)


async def _watch_disconnect(request: Request, job: CrawlJob):
    """Cancel ``job`` once the client that requested it goes away."""
    while not job.cancelled:
        if await request.is_disconnected():
            logger.info(f"Client disconnected, cancelling crawl job {job.id}")
            job.cancel("client disconnected")
            return
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


def create_app(settings: Optional[Settings] = None,
               index_client: Optional[Any] = None,
               fetcher: Optional[PageFetcher] = None) -> FastAPI:
    """Build the API application.

    Args:
        settings: Service settings (read from the environment when omitted)
        index_client: Search engine client; an ``IndexClient`` is created otherwise
        fetcher: Optional fetcher shared by crawl jobs instead of one per job
    """
    settings = settings or Settings.from_env()
    index_client = index_client or IndexClient(settings.index)
    planner = QueryPlanner()

    app = FastAPI(title="CrawlSearch API", version=API_VERSION)
    app.state.settings = settings
    app.state.index_client = index_client
    setup_cors(app, settings.api.allowed_origins)

    def new_coordinator() -> CrawlCoordinator:
        return CrawlCoordinator(index_client, settings.crawler, fetcher=fetcher)

    app.state.coordinator_factory = new_coordinator

    @app.on_event("startup")
    async def startup_event():
        """Apply the index configuration; the API still starts if the engine is down."""
        try:
            await index_client.ensure_index()
        except IndexEngineError as e:
            logger.warning(f"Search index not initialized at startup: {e.message}")

    @app.on_event("shutdown")
    async def shutdown_event():
        close = getattr(index_client, "close", None)
        if close is not None:
            await close()
            logger.info("Search engine client closed")

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return error_response(400, exc.message)

    @app.exception_handler(QueryValidationError)
    async def query_validation_error_handler(request: Request, exc: QueryValidationError):
        return error_response(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if not errors:
            return error_response(400, "Invalid request")
        first = errors[0]
        location = [str(part) for part in first.get("loc", ()) if part not in ("query", "body")]
        parameter = ".".join(location) or "request"
        return error_response(400, f"Invalid parameter '{parameter}': {first.get('msg', 'invalid value')}")

    @app.exception_handler(CrawlFailedError)
    async def crawl_failed_handler(request: Request, exc: CrawlFailedError):
        return error_response(500, exc.message, exc.summary)

    @app.exception_handler(IndexEngineError)
    async def index_engine_error_handler(request: Request, exc: IndexEngineError):
        logger.error(f"Index engine error on {request.url.path}: {exc.message}")
        return error_response(500, f"Index engine error: {exc.message}")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        return error_response(500, "Internal server error")

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "CrawlSearch API - Use /api/search?q=query to search"

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat()
        }

    @app.post("/api/crawl")
    async def crawl(request: Request, payload: CrawlRequest):
        """Crawl the seed URLs and index every extracted document."""
        if not payload.urls:
            raise ValidationError("urls must not be empty")
        if any(normalize_url(url) is None for url in payload.urls):
            raise ValidationError("Crawl failed: invalid URL")

        max_depth = settings.crawler.max_depth if payload.max_depth is None else payload.max_depth
        job = CrawlJob(urls=list(payload.urls), max_depth=max_depth)
        logger.info(f"Received crawl request for {len(job.urls)} URLs (job {job.id})")

        watcher = asyncio.create_task(_watch_disconnect(request, job))
        try:
            await app.state.coordinator_factory().run(job)
        finally:
            watcher.cancel()

        summary = job.summary()
        if job.status == CrawlStatus.FAILED:
            raise CrawlFailedError(f"Crawl failed: {job.error}", summary)

        if job.cancelled:
            message = f"Crawl stopped early ({job.cancel_reason})"
        else:
            message = "Crawl completed successfully"
        return success({"message": message, **summary})

    @app.get("/api/search")
    async def search(
        q: str = Query("", description="Full-text query; empty matches every document"),
        limit: Optional[int] = Query(None, description="Page size, clamped to 1000"),
        offset: Optional[int] = Query(None, description="Results to skip, at most 10000"),
        sort_by: Optional[str] = Query(None, description="crawled_at or word_count"),
        sort_order: Optional[str] = Query(None, description="asc or desc"),
        min_word_count: Optional[int] = Query(None, description="Inclusive lower word count bound"),
        max_word_count: Optional[int] = Query(None, description="Inclusive upper word count bound"),
        from_date: Optional[str] = Query(None, description="Inclusive ISO-8601 lower bound on crawled_at"),
        to_date: Optional[str] = Query(None, description="Inclusive ISO-8601 upper bound on crawled_at"),
        domain: Optional[str] = Query(None, description="Restrict results to one host")
    ):
        query = SearchQuery(
            q=q, limit=limit, offset=offset,
            sort_by=sort_by, sort_order=sort_order,
            min_word_count=min_word_count, max_word_count=max_word_count,
            from_date=from_date, to_date=to_date, domain=domain
        )
        engine_query = planner.plan(query)
        result = await index_client.search(engine_query)
        return success(planner.render(result, query))

    @app.get("/api/stats")
    async def stats():
        return success(await index_client.stats())

    @app.delete("/api/index")
    async def clear_index():
        logger.info("Clearing search index")
        await index_client.clear_all()
        return success({"message": "Index cleared successfully"})

    return app


app = create_app()
