"""Pipelines package for CrawlSearch.

Provides URL handling, fetching, content extraction and crawl coordination.
"""

from .crawler import CrawlCoordinator, CrawlJob, CrawlStats, CrawlStatus, crawl_urls
from .errors import (
    FetchError,
    HttpStatusError,
    InvalidUrlError,
    NetworkError,
    NonTextContentError,
    ResponseTooLargeError,
    RobotsDisallowedError
)
from .extractor import ContentExtractor, ExtractionResult
from .fetcher import Fetcher
from .filters import UrlFilter
from .frontier import Frontier, FrontierEntry, OfferStatus
from .models import Document, FetchResult
from .urls import normalize_url, resolve_link

__all__ = [
    # Crawler
    'CrawlCoordinator',
    'CrawlJob',
    'CrawlStats',
    'CrawlStatus',
    'crawl_urls',

    # Errors
    'FetchError',
    'HttpStatusError',
    'InvalidUrlError',
    'NetworkError',
    'NonTextContentError',
    'ResponseTooLargeError',
    'RobotsDisallowedError',

    # Components
    'ContentExtractor',
    'ExtractionResult',
    'Fetcher',
    'Frontier',
    'FrontierEntry',
    'OfferStatus',
    'UrlFilter',

    # Models
    'Document',
    'FetchResult',
    'normalize_url',
    'resolve_link'
]
