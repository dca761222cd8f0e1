"""Asynchronous page fetcher with retries, politeness and robots.txt support."""

import asyncio
import logging
import random
import time
import urllib.robotparser
from typing import Dict, Optional
from urllib.parse import urlparse

import aiohttp

from config.settings import CrawlerSettings
from .errors import (
    FetchError,
    HttpStatusError,
    InvalidUrlError,
    NetworkError,
    NonTextContentError,
    ResponseTooLargeError,
    RobotsDisallowedError,
)
from .models import FetchResult
from .urls import host_of, is_http_url

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

TEXT_CONTENT_TYPES = ('text/', 'application/xhtml+xml', 'application/xml')

READ_CHUNK_SIZE = 64 * 1024


def is_text_content_type(content_type: str) -> bool:
    """Whether a Content-Type header describes HTML or other text."""
    if not content_type:
        # Servers that omit the header almost always serve HTML
        return True
    media_type = content_type.split(';', 1)[0].strip().lower()
    return media_type.startswith(TEXT_CONTENT_TYPES)


class Fetcher:
    """Fetches single URLs over a shared aiohttp session.

    Use as an async context manager so the session is closed afterwards.
    The fetcher is stateless per request apart from its politeness clock and
    robots.txt cache.
    """

    def __init__(self, settings: Optional[CrawlerSettings] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize fetcher.

        Args:
            settings: Crawler settings (timeouts, retries, politeness, user agent)
            session: Optional externally managed session
        """
        self.settings = settings or CrawlerSettings()
        self.session = session
        self._owns_session = session is None

        # Politeness
        self._host_locks: Dict[str, asyncio.Lock] = {}
        self._last_request_time: Dict[str, float] = {}

        # robots.txt parsers keyed by scheme://netloc; None means "allow all"
        self._robots_cache: Dict[str, Optional[urllib.robotparser.RobotFileParser]] = {}

    async def __aenter__(self) -> 'Fetcher':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self):
        if self.session is None:
            connector = aiohttp.TCPConnector(limit=self.settings.max_concurrent * 2)
            timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
            self.session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={'User-Agent': self.settings.user_agent}
            )
            self._owns_session = True

    async def close(self):
        """Close the fetcher session if this fetcher created it."""
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    async def fetch(self, url: str) -> FetchResult:
        """Fetch one URL.

        Returns:
            FetchResult for a 2xx text response

        Raises:
            InvalidUrlError, NetworkError, HttpStatusError, NonTextContentError,
            ResponseTooLargeError, RobotsDisallowedError
        """
        if not is_http_url(url):
            raise InvalidUrlError(url)

        if self.session is None:
            await self.open()

        if self.settings.respect_robots_txt and not await self._is_allowed_by_robots(url):
            logger.info(f"robots.txt disallows {url}")
            raise RobotsDisallowedError(url)

        start_time = time.monotonic()
        attempts = self.settings.max_retries + 1
        last_error: Optional[FetchError] = None

        for attempt in range(attempts):
            await self._respect_politeness(url)
            try:
                logger.debug(f"Fetching {url} (attempt {attempt + 1}/{attempts})")
                result = await self._fetch_once(url)
                result.retry_count = attempt
                result.response_time = time.monotonic() - start_time
                return result
            except HttpStatusError as e:
                last_error = e
                if e.status not in RETRYABLE_STATUS_CODES:
                    raise
            except NetworkError as e:
                last_error = e

            if attempt < attempts - 1:
                delay = self._calculate_retry_delay(attempt)
                logger.warning(f"Retryable failure for {url}: {last_error.message}, "
                               f"retrying in {delay:.2f}s (attempt {attempt + 1}/{attempts})")
                await asyncio.sleep(delay)

        raise last_error

    async def _fetch_once(self, url: str) -> FetchResult:
        try:
            async with self.session.get(url, allow_redirects=True) as response:
                content_type = response.headers.get('Content-Type', '')

                if not 200 <= response.status < 300:
                    raise HttpStatusError(url, response.status)

                if not is_text_content_type(content_type):
                    raise NonTextContentError(url, content_type)

                limit = self.settings.max_response_bytes
                if limit and response.content_length is not None and response.content_length > limit:
                    raise ResponseTooLargeError(url, limit)

                body = await self._read_body(response, url)
                return FetchResult(
                    url=url,
                    status_code=response.status,
                    body=body,
                    content_type=content_type,
                    final_url=str(response.url),
                    charset=response.charset,
                )
        except asyncio.TimeoutError as e:
            raise NetworkError(url, f"Timeout after {self.settings.request_timeout}s") from e
        except aiohttp.InvalidURL as e:
            raise InvalidUrlError(url, f"Invalid URL: {e}") from e
        except aiohttp.ClientResponseError as e:
            raise HttpStatusError(url, e.status, str(e)) from e
        except aiohttp.ClientError as e:
            raise NetworkError(url, f"{type(e).__name__}: {e}") from e

    async def _read_body(self, response: aiohttp.ClientResponse, url: str) -> bytes:
        """Read the body in chunks, stopping once it passes ``max_response_bytes``."""
        limit = self.settings.max_response_bytes
        if not limit:
            return await response.read()

        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(READ_CHUNK_SIZE):
            size += len(chunk)
            if size > limit:
                raise ResponseTooLargeError(url, limit)
            chunks.append(chunk)
        return b''.join(chunks)

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay with jitter."""
        base_delay = self.settings.retry_delay * (2 ** attempt)
        jitter = random.uniform(0.1, 0.3) * base_delay
        return min(base_delay + jitter, self.settings.max_retry_delay)

    async def _respect_politeness(self, url: str):
        """Keep at least ``politeness_delay`` seconds between requests to one host."""
        delay = self.settings.politeness_delay
        if delay <= 0:
            return

        host = host_of(url)
        lock = self._host_locks.setdefault(host, asyncio.Lock())
        async with lock:
            last = self._last_request_time.get(host)
            if last is not None:
                elapsed = time.monotonic() - last
                if elapsed < delay:
                    sleep_time = delay - elapsed
                    logger.debug(f"Politeness delay for {host}: sleeping {sleep_time:.2f}s")
                    await asyncio.sleep(sleep_time)
            self._last_request_time[host] = time.monotonic()

    async def _is_allowed_by_robots(self, url: str) -> bool:
        parsed = urlparse(url)
        domain_key = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"

        if domain_key not in self._robots_cache:
            self._robots_cache[domain_key] = await self._load_robots(domain_key)

        parser = self._robots_cache[domain_key]
        # Missing or unreadable robots.txt allows everything
        if parser is None:
            return True
        return parser.can_fetch(self.settings.user_agent, url)

    async def _load_robots(self, domain_key: str) -> Optional[urllib.robotparser.RobotFileParser]:
        robots_url = f"{domain_key}/robots.txt"
        try:
            async with self.session.get(robots_url, allow_redirects=True) as response:
                if response.status != 200:
                    return None
                text = await response.text(errors='replace')
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to fetch {robots_url}: {e}")
            return None

        parser = urllib.robotparser.RobotFileParser()
        parser.set_url(robots_url)
        parser.parse(text.splitlines())
        return parser
