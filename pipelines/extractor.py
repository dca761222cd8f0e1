"""Content extraction: turns raw HTML into a clean Document.

Body text is taken from the first semantic container that yields any text,
tried in the order of ``EXTRACTION_STRATEGIES``. When none of them does, a
generic HTML-to-text conversion of the whole page is used.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from bs4 import BeautifulSoup
from bs4.element import Tag
from trafilatura import extract as trafilatura_extract

from config.settings import CrawlerSettings
from .models import Document, document_id_for, format_timestamp, utc_now
from .urls import host_of, normalize_url, resolve_link, unique_links

logger = logging.getLogger(__name__)

# Elements that never carry visible page text
NON_CONTENT_TAGS = ['script', 'style', 'noscript', 'template', 'iframe', 'object', 'embed']

_WHITESPACE_RE = re.compile(r'\s+')


def clean_text(text: str) -> str:
    """Collapse whitespace runs into single spaces and trim."""
    return _WHITESPACE_RE.sub(' ', text or '').strip()


def truncate_text(text: str, max_length: int) -> str:
    """Cut text to at most ``max_length`` characters without splitting a word.

    Text is expected to be cleaned already (single spaces). A hard cut is only
    made when the first ``max_length`` characters contain no space at all.
    """
    if len(text) <= max_length:
        return text

    if text[max_length] == ' ':
        return text[:max_length].rstrip()

    truncated = text[:max_length]
    last_space = truncated.rfind(' ')
    if last_space <= 0:
        return truncated
    return truncated[:last_space].rstrip()


def _select_first(tag_name: str) -> Callable[[BeautifulSoup], Optional[Tag]]:
    def select(soup: BeautifulSoup) -> Optional[Tag]:
        return soup.find(tag_name)
    return select


# Ordered (name, selector) pairs; the first non-empty one wins
EXTRACTION_STRATEGIES: List[Tuple[str, Callable[[BeautifulSoup], Optional[Tag]]]] = [
    ('main', _select_first('main')),
    ('article', _select_first('article')),
    ('body', _select_first('body')),
]


def html_to_text(html: str) -> str:
    """Generic HTML-to-text conversion over a whole document."""
    if not html or not html.strip():
        return ''
    text = trafilatura_extract(html, include_comments=False, include_tables=True)
    if text and text.strip():
        return text
    soup = BeautifulSoup(html, 'html.parser')
    for element in soup.find_all(NON_CONTENT_TAGS):
        element.decompose()
    return soup.get_text(' ')


@dataclass
class ExtractionResult:
    """Outcome of parsing one page."""
    document: Optional[Document]
    links: List[str] = field(default_factory=list)
    strategy: Optional[str] = None


class ContentExtractor:
    """Builds Documents and discovers links from HTML pages."""

    def __init__(self, settings: Optional[CrawlerSettings] = None):
        settings = settings or CrawlerSettings()
        self.max_content_length = settings.max_content_length
        self.min_content_length = settings.min_content_length

    def extract(self, html: str, base_url: str,
                crawled_at: Optional[datetime] = None) -> Optional[Document]:
        """Extract a Document, or None when the page has too little text."""
        return self.parse(html, base_url, crawled_at=crawled_at).document

    def extract_links(self, html: str, base_url: str) -> List[str]:
        """Collect absolute http(s) links from anchor elements."""
        soup = BeautifulSoup(html, 'html.parser')
        return self._extract_links(soup, base_url)

    def parse(self, html: str, base_url: str,
              crawled_at: Optional[datetime] = None) -> ExtractionResult:
        """Parse a page once, returning both its Document and its links."""
        soup = BeautifulSoup(html or '', 'html.parser')

        links = self._extract_links(soup, base_url)

        title = self._extract_title(soup)
        description = self._extract_description(soup)
        keywords = self._extract_keywords(soup)

        for element in soup.find_all(NON_CONTENT_TAGS):
            element.decompose()

        strategy, body_text = self._extract_body(soup)
        content = truncate_text(clean_text(body_text), self.max_content_length)

        if len(content) < self.min_content_length:
            logger.debug(f"Skipping {base_url}: {len(content)} chars of content")
            return ExtractionResult(document=None, links=links, strategy=strategy)

        canonical_url = normalize_url(base_url) or base_url
        document = Document(
            id=document_id_for(canonical_url),
            url=canonical_url,
            title=title,
            content=content,
            crawled_at=format_timestamp(crawled_at or utc_now()),
            description=description,
            keywords=keywords,
            domain=host_of(canonical_url) or None,
        )
        return ExtractionResult(document=document, links=links, strategy=strategy)

    def _extract_body(self, soup: BeautifulSoup) -> Tuple[str, str]:
        for name, select in EXTRACTION_STRATEGIES:
            element = select(soup)
            if element is None:
                continue
            text = clean_text(element.get_text(' '))
            if text:
                return name, text

        return 'fallback', html_to_text(str(soup))

    @staticmethod
    def _extract_title(soup: BeautifulSoup) -> str:
        title = soup.find('title')
        if title is None:
            return ''
        return clean_text(title.get_text())

    @staticmethod
    def _meta_content(soup: BeautifulSoup, attribute: str, value: str) -> Optional[str]:
        for meta in soup.find_all('meta'):
            attr_value = meta.get(attribute)
            if attr_value and attr_value.strip().lower() == value:
                content = (meta.get('content') or '').strip()
                if content:
                    return content
        return None

    def _extract_description(self, soup: BeautifulSoup) -> Optional[str]:
        return (self._meta_content(soup, 'name', 'description')
                or self._meta_content(soup, 'property', 'og:description'))

    def _extract_keywords(self, soup: BeautifulSoup) -> Optional[List[str]]:
        content = self._meta_content(soup, 'name', 'keywords')
        if content is None:
            return None
        keywords = [k.strip() for k in content.split(',') if k.strip()]
        return keywords or None

    @staticmethod
    def _extract_links(soup: BeautifulSoup, base_url: str) -> List[str]:
        links = []
        for anchor in soup.find_all('a', href=True):
            link = resolve_link(anchor['href'], base_url)
            if link:
                links.append(link)
        return unique_links(links)
