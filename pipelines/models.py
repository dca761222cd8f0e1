"""Data records shared by the crawl pipeline."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as UTC ISO-8601 with a fixed precision.

    A fixed format keeps stored values comparable as strings.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def document_id_for(normalized_url: str) -> str:
    """Stable document id derived from the normalized URL."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, normalized_url))


def count_words(text: str) -> int:
    return len(text.split())


@dataclass(frozen=True)
class Document:
    """A cleaned page ready for indexing."""
    id: str
    url: str
    title: str
    content: str
    crawled_at: str
    description: Optional[str] = None
    keywords: Optional[List[str]] = None
    domain: Optional[str] = None
    word_count: int = field(init=False)

    def __post_init__(self):
        # Always derived from the stored content
        object.__setattr__(self, 'word_count', count_words(self.content))

    @property
    def crawled_at_ts(self) -> float:
        return datetime.fromisoformat(self.crawled_at).timestamp()

    def to_dict(self) -> Dict[str, Any]:
        """Public representation returned by the API."""
        data = {
            'id': self.id,
            'url': self.url,
            'title': self.title,
            'content': self.content,
            'crawled_at': self.crawled_at,
            'word_count': self.word_count,
        }
        if self.description is not None:
            data['description'] = self.description
        if self.keywords is not None:
            data['keywords'] = list(self.keywords)
        if self.domain is not None:
            data['domain'] = self.domain
        return data

    def to_index_payload(self) -> Dict[str, Any]:
        """Representation sent to the search engine."""
        data = self.to_dict()
        data['crawled_at_ts'] = self.crawled_at_ts
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Document':
        return cls(
            id=data['id'],
            url=data['url'],
            title=data.get('title') or '',
            content=data.get('content') or '',
            crawled_at=data['crawled_at'],
            description=data.get('description'),
            keywords=data.get('keywords'),
            domain=data.get('domain'),
        )


@dataclass
class FetchResult:
    """Successful response for one URL."""
    url: str
    status_code: int
    body: bytes
    content_type: str = ''
    final_url: Optional[str] = None
    charset: Optional[str] = None
    response_time: Optional[float] = None
    retry_count: int = 0

    @property
    def text(self) -> str:
        try:
            return self.body.decode(self.charset or 'utf-8', errors='replace')
        except LookupError:
            return self.body.decode('utf-8', errors='replace')
