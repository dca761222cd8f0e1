"""URL frontier with depth bounds and deduplication.

One frontier belongs to one crawl job. It keeps pending URLs grouped by
discovery depth and a set of every URL it has ever accepted, so a URL is
dispatched at most once per job no matter how often it is rediscovered.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, Iterable, List, Optional, Set

from .filters import UrlFilter
from .urls import normalize_url

logger = logging.getLogger(__name__)


class OfferStatus(str, Enum):
    """Outcome of offering a URL to the frontier."""
    ACCEPTED = "accepted"
    INVALID_URL = "invalid_url"
    TOO_DEEP = "too_deep"
    ALREADY_SEEN = "already_seen"
    FILTERED = "filtered"
    CLOSED = "closed"


@dataclass(frozen=True)
class FrontierEntry:
    """A URL paired with the depth it was discovered at."""
    url: str
    depth: int


class Frontier:
    """Depth-ordered queue of URLs to fetch for a single job."""

    def __init__(self, max_depth: int, url_filter: Optional[UrlFilter] = None):
        if max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        self.max_depth = max_depth
        self.url_filter = url_filter

        self._lock = threading.Lock()
        self._pending: Dict[int, Deque[FrontierEntry]] = {}
        self._seen: Set[str] = set()
        self._visited: Set[str] = set()
        self._closed = False

        self._offered = 0
        self._accepted = 0
        self._rejected_depth = 0
        self._rejected_seen = 0
        self._rejected_invalid = 0
        self._rejected_filtered = 0
        self._dispatched = 0

    def offer(self, url: str, depth: int) -> OfferStatus:
        """Register a candidate URL discovered at ``depth``."""
        normalized = normalize_url(url)

        with self._lock:
            self._offered += 1

            if normalized is None:
                self._rejected_invalid += 1
                return OfferStatus.INVALID_URL

            if depth > self.max_depth:
                self._rejected_depth += 1
                return OfferStatus.TOO_DEEP

            if self._closed:
                return OfferStatus.CLOSED

            if self.url_filter is not None and not self.url_filter.allows(normalized):
                self._rejected_filtered += 1
                return OfferStatus.FILTERED

            if normalized in self._seen:
                self._rejected_seen += 1
                return OfferStatus.ALREADY_SEEN

            self._seen.add(normalized)
            self._pending.setdefault(depth, deque()).append(FrontierEntry(normalized, depth))
            self._accepted += 1

        return OfferStatus.ACCEPTED

    def offer_many(self, urls: Iterable[str], depth: int) -> List[OfferStatus]:
        return [self.offer(url, depth) for url in urls]

    def next_batch(self, n: int) -> List[FrontierEntry]:
        """Claim up to ``n`` pending entries from the lowest outstanding depth.

        Claimed entries are marked visited before they are returned.
        """
        if n <= 0:
            raise ValueError("n must be > 0")

        with self._lock:
            batch: List[FrontierEntry] = []
            while not batch:
                depth = self._lowest_pending_depth()
                if depth is None:
                    break

                queue = self._pending[depth]
                while queue and len(batch) < n:
                    entry = queue.popleft()
                    # Marked visited externally since it was queued
                    if entry.url in self._visited:
                        continue
                    self._visited.add(entry.url)
                    self._dispatched += 1
                    batch.append(entry)

                if not queue:
                    del self._pending[depth]

            return batch

    def mark_visited(self, url: str) -> bool:
        """Record a URL as visited.

        Returns:
            True if the URL had not been visited before; False for repeats
            and invalid URLs
        """
        normalized = normalize_url(url)
        if normalized is None:
            return False
        with self._lock:
            self._seen.add(normalized)
            if normalized in self._visited:
                return False
            self._visited.add(normalized)
            return True

    def is_visited(self, url: str) -> bool:
        normalized = normalize_url(url)
        with self._lock:
            return normalized in self._visited

    def has_pending(self) -> bool:
        with self._lock:
            return self._lowest_pending_depth() is not None

    def close(self) -> None:
        """Refuse further offers and drop pending entries."""
        with self._lock:
            self._closed = True
            self._pending.clear()

    @property
    def dispatched_count(self) -> int:
        """Number of entries handed out by next_batch."""
        with self._lock:
            return self._dispatched

    def snapshot(self) -> Dict[str, int]:
        """Counters for logs and crawl summaries."""
        with self._lock:
            return {
                "pending": sum(len(q) for q in self._pending.values()),
                "visited": len(self._visited),
                "dispatched": self._dispatched,
                "offered": self._offered,
                "accepted": self._accepted,
                "rejected_depth": self._rejected_depth,
                "rejected_seen": self._rejected_seen,
                "rejected_invalid": self._rejected_invalid,
                "rejected_filtered": self._rejected_filtered,
            }

    def _lowest_pending_depth(self) -> Optional[int]:
        for depth in sorted(self._pending):
            if depth <= self.max_depth and self._pending[depth]:
                return depth
        return None
