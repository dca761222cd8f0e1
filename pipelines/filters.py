"""URL filtering applied before URLs enter a crawl frontier."""

import logging
import re
from typing import Iterable, List, Pattern, Set

from config.settings import CrawlerSettings
from .urls import host_of

logger = logging.getLogger(__name__)


def _domains(values: Iterable[str]) -> Set[str]:
    return {value.strip().lower().lstrip('.') for value in values if value and value.strip()}


class UrlFilter:
    """Domain allow/deny lists and URL include/exclude patterns.

    A domain entry matches the host itself and its subdomains. Blocked
    domains and exclude patterns take precedence over the allow side; an
    empty allow list or include list lets everything through.
    """

    def __init__(self,
                 allowed_domains: Iterable[str] = (),
                 blocked_domains: Iterable[str] = (),
                 include_patterns: Iterable[str] = (),
                 exclude_patterns: Iterable[str] = ()):
        self.allowed_domains = _domains(allowed_domains)
        self.blocked_domains = _domains(blocked_domains)
        self.include_patterns: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in include_patterns]
        self.exclude_patterns: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in exclude_patterns]

    @classmethod
    def from_settings(cls, settings: CrawlerSettings) -> 'UrlFilter':
        return cls(
            allowed_domains=settings.allowed_domains,
            blocked_domains=settings.blocked_domains,
            include_patterns=settings.include_patterns,
            exclude_patterns=settings.exclude_patterns,
        )

    @staticmethod
    def _matches_domain(host: str, domains: Set[str]) -> bool:
        return any(host == domain or host.endswith(f".{domain}") for domain in domains)

    def allows(self, url: str) -> bool:
        """Check whether a URL may be crawled."""
        host = host_of(url)

        if self._matches_domain(host, self.blocked_domains):
            logger.debug(f"URL {url} is on a blocked domain")
            return False

        if self.allowed_domains and not self._matches_domain(host, self.allowed_domains):
            logger.debug(f"URL {url} is outside the allowed domains")
            return False

        for pattern in self.exclude_patterns:
            if pattern.search(url):
                logger.debug(f"URL {url} matches exclude pattern: {pattern.pattern}")
                return False

        if self.include_patterns and not any(pattern.search(url) for pattern in self.include_patterns):
            logger.debug(f"URL {url} matches no include pattern")
            return False

        return True
