import pytest

from config.settings import CrawlerSettings
from pipelines.filters import UrlFilter


class TestUrlFilter:
    """Domain lists and URL patterns"""

    def test_empty_filter_allows_everything(self):
        url_filter = UrlFilter()
        assert url_filter.allows("https://example.com/")
        assert url_filter.allows("http://anything.org/path?q=1")

    def test_allowed_domains_include_subdomains(self):
        url_filter = UrlFilter(allowed_domains=["Example.com"])

        assert url_filter.allows("https://example.com/")
        assert url_filter.allows("https://docs.example.com/guide")
        assert not url_filter.allows("https://example.org/")
        assert not url_filter.allows("https://notexample.com/")

    def test_blocked_domain_wins_over_allowed(self):
        url_filter = UrlFilter(allowed_domains=["example.com"], blocked_domains=["ads.example.com"])

        assert url_filter.allows("https://example.com/")
        assert not url_filter.allows("https://ads.example.com/banner")
        assert not url_filter.allows("https://cdn.ads.example.com/banner")

    def test_exclude_pattern_wins_over_include(self):
        url_filter = UrlFilter(include_patterns=[r"/docs/"], exclude_patterns=[r"\.pdf$"])

        assert url_filter.allows("https://example.com/docs/intro")
        assert not url_filter.allows("https://example.com/docs/manual.PDF")
        assert not url_filter.allows("https://example.com/blog/post")

    def test_from_settings(self):
        settings = CrawlerSettings(blocked_domains=["spam.example"], exclude_patterns=["/login"])
        url_filter = UrlFilter.from_settings(settings)

        assert not url_filter.allows("https://spam.example/")
        assert not url_filter.allows("https://example.com/login")
        assert url_filter.allows("https://example.com/")

    def test_invalid_pattern_rejected_by_settings(self):
        with pytest.raises(ValueError, match="Invalid URL pattern"):
            CrawlerSettings(include_patterns=["(unclosed"])
