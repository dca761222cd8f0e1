"""Configuration module for CrawlSearch.

Provides settings for the crawler, the search engine connection and the API.
"""

from .settings import (
    ApiSettings,
    CrawlerSettings,
    IndexSettings,
    Settings
)

__all__ = [
    'ApiSettings',
    'CrawlerSettings',
    'IndexSettings',
    'Settings'
]
