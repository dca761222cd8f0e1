"""Security package for the CrawlSearch API."""

from .cors import get_cors_config, setup_cors

__all__ = [
    "get_cors_config",
    "setup_cors"
]
