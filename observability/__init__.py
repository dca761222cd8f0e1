"""Observability package for CrawlSearch."""

from .logging import ColoredFormatter, JSONFormatter, setup_logging

__all__ = [
    'ColoredFormatter',
    'JSONFormatter',
    'setup_logging'
]
