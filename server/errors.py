"""API-level errors mapped to the response envelope by the exception handlers."""

from typing import Any, Dict, Optional


class ValidationError(Exception):
    """Bad request input; answered with 400 and never retried."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CrawlFailedError(Exception):
    """A crawl job was aborted by an index engine failure."""

    def __init__(self, message: str, summary: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.summary = summary or {}
