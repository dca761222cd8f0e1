"""Errors raised by the search engine client."""

from typing import Optional


class IndexEngineError(Exception):
    """The search engine rejected a request or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
