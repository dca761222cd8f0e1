"""Fetch error classification for the crawler."""

from typing import Optional


class FetchError(Exception):
    """Base class for a failed fetch of a single URL."""
    kind = "fetch_error"

    def __init__(self, url: str, message: str):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.message = message


class InvalidUrlError(FetchError):
    """URL is malformed or uses an unsupported scheme."""
    kind = "invalid_url"

    def __init__(self, url: str, message: str = "Invalid or unsupported URL"):
        super().__init__(url, message)


class NetworkError(FetchError):
    """Connection, DNS or timeout failure."""
    kind = "network_error"


class HttpStatusError(FetchError):
    """Server answered with a non-2xx status."""
    kind = "http_error"

    def __init__(self, url: str, status: int, message: Optional[str] = None):
        super().__init__(url, message or f"HTTP {status}")
        self.status = status


class NonTextContentError(FetchError):
    """Response content type is not HTML or text."""
    kind = "non_text_content"

    def __init__(self, url: str, content_type: str):
        super().__init__(url, f"Non-text content type: {content_type or 'unknown'}")
        self.content_type = content_type


class RobotsDisallowedError(FetchError):
    """URL blocked by the host's robots.txt."""
    kind = "robots_disallowed"

    def __init__(self, url: str):
        super().__init__(url, "Blocked by robots.txt")


class ResponseTooLargeError(FetchError):
    """Response body exceeds the configured size limit."""
    kind = "too_large"

    def __init__(self, url: str, limit: int):
        super().__init__(url, f"Response larger than {limit} bytes")
        self.limit = limit
