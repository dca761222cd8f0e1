"""URL normalization and link resolution for the crawler."""

import logging
from typing import Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = {'http', 'https'}

DEFAULT_PORTS = {'http': 80, 'https': 443}

# Tracking and session parameters that never change the fetched resource
IGNORED_QUERY_PARAMS = {
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'fbclid', 'gclid', 'msclkid', 'mc_cid', 'mc_eid',
    'sessionid', 'session_id', 'phpsessid', 'jsessionid',
}


def is_http_url(url: str) -> bool:
    """Check that a URL is an absolute http(s) URL with a host."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parsed = urlparse(url.strip())
        # Accessing port validates it
        parsed.port
    except ValueError:
        return False
    return parsed.scheme.lower() in ALLOWED_SCHEMES and bool(parsed.hostname)


def normalize_url(url: str) -> Optional[str]:
    """Normalize a URL into its deduplication key.

    Lowercases scheme and host, drops default ports, fragments, tracking
    parameters and the trailing slash of non-root paths, and sorts the
    remaining query parameters.

    Returns:
        The normalized URL, or None when the URL is not a valid http(s) URL.
    """
    if not is_http_url(url):
        return None

    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()
    host = parsed.hostname.lower()
    if ':' in host:
        host = f"[{host}]"

    port = parsed.port
    netloc = host if port is None or DEFAULT_PORTS.get(scheme) == port else f"{host}:{port}"

    path = parsed.path or '/'
    if len(path) > 1 and path.endswith('/'):
        path = path.rstrip('/') or '/'

    params = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key.lower() not in IGNORED_QUERY_PARAMS
    ]
    params.sort(key=lambda item: item[0])
    query = urlencode(params)

    return urlunparse((scheme, netloc, path, parsed.params, query, ''))


def resolve_link(href: str, base_url: str) -> Optional[str]:
    """Resolve an href against its page URL, keeping only http(s) targets."""
    href = (href or '').strip()
    if not href or href.startswith('#'):
        return None

    try:
        absolute = urljoin(base_url, href)
    except ValueError:
        return None

    if not is_http_url(absolute):
        return None

    # Remove fragment
    parsed = urlparse(absolute)
    return urlunparse(parsed._replace(fragment=''))


def unique_links(links: Iterable[str]) -> List[str]:
    """Deduplicate links by normalized form, preserving first-seen order."""
    seen = set()
    result = []
    for link in links:
        key = normalize_url(link)
        if key and key not in seen:
            seen.add(key)
            result.append(link)
    return result


def host_of(url: str) -> str:
    """Extract the lowercase host of a URL."""
    try:
        return (urlparse(url).hostname or '').lower()
    except ValueError:
        return ''
