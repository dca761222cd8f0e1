"""Search request validation and translation.

``QueryPlanner.plan`` turns a public ``SearchQuery`` into an ``EngineQuery``
and ``QueryPlanner.render`` turns the engine's answer back into the public
response shape.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pipelines.models import Document
from .types import EngineQuery, EngineResult, EqualsFilter, RangeFilter

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 1000
MAX_OFFSET = 10000
SORTABLE_FIELDS = ('crawled_at', 'word_count')
SORT_ORDERS = ('asc', 'desc')
FACETS = ['domain']


class QueryValidationError(ValueError):
    """A search parameter is missing, malformed or out of range."""

    def __init__(self, parameter: str, message: str):
        super().__init__(f"Invalid parameter '{parameter}': {message}")
        self.parameter = parameter


@dataclass
class SearchQuery:
    """Public search request."""
    q: str = ""
    limit: Optional[int] = DEFAULT_LIMIT
    offset: Optional[int] = 0
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None
    min_word_count: Optional[int] = None
    max_word_count: Optional[int] = None
    from_date: Optional[str] = None
    to_date: Optional[str] = None
    domain: Optional[str] = None


def parse_timestamp(value: str, parameter: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    text = (value or '').strip()
    if not text:
        raise QueryValidationError(parameter, "expected an ISO-8601 timestamp")
    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise QueryValidationError(parameter, f"'{value}' is not an ISO-8601 timestamp")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class QueryPlanner:
    """Validates search requests and maps them to and from engine queries."""

    def __init__(self, max_limit: int = MAX_LIMIT, max_offset: int = MAX_OFFSET):
        self.max_limit = max_limit
        self.max_offset = max_offset

    def plan(self, query: SearchQuery) -> EngineQuery:
        """Validate ``query`` and build the engine query.

        Raises:
            QueryValidationError: naming the first offending parameter
        """
        limit = self._validate_limit(query.limit)
        offset = self._validate_offset(query.offset)

        engine_query = EngineQuery(
            q=query.q or "",
            limit=limit,
            offset=offset,
            sort=self._build_sort(query.sort_by, query.sort_order),
            facets=list(FACETS),
        )

        word_filter = self._word_count_filter(query.min_word_count, query.max_word_count)
        if word_filter:
            engine_query.filters.append(word_filter)

        date_filter = self._date_filter(query.from_date, query.to_date)
        if date_filter:
            engine_query.filters.append(date_filter)

        if query.domain:
            engine_query.filters.append(EqualsFilter('domain', query.domain.strip().lower()))

        return engine_query

    def render(self, result: EngineResult, query: Optional[SearchQuery] = None) -> Dict[str, Any]:
        """Public response for an engine result."""
        hits = [Document.from_dict(hit).to_dict() for hit in result.hits]
        response = {
            "hits": hits,
            "processing_time_ms": result.processing_time_ms,
            "query": query.q if query is not None else result.query,
            "total_hits": result.total_hits,
        }
        if result.facets:
            response["facets"] = result.facets
        return response

    def _validate_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return DEFAULT_LIMIT
        if limit <= 0:
            raise QueryValidationError('limit', "must be greater than 0")
        return min(limit, self.max_limit)

    def _validate_offset(self, offset: Optional[int]) -> int:
        if offset is None:
            return 0
        if offset < 0:
            raise QueryValidationError('offset', "must not be negative")
        if offset > self.max_offset:
            raise QueryValidationError('offset', f"must not exceed {self.max_offset}")
        return offset

    @staticmethod
    def _build_sort(sort_by: Optional[str], sort_order: Optional[str]) -> List[str]:
        if sort_order is not None and sort_order not in SORT_ORDERS:
            raise QueryValidationError('sort_order', f"must be one of {', '.join(SORT_ORDERS)}")
        if not sort_by:
            return []
        if sort_by not in SORTABLE_FIELDS:
            raise QueryValidationError('sort_by', f"must be one of {', '.join(SORTABLE_FIELDS)}")
        return [f"{sort_by}:{sort_order or 'asc'}"]

    @staticmethod
    def _word_count_filter(min_count: Optional[int], max_count: Optional[int]) -> Optional[RangeFilter]:
        if min_count is None and max_count is None:
            return None
        if min_count is not None and min_count < 0:
            raise QueryValidationError('min_word_count', "must not be negative")
        if max_count is not None and max_count < 0:
            raise QueryValidationError('max_word_count', "must not be negative")
        if min_count is not None and max_count is not None and min_count > max_count:
            raise QueryValidationError('min_word_count', "must not exceed max_word_count")
        return RangeFilter('word_count', gte=min_count, lte=max_count)

    @staticmethod
    def _date_filter(from_date: Optional[str], to_date: Optional[str]) -> Optional[RangeFilter]:
        if from_date is None and to_date is None:
            return None
        start = parse_timestamp(from_date, 'from_date') if from_date is not None else None
        end = parse_timestamp(to_date, 'to_date') if to_date is not None else None
        if start is not None and end is not None and start > end:
            raise QueryValidationError('from_date', "must not be later than to_date")
        # Dates are compared on the numeric companion of crawled_at
        return RangeFilter(
            'crawled_at_ts',
            gte=start.timestamp() if start is not None else None,
            lte=end.timestamp() if end is not None else None,
        )
