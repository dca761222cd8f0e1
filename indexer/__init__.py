"""Search engine client and query planning for CrawlSearch."""

from .client import IndexClient
from .errors import IndexEngineError
from .query_planner import QueryPlanner, QueryValidationError, SearchQuery
from .types import EngineQuery, EngineResult, EqualsFilter, RangeFilter

__all__ = [
    'IndexClient',
    'IndexEngineError',
    'QueryPlanner',
    'QueryValidationError',
    'SearchQuery',
    'EngineQuery',
    'EngineResult',
    'EqualsFilter',
    'RangeFilter'
]
