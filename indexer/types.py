"""Engine-facing query and result shapes."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class RangeFilter:
    """Inclusive range on a numeric attribute; either bound may be omitted."""
    attribute: str
    gte: Optional[Union[int, float]] = None
    lte: Optional[Union[int, float]] = None

    def to_expression(self) -> str:
        parts = []
        if self.gte is not None:
            parts.append(f"{self.attribute} >= {self.gte}")
        if self.lte is not None:
            parts.append(f"{self.attribute} <= {self.lte}")
        return " AND ".join(parts)

    def matches(self, value: Any) -> bool:
        if value is None:
            return False
        if self.gte is not None and value < self.gte:
            return False
        if self.lte is not None and value > self.lte:
            return False
        return True


@dataclass(frozen=True)
class EqualsFilter:
    """Exact match on a string attribute."""
    attribute: str
    value: str

    def to_expression(self) -> str:
        # JSON string quoting escapes embedded quotes and backslashes
        return f"{self.attribute} = {json.dumps(self.value)}"

    def matches(self, value: Any) -> bool:
        return value == self.value


Filter = Union[RangeFilter, EqualsFilter]


@dataclass
class EngineQuery:
    """A search request in the engine's terms."""
    q: str = ""
    limit: int = 20
    offset: int = 0
    sort: List[str] = field(default_factory=list)
    filters: List[Filter] = field(default_factory=list)
    facets: List[str] = field(default_factory=list)

    @property
    def filter_expression(self) -> Optional[str]:
        expressions = [f.to_expression() for f in self.filters]
        expressions = [e for e in expressions if e]
        return " AND ".join(expressions) or None

    def to_payload(self) -> Dict[str, Any]:
        """Meilisearch search request body.

        Offsets on a page boundary use page/hitsPerPage, for which the engine
        reports an exhaustive ``totalHits`` instead of an estimate.
        """
        payload: Dict[str, Any] = {"q": self.q}
        if self.limit > 0 and self.offset % self.limit == 0:
            payload["hitsPerPage"] = self.limit
            payload["page"] = self.offset // self.limit + 1
        else:
            payload["limit"] = self.limit
            payload["offset"] = self.offset
        if self.sort:
            payload["sort"] = list(self.sort)
        if self.filter_expression:
            payload["filter"] = self.filter_expression
        if self.facets:
            payload["facets"] = list(self.facets)
        return payload


@dataclass
class EngineResult:
    """Raw engine answer to an EngineQuery."""
    hits: List[Dict[str, Any]]
    total_hits: int
    processing_time_ms: int
    query: str = ""
    facets: Optional[Dict[str, Dict[str, int]]] = None
