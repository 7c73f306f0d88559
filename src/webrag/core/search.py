"""Similarity search over embedded passages."""

import time
import logging
from dataclasses import dataclass, asdict
from typing import List, Optional, Dict, Any

from .embed import EmbeddingClient
from .errors import InvalidInput, pipeline_step
from .logging_config import get_audit_logger, log_search_event
from .store import PassageStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
MAX_LIMIT = 50


@dataclass
class SearchHit:
    """One ranked passage. ``score`` is 1 - cosine distance, higher is closer."""
    passage_id: int
    document_id: int
    company_id: Optional[int]
    text: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def clamp_limit(limit: Optional[int]) -> int:
    """Non-positive means the default; large values are capped."""
    if limit is None:
        return DEFAULT_LIMIT
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidInput(f"limit must be an integer, got {limit!r}")
    if limit <= 0:
        return DEFAULT_LIMIT
    return min(limit, MAX_LIMIT)


def search(
    store: PassageStore,
    embedder: EmbeddingClient,
    query: str,
    limit: Optional[int] = DEFAULT_LIMIT,
    company_id: Optional[int] = None,
) -> List[SearchHit]:
    """
    Rank embedded passages by similarity to ``query``.

    Args:
        store: Store bound to an open connection
        embedder: Embedding provider client
        query: Non-empty query text
        limit: Maximum hits, clamped to 1-50 (non-positive means 10)
        company_id: Only passages of this company, when given

    Returns:
        Hits ordered by non-increasing score
    """
    if not isinstance(query, str) or not query.strip():
        raise InvalidInput("query must be a non-empty string")
    limit = clamp_limit(limit)

    start_time = time.time()

    with pipeline_step("query_embedding"):
        query_vec = embedder.embed_one(query)

    with pipeline_step("nearest_neighbor_read"):
        rows = store.nearest_passages(query_vec, limit, company_id=company_id)

    hits = [
        SearchHit(
            passage_id=row.id,
            document_id=row.document_id,
            company_id=row.company_id,
            text=row.text,
            score=1.0 - row.distance,
        )
        for row in rows
    ]

    log_search_event(
        get_audit_logger("search"),
        query=query,
        limit=limit,
        company_id=company_id,
        hit_count=len(hits),
        execution_time_ms=(time.time() - start_time) * 1000,
    )
    return hits
