"""
Semantic retrieval with a similarity threshold and graceful fallback.
"""

from typing import List, Optional, Sequence

from ..models.core import SearchResult
from ..utils.config import SearchConfig
from ..utils.config import config as app_config
from ..utils.logging_config import get_logger
from ..utils.memory_store import MemoryStore
from .embedding import Embedder, create_embedder

logger = get_logger(__name__)


class RetrievalService:
    """Embed a query and rank the user's memories against it."""

    def __init__(self, store: MemoryStore, embedder: Optional[Embedder] = None, config: Optional[SearchConfig] = None):
        self.store = store
        self.embedder = embedder or create_embedder()
        self.config = config or app_config.search

    def search(self,
               user_id: str,
               query: str,
               limit: Optional[int] = None,
               threshold: Optional[float] = None,
               types: Optional[Sequence[str]] = None) -> List[SearchResult]:
        """
        Rank a user's memories by similarity to the query.

        Results scoring below the threshold are dropped, unless that would drop all
        of them; then the unfiltered top results are returned so a search with any
        candidates never comes back empty.

        Args:
            user_id: Owner whose memories are searched
            query: Free-text query
            limit: Maximum results (SEARCH_RESULT_LIMIT if None)
            threshold: Minimum score (SIMILARITY_THRESHOLD if None)
            types: Restrict to these content types

        Returns:
            List of SearchResult, most similar first
        """
        limit = limit or self.config.result_limit
        threshold = self.config.similarity_threshold if threshold is None else threshold

        query_vector = self.embedder.embed_query(query)
        candidates = self.store.search(user_id, query_vector, limit, types=types)

        filtered = [result for result in candidates if result.score >= threshold]
        if filtered:
            return filtered

        if candidates:
            logger.info(f'No results above threshold {threshold} for user {user_id}, returning unfiltered results')
        return candidates[:limit]
