"""
Caller-facing operations over a user's memories.

Every method takes an already-authenticated ``user_id`` and a plain payload
(dict or request model). Payloads are validated before anything is read or
written.
"""

from dataclasses import replace
from typing import Any, Dict, List, Optional

from ..models.core import ExtractionResult, Memory, SearchResult
from ..models.submissions import DeleteRequest, ListRequest, SearchRequest, UpdateRequest, parse_request
from ..utils.config import AppConfig
from ..utils.config import config as app_config
from ..utils.logging_config import get_logger
from ..utils.memory_store import MemoryStore, create_memory_store
from ..utils.timestamp_utils import utc_now
from .embedding import Embedder, build_search_text, create_embedder
from .enrichment import EnrichmentService
from .ingestion import IngestionService
from .metadata_cache import create_metadata_cache
from .metadata_extraction import MetadataExtractionService
from .retrieval import RetrievalService

logger = get_logger(__name__)


class ContentService:
    """Ingest, browse, edit, delete and search one user's memories."""

    def __init__(self,
                 store: MemoryStore,
                 embedder: Optional[Embedder] = None,
                 extractor: Optional[MetadataExtractionService] = None,
                 enrichment: Optional[EnrichmentService] = None,
                 config: Optional[AppConfig] = None,
                 clock=utc_now):
        self.config = config or app_config
        self.store = store
        self.embedder = embedder or create_embedder(self.config.embedding)
        self.clock = clock
        self.ingestion = IngestionService(store,
                                          embedder=self.embedder,
                                          extractor=extractor or MetadataExtractionService(config=self.config),
                                          enrichment=enrichment or EnrichmentService(config=self.config.bedrock_llm),
                                          clock=clock)
        self.retrieval = RetrievalService(store, embedder=self.embedder, config=self.config.search)

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None) -> 'ContentService':
        """Wire every dependency from configuration and make sure the store schema exists."""
        config = config or app_config
        store = create_memory_store(config.store, config.embedding.dimension)
        store.ensure_schema()
        cache = create_metadata_cache(config.cache)
        return cls(store, extractor=MetadataExtractionService(cache=cache, config=config), config=config)

    def ingest(self, user_id: str, submission: Any) -> Memory:
        return self.ingestion.ingest(user_id, submission)

    def preview(self, user_id: str, submission: Any) -> ExtractionResult:
        logger.debug(f'Preview requested by user {user_id}')
        return self.ingestion.preview(submission)

    def list(self, user_id: str, request: Any = None) -> List[Memory]:
        """Newest first, resuming after ``cursor`` when one is given.

        Pass ``encode_cursor(page[-1])`` to continue without skipping records that
        share the last item's ``created_at``; a bare timestamp cursor returns only
        strictly older records.
        """
        request = parse_request(ListRequest, request)
        limit = request.limit or self.config.search.list_limit
        return self.store.list(user_id, cursor=request.cursor, limit=limit)

    def fetch(self, user_id: str, memory_id: str) -> Optional[Memory]:
        return self.store.fetch_by_id(user_id, memory_id)

    def update(self, user_id: str, request: Any) -> Optional[Memory]:
        """
        Change display fields of a memory the user owns.

        Only the fields present in the request change; ``updated_at`` moves and the
        embedding is recomputed from the new title and description.

        Returns:
            The updated Memory, or None if the user has no memory with this id
        """
        request = parse_request(UpdateRequest, request)
        existing = self.store.fetch_by_id(user_id, request.id)
        if existing is None:
            return None

        updated = replace(existing, **request.changes(), updated_at=self.clock())
        updated.embedding = self.embedder.embed(build_search_text(updated.title, updated.description, updated.body))
        self.store.upsert(updated)
        logger.info(f'Updated memory {updated.id} for user {user_id}')
        return updated

    def delete(self, user_id: str, request: Any) -> Optional[Dict[str, str]]:
        """Delete a memory the user owns; None if there is none with this id."""
        request = parse_request(DeleteRequest, request)
        if not self.store.delete(user_id, request.id):
            return None
        logger.info(f'Deleted memory {request.id} for user {user_id}')
        return {'id': request.id}

    def search(self, user_id: str, request: Any) -> List[SearchResult]:
        request = parse_request(SearchRequest, request)
        return self.retrieval.search(user_id,
                                     request.query,
                                     limit=request.limit,
                                     threshold=request.threshold,
                                     types=request.types)
