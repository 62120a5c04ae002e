"""
Storage contract for memories and the factory that picks a backend at start-up.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence, Tuple, Union

from ..models.core import Memory, SearchResult
from .config import StoreConfig
from .config import config as app_config
from .logging_config import get_logger
from .timestamp_utils import parse_iso, to_iso

logger = get_logger(__name__)

Cursor = Union[datetime, str, None]

CURSOR_SEPARATOR = '|'


def encode_cursor(memory: Memory) -> str:
    """Cursor resuming a listing right after ``memory``, ties on ``created_at`` broken by id."""
    return f'{to_iso(memory.created_at)}{CURSOR_SEPARATOR}{memory.id}'


def decode_cursor(cursor: Cursor) -> Tuple[Optional[datetime], Optional[str]]:
    """
    Split a cursor into its timestamp and optional id.

    A bare timestamp (datetime or ISO string) yields no id.

    Raises:
        ValueError: If the timestamp part does not parse
    """
    if isinstance(cursor, str) and CURSOR_SEPARATOR in cursor:
        timestamp, _, memory_id = cursor.partition(CURSOR_SEPARATOR)
        return parse_iso(timestamp), memory_id or None
    return parse_iso(cursor), None


def follows_cursor(memory: Memory, before: Optional[datetime], before_id: Optional[str] = None) -> bool:
    """Whether ``memory`` sorts after the cursor position in a newest-first listing."""
    if before is None:
        return True
    if memory.created_at < before:
        return True
    return before_id is not None and memory.created_at == before and memory.id < before_id


class MemoryStore(ABC):
    """Per-user persistence with vector similarity search.

    Every operation is scoped by ``user_id``; a record is never visible to or
    mutable by another user, even when the ids collide.
    """

    name = 'memory-store'

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables, extensions or index templates the backend needs."""

    @abstractmethod
    def upsert(self, memory: Memory) -> Memory:
        """Insert or fully replace the record identified by ``(memory.user_id, memory.id)``."""

    @abstractmethod
    def fetch_by_id(self, user_id: str, memory_id: str) -> Optional[Memory]:
        ...

    @abstractmethod
    def list(self, user_id: str, cursor: Cursor = None, limit: int = 50) -> List[Memory]:
        """Newest first, ties ordered by id descending.

        A timestamp cursor returns records created strictly before it; a cursor
        from :func:`encode_cursor` also returns same-timestamp records with a
        smaller id.
        """

    @abstractmethod
    def delete(self, user_id: str, memory_id: str) -> bool:
        """Remove the record; False if the user has no record with this id."""

    @abstractmethod
    def search(self,
               user_id: str,
               query_vector: List[float],
               limit: int,
               types: Optional[Sequence[str]] = None,
               score_threshold: Optional[float] = None) -> List[SearchResult]:
        """Most similar records first, optionally restricted to ``types`` and ``score >= score_threshold``."""

    def health_check(self) -> bool:
        return True


def create_memory_store(config: Optional[StoreConfig] = None, dimension: Optional[int] = None) -> MemoryStore:
    """
    Build the storage backend selected by ``MEMORY_STORE_BACKEND``.

    Args:
        config: StoreConfig instance, uses default if None
        dimension: Embedding length, defaults to the configured embedding dimension

    Returns:
        RelationalMemoryStore for ``postgres`` or OpenSearchMemoryStore for ``opensearch``

    Raises:
        ValueError: If the backend name is unknown
    """
    config = config or app_config.store
    dimension = dimension or app_config.embedding.dimension

    if config.backend in ('postgres', 'postgresql', 'sql'):
        from .sql_store import RelationalMemoryStore
        return RelationalMemoryStore(config.postgres, dimension)
    if config.backend == 'opensearch':
        from .opensearch_client import OpenSearchMemoryStore
        return OpenSearchMemoryStore(config.opensearch, dimension)
    raise ValueError(f'Unknown memory store backend: {config.backend}')
