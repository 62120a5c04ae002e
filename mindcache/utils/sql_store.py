"""
Relational memory store: PostgreSQL with pgvector, through SQLAlchemy Core.

SQLite works for local use and tests; there, similarity is computed in process
because SQLite has no vector operators.
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from pgvector.sqlalchemy import Vector
from sqlalchemy import (JSON, Column, DateTime, Enum, Index, MetaData, String, Table, Text, and_, create_engine, delete,
                        or_, select, text)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import CONTENT_TYPES, Memory, SearchResult
from ..models.errors import MemoryStoreError
from .config import PostgresConfig
from .logging_config import get_logger
from .memory_store import Cursor, MemoryStore, decode_cursor
from .timestamp_utils import as_utc

logger = get_logger(__name__)

TABLE_NAME = 'memories'


def build_memories_table(metadata: MetaData, dimension: int) -> Table:
    return Table(
        TABLE_NAME,
        metadata,
        Column('user_id', String(255), primary_key=True),
        Column('id', String(64), primary_key=True),
        Column('type', Enum(*CONTENT_TYPES, name='content_type'), nullable=False),
        Column('title', Text),
        Column('description', Text),
        Column('body', Text, nullable=False),
        Column('source_id', Text),
        Column('source_url', Text),
        Column('canonical_url', Text),
        Column('site_name', Text),
        Column('author', Text),
        Column('published_at', DateTime(timezone=True)),
        Column('thumbnail_url', Text),
        Column('favicon_url', Text),
        Column('raw_metadata', JSON().with_variant(JSONB(), 'postgresql'), nullable=False, default=dict),
        Column('embedding', Vector(dimension), nullable=False),
        Column('created_at', DateTime(timezone=True), nullable=False),
        Column('updated_at', DateTime(timezone=True), nullable=False),
        Index('ix_memories_user_created', 'user_id', 'created_at'),
        Index('ix_memories_user_type', 'user_id', 'type'),
    )


def _cosine(a: np.ndarray, b: np.ndarray) -> float:
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


class RelationalMemoryStore(MemoryStore):
    """MemoryStore backed by a single ``memories`` table keyed by ``(user_id, id)``."""

    name = 'postgres'

    def __init__(self, config: Optional[PostgresConfig] = None, dimension: int = 128, engine: Optional[Engine] = None):
        """
        Initialize the relational store.

        Args:
            config: PostgresConfig with the database URL; ignored when ``engine`` is given
            dimension: Embedding length of the vector column
            engine: Pre-built SQLAlchemy engine
        """
        self.dimension = dimension
        if engine is None:
            if config is None:
                raise ValueError('Either config or engine is required')
            connect_args: Dict[str, Any] = {}
            if config.url.startswith('postgresql'):
                timeout_ms = int(config.timeout_seconds * 1000)
                connect_args = {
                    'connect_timeout': max(1, int(config.timeout_seconds)),
                    'options': f'-c statement_timeout={timeout_ms}'
                }
            engine = create_engine(config.url, pool_pre_ping=True, connect_args=connect_args)
        self.engine = engine
        self.metadata = MetaData()
        self.table = build_memories_table(self.metadata, dimension)
        logger.info(f'Initialized relational memory store on {self.engine.dialect.name}')

    @property
    def is_postgres(self) -> bool:
        return self.engine.dialect.name == 'postgresql'

    def ensure_schema(self) -> None:
        try:
            with self.engine.begin() as conn:
                if self.is_postgres:
                    conn.execute(text('CREATE EXTENSION IF NOT EXISTS vector'))
                self.metadata.create_all(conn)
            logger.info(f'Ensured table {TABLE_NAME}')
        except SQLAlchemyError as e:
            logger.error(f'Error creating schema: {e}')
            raise MemoryStoreError(f'Failed to create schema: {e}') from e

    @staticmethod
    def _to_row(memory: Memory) -> Dict[str, Any]:
        return {
            'user_id': memory.user_id,
            'id': memory.id,
            'type': memory.type,
            'title': memory.title,
            'description': memory.description,
            'body': memory.body,
            'source_id': memory.source_id,
            'source_url': memory.source_url,
            'canonical_url': memory.canonical_url,
            'site_name': memory.site_name,
            'author': memory.author,
            'published_at': memory.published_at,
            'thumbnail_url': memory.thumbnail_url,
            'favicon_url': memory.favicon_url,
            'raw_metadata': memory.raw_metadata or {},
            'embedding': list(memory.embedding),
            'created_at': memory.created_at,
            'updated_at': memory.updated_at,
        }

    @staticmethod
    def _from_row(row: Row) -> Memory:
        data = dict(row._mapping)
        data.pop('distance', None)
        embedding = data.pop('embedding')
        data['embedding'] = [float(value) for value in embedding] if embedding is not None else []
        data['raw_metadata'] = data.get('raw_metadata') or {}
        for key in ('created_at', 'updated_at', 'published_at'):
            if data.get(key) is not None:
                data[key] = as_utc(data[key])
        return Memory(**data)

    def _insert(self):
        if self.is_postgres:
            from sqlalchemy.dialects.postgresql import insert
        elif self.engine.dialect.name == 'sqlite':
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise MemoryStoreError(f'Upsert is not supported on {self.engine.dialect.name}')
        return insert(self.table)

    def upsert(self, memory: Memory) -> Memory:
        if len(memory.embedding) != self.dimension:
            raise MemoryStoreError(f'Embedding has {len(memory.embedding)} dimensions, expected {self.dimension}')

        row = self._to_row(memory)
        stmt = self._insert().values(**row)
        stmt = stmt.on_conflict_do_update(index_elements=[self.table.c.user_id, self.table.c.id],
                                          set_={key: stmt.excluded[key] for key in row if key not in ('user_id', 'id')})
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f'Error upserting memory {memory.id}: {e}')
            raise MemoryStoreError(f'Failed to upsert memory: {e}') from e

        logger.debug(f'Upserted memory {memory.id} for user {memory.user_id}')
        return memory

    def fetch_by_id(self, user_id: str, memory_id: str) -> Optional[Memory]:
        stmt = select(self.table).where(and_(self.table.c.user_id == user_id, self.table.c.id == memory_id))
        try:
            with self.engine.connect() as conn:
                row = conn.execute(stmt).first()
        except SQLAlchemyError as e:
            logger.error(f'Error fetching memory {memory_id}: {e}')
            raise MemoryStoreError(f'Failed to fetch memory: {e}') from e
        return self._from_row(row) if row is not None else None

    def list(self, user_id: str, cursor: Cursor = None, limit: int = 50) -> List[Memory]:
        stmt = select(self.table).where(self.table.c.user_id == user_id)
        before, before_id = decode_cursor(cursor)
        if before is not None:
            older = self.table.c.created_at < before
            if before_id is not None:
                older = or_(older, and_(self.table.c.created_at == before, self.table.c.id < before_id))
            stmt = stmt.where(older)
        stmt = stmt.order_by(self.table.c.created_at.desc(), self.table.c.id.desc()).limit(limit)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.error(f'Error listing memories for user {user_id}: {e}')
            raise MemoryStoreError(f'Failed to list memories: {e}') from e
        return [self._from_row(row) for row in rows]

    def delete(self, user_id: str, memory_id: str) -> bool:
        stmt = delete(self.table).where(and_(self.table.c.user_id == user_id, self.table.c.id == memory_id))
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f'Error deleting memory {memory_id}: {e}')
            raise MemoryStoreError(f'Failed to delete memory: {e}') from e

        deleted = result.rowcount > 0
        if not deleted:
            logger.warning(f'Memory {memory_id} not found for deletion')
        return deleted

    def _search_statement(self,
                          user_id: str,
                          query_vector: List[float],
                          limit: int,
                          types: Optional[Sequence[str]] = None,
                          score_threshold: Optional[float] = None):
        """``1 - (embedding <=> query)`` ranked by cosine distance."""
        distance = self.table.c.embedding.cosine_distance(query_vector)
        stmt = select(self.table, distance.label('distance')).where(self.table.c.user_id == user_id)
        if types:
            stmt = stmt.where(self.table.c.type.in_(list(types)))
        if score_threshold is not None:
            stmt = stmt.where(distance <= 1 - score_threshold)
        return stmt.order_by(distance).limit(limit)

    def search(self,
               user_id: str,
               query_vector: List[float],
               limit: int,
               types: Optional[Sequence[str]] = None,
               score_threshold: Optional[float] = None) -> List[SearchResult]:
        if not self.is_postgres:
            return self._search_in_process(user_id, query_vector, limit, types, score_threshold)

        stmt = self._search_statement(user_id, query_vector, limit, types, score_threshold)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.error(f'Error searching memories for user {user_id}: {e}')
            raise MemoryStoreError(f'Vector search failed: {e}') from e

        results = []
        for row in rows:
            # pgvector yields NaN distance for zero vectors
            distance = row.distance
            score = 0.0 if distance is None or np.isnan(distance) else 1.0 - float(distance)
            results.append(SearchResult(memory=self._from_row(row), score=score))
        logger.debug(f'Vector search returned {len(results)} results for user {user_id}')
        return results

    def _search_in_process(self,
                           user_id: str,
                           query_vector: List[float],
                           limit: int,
                           types: Optional[Sequence[str]] = None,
                           score_threshold: Optional[float] = None) -> List[SearchResult]:
        stmt = select(self.table).where(self.table.c.user_id == user_id)
        if types:
            stmt = stmt.where(self.table.c.type.in_(list(types)))
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.error(f'Error searching memories for user {user_id}: {e}')
            raise MemoryStoreError(f'Vector search failed: {e}') from e

        query = np.asarray(query_vector, dtype=float)
        results = []
        for row in rows:
            memory = self._from_row(row)
            score = _cosine(np.asarray(memory.embedding, dtype=float), query)
            if score_threshold is None or score >= score_threshold:
                results.append(SearchResult(memory=memory, score=score))
        results.sort(key=lambda result: result.score, reverse=True)
        return results[:limit]

    def health_check(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text('SELECT 1'))
            return True
        except Exception as e:
            logger.error(f'Relational store health check failed: {e}')
            return False
