"""
OpenSearch memory store: one k-NN index per user namespace.
"""

import hashlib
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from ..models.core import Memory, SearchResult
from ..models.errors import MemoryStoreError
from .config import OpenSearchConfig
from .logging_config import get_logger
from .memory_store import Cursor, MemoryStore, decode_cursor, follows_cursor
from .timestamp_utils import parse_iso, parse_iso_or_none, to_iso

logger = get_logger(__name__)

ID_PAGE_SIZE = 100
MGET_BATCH_SIZE = 1000

DOCUMENT_FIELDS = ('id', 'user_id', 'type', 'title', 'description', 'body', 'source_id', 'source_url', 'canonical_url',
                   'site_name', 'author', 'thumbnail_url', 'favicon_url')


class OpenSearchError(MemoryStoreError):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchMemoryStore(MemoryStore):
    """OpenSearch store with AWS authentication and error handling."""

    name = 'opensearch'

    def __init__(self, config: OpenSearchConfig, dimension: int = 128, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch store.

        Args:
            config: OpenSearchConfig instance with connection parameters
            dimension: Embedding length of the knn_vector field
            client: Pre-built OpenSearch client
        """
        self.config = config
        self.dimension = dimension
        self._known_indices: Set[str] = set()

        if client is None:
            endpoint = config.endpoint
            use_ssl = not endpoint.startswith('http://')
            if '://' in endpoint:
                # Remove protocol if present
                endpoint = endpoint.split('://', 1)[1]

            auth = None
            if config.use_auth:
                credentials = boto3.Session().get_credentials()
                auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)

            client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                http_auth=auth,
                                use_ssl=use_ssl,
                                verify_certs=use_ssl,
                                timeout=config.timeout_seconds,
                                connection_class=RequestsHttpConnection)
        self.client = client

        logger.info(f'Initialized OpenSearch memory store for endpoint: {config.endpoint}')

    def index_name(self, user_id: str) -> str:
        """Index holding one user's memories; user ids are hashed into valid index names."""
        digest = hashlib.blake2b(user_id.encode('utf-8'), digest_size=16).hexdigest()
        return f'{self.config.index_prefix}{digest}'

    def _index_body(self) -> Dict[str, Any]:
        keyword = {'type': 'keyword'}
        return {
            'mappings': {
                'properties': {
                    'id': keyword,
                    'user_id': keyword,
                    'type': keyword,
                    'title': {
                        'type': 'text'
                    },
                    'description': {
                        'type': 'text'
                    },
                    'body': {
                        'type': 'text'
                    },
                    'source_id': keyword,
                    'source_url': keyword,
                    'canonical_url': keyword,
                    'site_name': keyword,
                    'author': keyword,
                    'thumbnail_url': keyword,
                    'favicon_url': keyword,
                    'raw_metadata': {
                        'type': 'object',
                        'enabled': False
                    },
                    'embedding': {
                        'type': 'knn_vector',
                        'dimension': self.dimension,
                        'method': {
                            'name': 'hnsw',
                            'space_type': 'cosinesimil',
                            'engine': 'lucene'
                        }
                    },
                    'published_at': {
                        'type': 'date'
                    },
                    'created_at': {
                        'type': 'date'
                    },
                    'updated_at': {
                        'type': 'date'
                    }
                }
            },
            'settings': {
                'index': {
                    'knn': True
                }
            }
        }

    def ensure_schema(self) -> None:
        """Indices are created per user on first write."""
        return None

    def create_index_if_not_exists(self, index_name: str) -> str:
        """
        Create a user index if it doesn't exist.

        Returns:
            'exists' or 'created'
        """
        if index_name in self._known_indices:
            return 'exists'
        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                self._known_indices.add(index_name)
                return 'exists'

            self.client.indices.create(index=index_name, body=self._index_body())
            logger.info(f'Created index {index_name}')
            self._known_indices.add(index_name)
            return 'created'
        except OpenSearchException as e:
            # Another request may have created it first
            if len(e.args) >= 2 and e.args[1] == 'resource_already_exists_exception':
                self._known_indices.add(index_name)
                return 'exists'
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}') from e

    def _document(self, memory: Memory) -> Dict[str, Any]:
        document = {name: getattr(memory, name) for name in DOCUMENT_FIELDS}
        document['raw_metadata'] = memory.raw_metadata or {}
        document['published_at'] = to_iso(memory.published_at) if memory.published_at else None
        document['created_at'] = to_iso(memory.created_at)
        document['updated_at'] = to_iso(memory.updated_at)
        # cosinesimil rejects zero vectors; an absent field reads back as zeros
        if any(memory.embedding):
            document['embedding'] = list(memory.embedding)
        return document

    def _memory(self, source: Dict[str, Any]) -> Memory:
        return Memory(
            **{name: source.get(name) for name in DOCUMENT_FIELDS if name != 'body'},
            body=source.get('body') or '',
            embedding=[float(value) for value in source['embedding']] if source.get('embedding') else [0.0] * self.dimension,
            raw_metadata=source.get('raw_metadata') or {},
            published_at=parse_iso_or_none(source.get('published_at')),
            created_at=parse_iso(source['created_at']),
            updated_at=parse_iso(source['updated_at']),
        )

    def upsert(self, memory: Memory) -> Memory:
        if len(memory.embedding) != self.dimension:
            raise OpenSearchError(f'Embedding has {len(memory.embedding)} dimensions, expected {self.dimension}')

        index_name = self.index_name(memory.user_id)
        self.create_index_if_not_exists(index_name)
        params = {'refresh': 'wait_for'} if self.config.refresh_on_write else {}
        try:
            response = self.client.index(index=index_name, id=memory.id, body=self._document(memory), params=params)
        except OpenSearchException as e:
            logger.error(f'Error indexing memory {memory.id}: {e}')
            raise OpenSearchError(f'Failed to index memory: {e}') from e

        if response.get('result') not in ('created', 'updated'):
            logger.warning(f'Unexpected result indexing memory: {response}')
        logger.debug(f'Indexed memory {memory.id} in {index_name}')
        return memory

    def fetch_by_id(self, user_id: str, memory_id: str) -> Optional[Memory]:
        index_name = self.index_name(user_id)
        try:
            response = self.client.get(index=index_name, id=memory_id)
        except NotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting memory {memory_id} for user {user_id}: {e}')
            raise OpenSearchError(f'Failed to get memory: {e}') from e

        source = response.get('_source') if response.get('found', True) else None
        if not source or source.get('user_id') != user_id:
            return None
        return self._memory(source)

    def _list_ids(self, index_name: str, before: Optional[datetime], inclusive: bool = False) -> List[str]:
        """Every id in the index created before ``before``, paged with ``search_after`` on the id keyword."""
        query: Dict[str, Any] = {'match_all': {}}
        if before is not None:
            query = {'range': {'created_at': {'lte' if inclusive else 'lt': to_iso(before)}}}

        ids: List[str] = []
        search_after = None
        while True:
            body: Dict[str, Any] = {'size': ID_PAGE_SIZE, 'query': query, 'sort': [{'id': 'asc'}], '_source': False}
            if search_after is not None:
                body['search_after'] = search_after
            hits = self.client.search(index=index_name, body=body)['hits']['hits']
            ids.extend(hit['_id'] for hit in hits)
            if len(hits) < ID_PAGE_SIZE:
                return ids
            search_after = hits[-1]['sort']

    def list(self, user_id: str, cursor: Cursor = None, limit: int = 50) -> List[Memory]:
        index_name = self.index_name(user_id)
        before, before_id = decode_cursor(cursor)
        try:
            ids = self._list_ids(index_name, before, inclusive=before_id is not None)
            memories = []
            for start in range(0, len(ids), MGET_BATCH_SIZE):
                response = self.client.mget(index=index_name, body={'ids': ids[start:start + MGET_BATCH_SIZE]})
                memories.extend(self._memory(doc['_source']) for doc in response['docs'] if doc.get('found'))
        except NotFoundError:
            return []
        except OpenSearchException as e:
            logger.error(f'Error listing memories for user {user_id}: {e}')
            raise OpenSearchError(f'Failed to list memories: {e}') from e

        memories.sort(key=lambda memory: (memory.created_at, memory.id), reverse=True)
        memories = [memory for memory in memories if follows_cursor(memory, before, before_id)]
        return memories[:limit]

    def delete(self, user_id: str, memory_id: str) -> bool:
        index_name = self.index_name(user_id)
        params = {'refresh': 'wait_for'} if self.config.refresh_on_write else {}
        try:
            response = self.client.delete(index=index_name, id=memory_id, params=params)
        except NotFoundError:
            logger.warning(f'Memory {memory_id} not found for deletion')
            return False
        except OpenSearchException as e:
            logger.error(f'Error deleting memory {memory_id}: {e}')
            raise OpenSearchError(f'Failed to delete memory: {e}') from e

        success = response.get('result') == 'deleted'
        if success:
            logger.debug(f'Deleted memory {memory_id} from {index_name}')
        else:
            logger.warning(f'Memory {memory_id} not found for deletion')
        return success

    def search(self,
               user_id: str,
               query_vector: List[float],
               limit: int,
               types: Optional[Sequence[str]] = None,
               score_threshold: Optional[float] = None) -> List[SearchResult]:
        index_name = self.index_name(user_id)
        type_filter = {'terms': {'type': list(types)}} if types else None

        if any(query_vector):
            knn: Dict[str, Any] = {'vector': list(query_vector), 'k': limit}
            if type_filter:
                knn['filter'] = type_filter
            query: Dict[str, Any] = {'knn': {'embedding': knn}}
            sort = None
        else:
            # No direction to rank by: every candidate scores zero, newest first
            query = {'bool': {'filter': [type_filter]}} if type_filter else {'match_all': {}}
            sort = [{'created_at': 'desc'}]

        search_body: Dict[str, Any] = {
            'size': limit,
            'query': query,
            '_source': {
                'excludes': ['embedding']  # Don't return embedding in results
            }
        }
        if sort:
            search_body['sort'] = sort

        try:
            response = self.client.search(index=index_name, body=search_body)
        except NotFoundError:
            return []
        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}') from e

        results = []
        for hit in response['hits']['hits']:
            # Lucene reports cosinesimil as (1 + cos) / 2
            score = 2.0 * float(hit['_score']) - 1.0 if sort is None else 0.0
            if score_threshold is not None and score < score_threshold:
                continue
            memory = self._memory(hit['_source'])
            memory.embedding = []
            results.append(SearchResult(memory=memory, score=score))

        logger.debug(f'Vector search returned {len(results)} results for user {user_id}')
        return results

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=f'{self.config.index_prefix}health')

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
