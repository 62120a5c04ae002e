"""
Shared pytest fixtures for mindcache tests.

Provides in-memory stand-ins for the store, the Bedrock model, outbound HTTP
and OpenSearch so no test touches the network.
"""

import json
import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest
from opensearchpy.exceptions import NotFoundError

from mindcache.models.core import Memory, SearchResult
from mindcache.services.content_service import ContentService
from mindcache.services.embedding import HashingEmbedder
from mindcache.services.enrichment import EnrichmentService
from mindcache.services.metadata_cache import InMemoryMetadataCache
from mindcache.services.metadata_extraction import MetadataExtractionService
from mindcache.utils.config import load_config
from mindcache.utils.memory_store import MemoryStore, decode_cursor, follows_cursor
from mindcache.utils.timestamp_utils import parse_iso

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def make_memory(user_id: str = 'user-1',
                memory_id: str = 'm1',
                body: str = 'hello world',
                memory_type: str = 'note',
                created_at: Optional[datetime] = None,
                dimension: int = 128,
                **overrides) -> Memory:
    """A stored-shape Memory embedded with the hashing embedder."""
    created_at = created_at or BASE_TIME
    memory = Memory(id=memory_id,
                    user_id=user_id,
                    type=memory_type,
                    body=body,
                    embedding=HashingEmbedder(dimension).embed(body),
                    created_at=created_at,
                    updated_at=created_at,
                    title=overrides.pop('title', None))
    return replace(memory, **overrides)


class InMemoryMemoryStore(MemoryStore):
    """MemoryStore kept in a dict keyed by ``(user_id, id)``."""

    name = 'in-memory'

    def __init__(self):
        self.records: Dict[tuple, Memory] = {}
        self.upsert_calls = 0

    def ensure_schema(self) -> None:
        return None

    def upsert(self, memory: Memory) -> Memory:
        self.upsert_calls += 1
        self.records[(memory.user_id, memory.id)] = replace(memory)
        return memory

    def fetch_by_id(self, user_id: str, memory_id: str) -> Optional[Memory]:
        memory = self.records.get((user_id, memory_id))
        return replace(memory) if memory else None

    def list(self, user_id: str, cursor=None, limit: int = 50) -> List[Memory]:
        before, before_id = decode_cursor(cursor)
        owned = [m for (owner, _), m in self.records.items() if owner == user_id and follows_cursor(m, before, before_id)]
        owned.sort(key=lambda m: (m.created_at, m.id), reverse=True)
        return [replace(m) for m in owned[:limit]]

    def delete(self, user_id: str, memory_id: str) -> bool:
        return self.records.pop((user_id, memory_id), None) is not None

    def search(self, user_id, query_vector, limit, types=None, score_threshold=None) -> List[SearchResult]:
        results = []
        for (owner, _), memory in self.records.items():
            if owner != user_id or (types and memory.type not in types):
                continue
            score = cosine(memory.embedding, query_vector)
            if score_threshold is None or score >= score_threshold:
                results.append(SearchResult(memory=replace(memory), score=score))
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]


class FailingMemoryStore(InMemoryMemoryStore):
    """Store whose writes always fail."""

    def upsert(self, memory: Memory) -> Memory:
        self.upsert_calls += 1
        raise RuntimeError('store unavailable')


class FakeLLM:
    """Scripted stand-in for BedrockLLM.generate_text.

    Each call pops the next scripted reply; an Exception instance is raised
    instead of returned.
    """

    def __init__(self, replies: Optional[List[Any]] = None):
        self.replies = list(replies or [])
        self.calls: List[Dict[str, Any]] = []

    def generate_text(self, prompt, system_prompt, model_id=None, max_tokens=None, temperature=None):
        self.calls.append({'prompt': prompt, 'system_prompt': system_prompt, 'model_id': model_id})
        if not self.replies:
            raise RuntimeError('no scripted reply')
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def health_check(self) -> bool:
        return True


class FakeResponse:
    """Enough of requests.Response for the extractor."""

    def __init__(self, status_code: int = 200, text: str = '', json_data: Any = None, headers=None, url: str = ''):
        self.status_code = status_code
        self.text = text if json_data is None else json.dumps(json_data)
        self.headers = headers if headers is not None else {'Content-Type': 'text/html; charset=utf-8'}
        self.url = url

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """requests.Session replacement routing by URL prefix."""

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes = routes or {}
        self.calls: List[Dict[str, Any]] = []

    def get(self, url, params=None, headers=None, timeout=None, allow_redirects=True):
        self.calls.append({'url': url, 'params': params, 'headers': headers, 'timeout': timeout})
        for prefix, response in self.routes.items():
            if url.startswith(prefix):
                if isinstance(response, Exception):
                    raise response
                if not response.url:
                    response.url = url
                return response
        return FakeResponse(status_code=404, text='not found', url=url)


class FakeIndices:

    def __init__(self, client: 'FakeOpenSearchClient'):
        self.client = client
        self.created: List[str] = []

    def exists(self, index):
        return index in self.client.indices_data

    def create(self, index, body):
        self.created.append(index)
        self.client.indices_data[index] = {}
        self.client.mappings[index] = body
        return {'acknowledged': True}


class FakeOpenSearchClient:
    """Dict-backed subset of the OpenSearch API used by OpenSearchMemoryStore."""

    def __init__(self):
        self.indices_data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.mappings: Dict[str, Any] = {}
        self.indices = FakeIndices(self)
        self.searches: List[Dict[str, Any]] = []

    def _index(self, index):
        if index not in self.indices_data:
            raise NotFoundError(404, 'index_not_found_exception', {'index': index})
        return self.indices_data[index]

    def index(self, index, id, body, params=None):
        docs = self._index(index)
        result = 'updated' if id in docs else 'created'
        docs[id] = json.loads(json.dumps(body))
        return {'_id': id, 'result': result}

    def get(self, index, id):
        docs = self._index(index)
        if id not in docs:
            raise NotFoundError(404, 'not_found', {'_id': id, 'found': False})
        return {'_id': id, 'found': True, '_source': docs[id]}

    def mget(self, index, body):
        docs = self._index(index)
        return {
            'docs': [{
                '_id': doc_id,
                'found': doc_id in docs,
                '_source': docs.get(doc_id)
            } for doc_id in body['ids']]
        }

    def delete(self, index, id, params=None):
        docs = self._index(index)
        if id not in docs:
            raise NotFoundError(404, 'not_found', {'_id': id, 'result': 'not_found'})
        del docs[id]
        return {'_id': id, 'result': 'deleted'}

    @staticmethod
    def _matches(source: Dict[str, Any], query: Dict[str, Any]) -> bool:
        if 'match_all' in query:
            return True
        if 'range' in query:
            field, bounds = next(iter(query['range'].items()))
            created_at = parse_iso(source[field])
            if 'lte' in bounds:
                return created_at <= parse_iso(bounds['lte'])
            return created_at < parse_iso(bounds['lt'])
        if 'terms' in query:
            field, values = next(iter(query['terms'].items()))
            return source.get(field) in values
        if 'bool' in query:
            return all(FakeOpenSearchClient._matches(source, clause) for clause in query['bool'].get('filter', []))
        raise AssertionError(f'unsupported query {query}')

    def search(self, index, body):
        self.searches.append(body)
        docs = self._index(index)
        query = body['query']
        size = body.get('size', 10)

        if 'knn' in query:
            knn = query['knn']['embedding']
            candidates = [(doc_id, source) for doc_id, source in docs.items()
                          if 'embedding' in source and ('filter' not in knn or self._matches(source, knn['filter']))]
            scored = [(doc_id, source, (1 + cosine(source['embedding'], knn['vector'])) / 2) for doc_id, source in candidates]
            scored.sort(key=lambda item: item[2], reverse=True)
            hits = [{'_id': doc_id, '_score': score, '_source': self._strip(source, body)}
                    for doc_id, source, score in scored[:knn['k']][:size]]
            return {'hits': {'hits': hits}}

        matched = [(doc_id, source) for doc_id, source in docs.items() if self._matches(source, query)]
        sort = body.get('sort') or []
        if sort and 'id' in sort[0]:
            matched.sort(key=lambda item: item[1]['id'])
            if 'search_after' in body:
                matched = [item for item in matched if item[1]['id'] > body['search_after'][0]]
            hits = [{'_id': doc_id, '_score': None, 'sort': [source['id']]} for doc_id, source in matched[:size]]
        else:
            matched.sort(key=lambda item: item[1]['created_at'], reverse=True)
            hits = [{'_id': doc_id, '_score': None, '_source': self._strip(source, body)} for doc_id, source in matched[:size]]
        return {'hits': {'hits': hits}}

    @staticmethod
    def _strip(source: Dict[str, Any], body: Dict[str, Any]) -> Dict[str, Any]:
        excludes = (body.get('_source') or {}).get('excludes', [])
        return {key: value for key, value in source.items() if key not in excludes}


@pytest.fixture
def app_config():
    """Configuration with enrichment on, in-process caching and default limits."""
    config = load_config()
    return replace(config,
                   bedrock_llm=replace(config.bedrock_llm, enabled=True),
                   embedding=replace(config.embedding, provider='hash', dimension=128),
                   cache=replace(config.cache, backend='memory', metadata_ttl_seconds=86400, tweet_ttl_seconds=43200),
                   extraction=replace(config.extraction, timeout_seconds=5.0, max_body_chars=4000),
                   search=replace(config.search, similarity_threshold=0.2, result_limit=20, list_limit=50))


@pytest.fixture
def store():
    return InMemoryMemoryStore()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def metadata_cache():
    return InMemoryMetadataCache()


@pytest.fixture
def extractor(metadata_cache, app_config, fake_session):
    return MetadataExtractionService(cache=metadata_cache, config=app_config, session=fake_session)


@pytest.fixture
def enrichment(fake_llm, app_config):
    return EnrichmentService(llm=fake_llm, config=app_config.bedrock_llm)


@pytest.fixture
def content_service(store, extractor, enrichment, app_config):
    clock_ticks = iter(BASE_TIME + timedelta(minutes=i) for i in range(1, 10_000))
    return ContentService(store,
                          embedder=HashingEmbedder(128),
                          extractor=extractor,
                          enrichment=enrichment,
                          config=app_config,
                          clock=lambda: next(clock_ticks))
