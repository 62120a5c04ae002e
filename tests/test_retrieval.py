"""Tests for threshold filtering and its fallback."""

from mindcache.models.core import SearchResult
from mindcache.services.embedding import HashingEmbedder
from mindcache.services.retrieval import RetrievalService
from tests.conftest import InMemoryMemoryStore, make_memory


class ScriptedStore(InMemoryMemoryStore):
    """Store returning fixed scores so thresholds can be tested exactly."""

    def __init__(self, scores):
        super().__init__()
        self.scores = scores
        self.search_calls = []

    def search(self, user_id, query_vector, limit, types=None, score_threshold=None):
        self.search_calls.append({'limit': limit, 'types': types, 'score_threshold': score_threshold})
        results = [SearchResult(memory=make_memory(user_id, f'm{i}'), score=score) for i, score in enumerate(self.scores)]
        return results[:limit]


def make_service(store, app_config):
    return RetrievalService(store, embedder=HashingEmbedder(128), config=app_config.search)


class TestRetrievalService:

    def test_filters_below_threshold(self, app_config):
        service = make_service(ScriptedStore([0.9, 0.5, 0.1]), app_config)
        results = service.search('u', 'query', threshold=0.4)
        assert [r.score for r in results] == [0.9, 0.5]

    def test_threshold_is_inclusive(self, app_config):
        service = make_service(ScriptedStore([0.9, 0.4, 0.1]), app_config)
        results = service.search('u', 'query', threshold=0.4)
        assert [r.score for r in results] == [0.9, 0.4]

    def test_falls_back_to_unfiltered_when_nothing_passes(self, app_config):
        service = make_service(ScriptedStore([0.15, 0.1, 0.05]), app_config)
        results = service.search('u', 'query', threshold=0.2)
        assert [r.score for r in results] == [0.15, 0.1, 0.05]

    def test_fallback_respects_limit(self, app_config):
        service = make_service(ScriptedStore([0.1] * 30), app_config)
        assert len(service.search('u', 'query', limit=5, threshold=0.9)) == 5

    def test_defaults_from_configuration(self, app_config):
        app_config.search.similarity_threshold = 0.6
        app_config.search.result_limit = 7
        store = ScriptedStore([0.7, 0.65, 0.3])
        service = make_service(store, app_config)

        results = service.search('u', 'query')

        assert [r.score for r in results] == [0.7, 0.65]
        assert store.search_calls[0]['limit'] == 7

    def test_zero_threshold_keeps_everything(self, app_config):
        service = make_service(ScriptedStore([0.5, 0.0]), app_config)
        assert len(service.search('u', 'query', threshold=0.0)) == 2

    def test_types_forwarded(self, app_config):
        store = ScriptedStore([0.9])
        make_service(store, app_config).search('u', 'query', types=['tweet'])
        assert store.search_calls[0]['types'] == ['tweet']

    def test_empty_store_returns_empty(self, app_config):
        assert make_service(ScriptedStore([]), app_config).search('u', 'query') == []

    def test_query_embedded_as_query(self, app_config):
        class RecordingEmbedder(HashingEmbedder):

            def __init__(self):
                super().__init__(128)
                self.queries = []

            def embed(self, text):
                raise AssertionError('documents path used for a query')

            def embed_query(self, text):
                self.queries.append(text)
                return [0.0] * self.dimension

        embedder = RecordingEmbedder()
        RetrievalService(ScriptedStore([0.9]), embedder=embedder, config=app_config.search).search('u', 'tide pools')
        assert embedder.queries == ['tide pools']
