"""
TTL cache for extracted source metadata.

Cache reads and writes are best effort: any backend failure is logged and
treated as a miss, so an outage degrades to "always extract".
"""

import json
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from ..utils.config import CacheConfig
from ..utils.config import config as app_config
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


def normalize_url(url: str) -> str:
    """Stable form of a URL for cache keys: lowercase scheme/host, no fragment, no trailing slash."""
    parts = urlsplit(url.strip())
    path = parts.path
    if len(path) > 1 and path.endswith('/'):
        path = path.rstrip('/') or '/'
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ''))


class CacheKeys:
    """Key scheme shared by the extractor and anything that inspects the cache."""

    @staticmethod
    def metadata(url: str) -> str:
        return f'metadata:{url}'

    @staticmethod
    def website(url: str) -> str:
        return CacheKeys.metadata(normalize_url(url))

    @staticmethod
    def youtube(video_id: str) -> str:
        return CacheKeys.metadata(f'youtube:{video_id}')

    @staticmethod
    def tweet(tweet_id: str) -> str:
        return f'tweet:{tweet_id}'


class MetadataCache:
    """Base cache: subclasses implement ``_get``/``_set``; failures never escape."""

    name = 'metadata-cache'

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            value = self._get(key)
        except Exception as e:
            logger.warning(f'cache.metadata.error op=get key={key}: {e}')
            return None
        if value is not None and not isinstance(value, dict):
            logger.warning(f'cache.metadata.error op=get key={key}: unexpected {type(value).__name__} entry')
            return None
        return value

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        try:
            self._set(key, value, ttl_seconds)
        except Exception as e:
            logger.warning(f'cache.metadata.error op=set key={key}: {e}')

    def health_check(self) -> bool:
        return True

    def _get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def _set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        raise NotImplementedError


class NullMetadataCache(MetadataCache):
    """Cache that never stores anything."""

    name = 'disabled'

    def _get(self, key: str) -> Optional[Dict[str, Any]]:
        return None

    def _set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        return None


class InMemoryMetadataCache(MetadataCache):
    """Per-process cache with per-entry expiry."""

    name = 'memory'

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    def _get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
        return json.loads(payload)

    def _set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        # Stored serialized so callers cannot mutate cached entries
        payload = json.dumps(value)
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, payload)


class RedisMetadataCache(MetadataCache):
    """Redis-backed cache shared between processes."""

    name = 'redis'

    def __init__(self, url: Optional[str] = None, client=None, timeout_seconds: float = 2.0):
        if client is None:
            import redis
            client = redis.Redis.from_url(url, socket_timeout=timeout_seconds, socket_connect_timeout=timeout_seconds)
        self.client = client

    def _get(self, key: str) -> Optional[Dict[str, Any]]:
        payload = self.client.get(key)
        if payload is None:
            return None
        if isinstance(payload, bytes):
            payload = payload.decode('utf-8')
        return json.loads(payload)

    def _set(self, key: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        self.client.set(key, json.dumps(value), ex=ttl_seconds)

    def health_check(self) -> bool:
        try:
            return bool(self.client.ping())
        except Exception as e:
            logger.error(f'Redis health check failed: {e}')
            return False


def create_metadata_cache(config: Optional[CacheConfig] = None) -> MetadataCache:
    """
    Build the cache selected by configuration.

    A Redis backend without ``REDIS_URL`` (or an unknown backend name) falls back to
    the in-process cache with a warning.
    """
    config = config or app_config.cache
    if config.backend == 'redis':
        if config.redis_url:
            return RedisMetadataCache(config.redis_url)
        logger.warning('METADATA_CACHE_BACKEND=redis but REDIS_URL is not set, using in-process cache')
        return InMemoryMetadataCache()
    if config.backend in ('none', 'disabled', 'off'):
        return NullMetadataCache()
    if config.backend != 'memory':
        logger.warning(f'Unknown metadata cache backend {config.backend!r}, using in-process cache')
    return InMemoryMetadataCache()
