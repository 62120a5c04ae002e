"""
Configuration management for AWS services, storage backends and pipeline settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    """Read an integer variable, falling back to the default when it does not parse."""
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    """Read a float variable, falling back to the default when it does not parse."""
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class BedrockLLMConfig:
    """Configuration for the Amazon Bedrock generative model."""
    region: str
    title_model_id: str
    extraction_model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    timeout_seconds: float
    enabled: bool


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    retry_attempts: int
    retry_delay: float


@dataclass
class EmbeddingConfig:
    """Configuration for the embedder used on ingestion and search."""
    provider: str
    dimension: int
    bedrock: BedrockEmbedConfig


@dataclass
class CacheConfig:
    """Configuration for the metadata cache."""
    backend: str
    redis_url: Optional[str]
    metadata_ttl_seconds: int
    tweet_ttl_seconds: int


@dataclass
class ExtractionConfig:
    """Configuration for outbound metadata extraction calls."""
    timeout_seconds: float
    user_agent: str
    max_body_chars: int


@dataclass
class SearchConfig:
    """Configuration for retrieval defaults."""
    similarity_threshold: float
    result_limit: int
    list_limit: int


@dataclass
class PostgresConfig:
    """Configuration for the relational (pgvector) backend."""
    url: str
    timeout_seconds: float


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    service: str
    index_prefix: str
    use_auth: bool
    timeout_seconds: float
    refresh_on_write: bool


@dataclass
class StoreConfig:
    """Configuration for memory persistence."""
    backend: str
    postgres: PostgresConfig
    opensearch: OpenSearchConfig


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    embedding: EmbeddingConfig
    cache: CacheConfig
    extraction: ExtractionConfig
    search: SearchConfig
    store: StoreConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          title_model_id=os.getenv('AI_TITLE_MODEL', 'openai.gpt-oss-20b-1:0'),
                                          extraction_model_id=os.getenv('AI_EXTRACTION_MODEL', 'openai.gpt-oss-20b-1:0'),
                                          max_tokens=_env_int('BEDROCK_LLM_MAX_TOKENS', 1024),
                                          temperature=_env_float('BEDROCK_LLM_TEMPERATURE', 0.0),
                                          retry_attempts=_env_int('BEDROCK_LLM_RETRY_ATTEMPTS', 2),
                                          retry_delay=_env_float('BEDROCK_LLM_RETRY_DELAY', 0.5),
                                          timeout_seconds=_env_float('BEDROCK_LLM_TIMEOUT_SECONDS', 20.0),
                                          enabled=_env_bool('AI_ENRICHMENT_ENABLED', True))

    # Embedding configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              retry_attempts=_env_int('BEDROCK_EMBED_RETRY_ATTEMPTS', 3),
                                              retry_delay=_env_float('BEDROCK_EMBED_RETRY_DELAY', 1.0))
    embedding_config = EmbeddingConfig(provider=os.getenv('EMBEDDING_PROVIDER', 'hash').strip().lower(),
                                       dimension=_env_int('EMBEDDING_DIMENSION', 128),
                                       bedrock=bedrock_embed_config)

    # Metadata cache configuration
    cache_config = CacheConfig(backend=os.getenv('METADATA_CACHE_BACKEND', 'memory').strip().lower(),
                               redis_url=os.getenv('REDIS_URL') or None,
                               metadata_ttl_seconds=_env_int('METADATA_CACHE_TTL_SECONDS', 60 * 60 * 24),
                               tweet_ttl_seconds=_env_int('TWEET_CACHE_TTL_SECONDS', 60 * 60 * 12))

    extraction_config = ExtractionConfig(timeout_seconds=_env_float('EXTRACTION_TIMEOUT_SECONDS', 10.0),
                                         user_agent=os.getenv('EXTRACTION_USER_AGENT', 'mindcache/1.0'),
                                         max_body_chars=_env_int('EXTRACTION_MAX_BODY_CHARS', 4000))

    search_config = SearchConfig(similarity_threshold=_env_float('SIMILARITY_THRESHOLD', 0.2),
                                 result_limit=_env_int('SEARCH_RESULT_LIMIT', 20),
                                 list_limit=_env_int('LIST_PAGE_LIMIT', 50))

    # Storage configuration
    postgres_config = PostgresConfig(url=os.getenv('DATABASE_URL', 'postgresql+psycopg://localhost:5432/mindcache'),
                                     timeout_seconds=_env_float('DATABASE_TIMEOUT_SECONDS', 10.0))

    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=_env_int('OPENSEARCH_PORT', 443),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'aoss'),
                                         index_prefix=os.getenv('OPENSEARCH_INDEX_PREFIX', 'mindcache-user-'),
                                         use_auth=_env_bool('OPENSEARCH_USE_AUTH', True),
                                         timeout_seconds=_env_float('OPENSEARCH_TIMEOUT_SECONDS', 10.0),
                                         refresh_on_write=_env_bool('OPENSEARCH_REFRESH_ON_WRITE', False))

    store_config = StoreConfig(backend=os.getenv('MEMORY_STORE_BACKEND', 'postgres').strip().lower(),
                               postgres=postgres_config,
                               opensearch=opensearch_config)

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     embedding=embedding_config,
                     cache=cache_config,
                     extraction=extraction_config,
                     search=search_config,
                     store=store_config)


# Global configuration instance
config = load_config()
