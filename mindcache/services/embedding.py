"""
Text embedding for ingestion and search.

The default embedder is a hashed bag-of-words ("hashing trick") vector: no model,
no network, identical output for identical input. Any object with ``dimension``
and ``embed(text)`` can stand in for it, e.g. the Bedrock embedder.
"""

import math
import re
from typing import List, Optional, Protocol

from ..utils.config import EmbeddingConfig
from ..utils.config import config as app_config
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

TOKEN_PATTERN = re.compile(r'[a-z0-9]+')

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619


class Embedder(Protocol):
    """Anything that maps text to a fixed-length vector."""

    dimension: int

    def embed(self, text: str) -> List[float]:
        ...

    def embed_query(self, text: str) -> List[float]:
        ...


def token_hash(token: str) -> int:
    """32-bit FNV-1a of the token, read as a signed int32 and made non-negative."""
    value = FNV_OFFSET_BASIS
    for char in token:
        value ^= ord(char)
        value = (value * FNV_PRIME) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return abs(value)


def tokenize(text: str) -> List[str]:
    return TOKEN_PATTERN.findall(text.lower())


class HashingEmbedder:
    """Hashed term-count embedding, L2-normalized."""

    model_name = 'local-hash-v1'

    def __init__(self, dimension: int = 128):
        if dimension <= 0:
            raise ValueError(f'Embedding dimension must be positive, got {dimension}')
        self.dimension = dimension

    def embed(self, text: str) -> List[float]:
        """
        Embed text into a unit vector of ``dimension`` floats.

        Token collisions share a bucket. Text without tokens yields the zero vector.

        Args:
            text: Text to embed

        Returns:
            List of ``dimension`` floats
        """
        vector = [0.0] * self.dimension
        for token in tokenize(text or ''):
            vector[token_hash(token) % self.dimension] += 1.0

        magnitude = math.sqrt(sum(value * value for value in vector))
        if magnitude == 0:
            return vector
        return [value / magnitude for value in vector]

    def embed_query(self, text: str) -> List[float]:
        """Queries and documents share one hashed space."""
        return self.embed(text)


def build_search_text(title: Optional[str], description: Optional[str], body: str) -> str:
    """Join title, description and body with newlines, skipping empty parts."""
    return '\n'.join(part for part in (title or '', description or '', body or '') if part)


def create_embedder(config: Optional[EmbeddingConfig] = None) -> Embedder:
    """
    Build the embedder selected by configuration.

    Args:
        config: EmbeddingConfig instance, uses default if None

    Returns:
        HashingEmbedder for ``hash`` or BedrockEmbedder for ``bedrock``

    Raises:
        ValueError: If the provider is unknown
    """
    config = config or app_config.embedding
    if config.provider == 'hash':
        return HashingEmbedder(config.dimension)
    if config.provider == 'bedrock':
        from ..utils.bedrock_embed import BedrockEmbedder
        return BedrockEmbedder(config.bedrock, config.dimension)
    raise ValueError(f'Unknown embedding provider: {config.provider}')
