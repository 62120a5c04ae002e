"""
Core data models for captured memories.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..utils.timestamp_utils import to_iso

CONTENT_TYPES = ('note', 'website', 'youtube', 'tweet')
EXTRACTABLE_TYPES = ('website', 'youtube', 'tweet')

# Display fields a caller may change after creation
MUTABLE_FIELDS = ('title', 'description', 'thumbnail_url')


@dataclass
class SourceMetadata:
    """Metadata describing where a captured item came from."""
    source_id: Optional[str] = None
    source_url: Optional[str] = None
    canonical_url: Optional[str] = None
    site_name: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[str] = None  # ISO-8601 as reported by the source
    thumbnail_url: Optional[str] = None
    favicon_url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    like_count: Optional[int] = None
    reply_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SourceMetadata':
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class ExtractionResult:
    """Metadata plus the derived body text for one source."""
    metadata: SourceMetadata
    body: str

    def to_dict(self) -> Dict[str, Any]:
        return {'metadata': self.metadata.to_dict(), 'body': self.body}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExtractionResult':
        """
        Rebuild a result written by :meth:`to_dict`.

        Raises:
            TypeError: If ``metadata`` is not a mapping or ``body`` is not a string
        """
        metadata = data.get('metadata') or {}
        body = data.get('body') or ''
        if not isinstance(metadata, dict) or not isinstance(body, str):
            raise TypeError('malformed extraction result')
        return cls(metadata=SourceMetadata.from_dict(metadata), body=body)


@dataclass
class Memory:
    """One captured item owned by a user.

    ``(user_id, id)`` identifies the record; ``type`` and ``created_at`` never change
    after creation. ``embedding`` is derived from title, description and body.
    """
    id: str
    user_id: str
    type: str  # note | website | youtube | tweet
    body: str
    embedding: List[float]
    created_at: datetime
    updated_at: datetime
    title: Optional[str] = None
    description: Optional[str] = None
    source_id: Optional[str] = None
    source_url: Optional[str] = None
    canonical_url: Optional[str] = None
    site_name: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    thumbnail_url: Optional[str] = None
    favicon_url: Optional[str] = None
    raw_metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        """Render the memory as a JSON-friendly dict with ISO-8601 timestamps."""
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.type,
            'body': self.body,
            'title': self.title,
            'description': self.description,
            'source_id': self.source_id,
            'source_url': self.source_url,
            'canonical_url': self.canonical_url,
            'site_name': self.site_name,
            'author': self.author,
            'published_at': to_iso(self.published_at) if self.published_at else None,
            'thumbnail_url': self.thumbnail_url,
            'favicon_url': self.favicon_url,
            'raw_metadata': dict(self.raw_metadata),
            'created_at': to_iso(self.created_at),
            'updated_at': to_iso(self.updated_at),
        }
        if include_embedding:
            data['embedding'] = list(self.embedding)
        return data


@dataclass
class SearchResult:
    """A memory ranked by similarity to a query."""
    memory: Memory
    score: float

    def to_dict(self) -> Dict[str, Any]:
        data = self.memory.to_dict()
        data['score'] = self.score
        return data
