"""
Ingestion: turn a raw submission into a stored, embedded Memory.
"""

import uuid
from typing import Any, Callable, Dict, Optional, Tuple

from ..models.core import ExtractionResult, Memory, SourceMetadata
from ..models.submissions import NoteSubmission, TweetSubmission, WebsiteSubmission, YouTubeSubmission, parse_submission
from ..utils.logging_config import get_logger
from ..utils.memory_store import MemoryStore
from ..utils.timestamp_utils import parse_iso_or_none, utc_now
from .embedding import Embedder, build_search_text, create_embedder
from .enrichment import UNTITLED_NOTE, EnrichmentService
from .metadata_extraction import MetadataExtractionService

logger = get_logger(__name__)

NOTE_DESCRIPTION_CHARS = 180


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class IngestionService:
    """Validate, extract, enrich, embed and persist one submission."""

    def __init__(self,
                 store: MemoryStore,
                 embedder: Optional[Embedder] = None,
                 extractor: Optional[MetadataExtractionService] = None,
                 enrichment: Optional[EnrichmentService] = None,
                 clock: Callable = utc_now,
                 id_factory: Callable[[], str] = lambda: str(uuid.uuid4())):
        """
        Initialize the ingestion service.

        Args:
            store: MemoryStore receiving the finished record
            embedder: Embedder for the search text, built from configuration if None
            extractor: Metadata extractor for URL submissions
            enrichment: Title generation and metadata normalization
            clock: Returns the current UTC datetime
            id_factory: Returns a new record id
        """
        self.store = store
        self.embedder = embedder or create_embedder()
        self.extractor = extractor or MetadataExtractionService()
        self.enrichment = enrichment or EnrichmentService()
        self.clock = clock
        self.id_factory = id_factory

    def _fallback_metadata(self, submission) -> Tuple[str, Dict[str, Any]]:
        """Body and pre-enrichment metadata for a parsed submission."""
        if isinstance(submission, NoteSubmission):
            body = submission.body.strip()
            title = submission.title or self.enrichment.generate_title(body)
            return body, {'title': title, 'description': body[:NOTE_DESCRIPTION_CHARS]}

        extracted = self.extractor.extract(submission.type, submission.url)
        metadata = extracted.metadata.to_dict()

        if isinstance(submission, WebsiteSubmission):
            metadata['title'] = submission.title or metadata.get('title')
            metadata['description'] = submission.description or metadata.get('description')
            return extracted.body, metadata

        if isinstance(submission, YouTubeSubmission):
            metadata['title'] = submission.title or metadata.get('title')
            return extracted.body, metadata

        if isinstance(submission, TweetSubmission):
            return submission.body or extracted.body, metadata

        raise TypeError(f'Unhandled submission {type(submission).__name__}')

    def ingest(self, user_id: str, submission: Any) -> Memory:
        """
        Ingest one submission for a user.

        Args:
            user_id: Authenticated owner of the new record
            submission: dict or parsed submission model

        Returns:
            The stored Memory

        Raises:
            ValidationError: If the submission is malformed; nothing is stored
            InvalidSourceError, SourceNotFoundError, ExtractionError: If extraction fails
            MemoryStoreError: If persisting fails
        """
        submission = parse_submission(submission)
        body, fallback = self._fallback_metadata(submission)
        normalized = self.enrichment.normalize_metadata(fallback, body)

        title = _text_or_none(normalized.get('title'))
        description = _text_or_none(normalized.get('description'))
        embedding = self.embedder.embed(build_search_text(title, description, body))

        now = self.clock()
        memory = Memory(id=self.id_factory(),
                        user_id=user_id,
                        type=submission.type,
                        body=body,
                        embedding=embedding,
                        created_at=now,
                        updated_at=now,
                        title=title,
                        description=description,
                        source_id=_text_or_none(normalized.get('source_id')),
                        source_url=_text_or_none(normalized.get('source_url')),
                        canonical_url=_text_or_none(normalized.get('canonical_url')),
                        site_name=_text_or_none(normalized.get('site_name')),
                        author=_text_or_none(normalized.get('author')),
                        published_at=parse_iso_or_none(normalized.get('published_at')),
                        thumbnail_url=_text_or_none(normalized.get('thumbnail_url')),
                        favicon_url=_text_or_none(normalized.get('favicon_url')),
                        raw_metadata=normalized)

        stored = self.store.upsert(memory)
        logger.info(f'Ingested {memory.type} memory {memory.id} for user {user_id}')
        return stored

    def preview(self, submission: Any) -> ExtractionResult:
        """
        Validate and extract without enrichment or persistence.

        Notes preview as their own title (or "Untitled Note") and the first 180
        characters of the body.
        """
        submission = parse_submission(submission)
        if isinstance(submission, NoteSubmission):
            metadata = SourceMetadata(title=submission.title or UNTITLED_NOTE,
                                      description=submission.body[:NOTE_DESCRIPTION_CHARS])
            return ExtractionResult(metadata=metadata, body=submission.body)
        return self.extractor.extract(submission.type, submission.url)
