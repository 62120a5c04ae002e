"""
Error taxonomy surfaced by the ingestion and retrieval pipeline.
"""

from typing import Any, Dict, List, Optional


class ContentServiceError(Exception):
    """Base class for failures surfaced to callers of the pipeline."""
    pass


class ValidationError(ContentServiceError):
    """Malformed or incomplete submission; nothing was written."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class InvalidSourceError(ContentServiceError):
    """URL does not match a recognized source pattern."""
    pass


class SourceNotFoundError(ContentServiceError):
    """Upstream platform reports that the resource does not exist."""
    pass


class ExtractionError(ContentServiceError):
    """Network or parse failure while talking to an external source."""
    pass


class MemoryStoreError(ContentServiceError):
    """Storage engine failure."""
    pass
