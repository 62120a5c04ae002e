"""
Best-effort enrichment with the generative model: note titles and metadata normalization.

Neither operation may fail an ingestion. Each ``try_*`` method returns an
EnrichmentResult holding either the value or the swallowed error, and the
caller decides the fallback with ``unwrap_or``.
"""

import json
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import BedrockLLMConfig
from ..utils.config import config as app_config
from ..utils.json_utils import extract_json_object
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

UNTITLED_NOTE = 'Untitled Note'
MAX_TITLE_LENGTH = 180
PROMPT_BODY_CHARS = 2000

TITLE_SYSTEM_PROMPT = 'You write short, specific titles for personal notes. Respond with the title only.'

NORMALIZE_SYSTEM_PROMPT = """You normalize extracted metadata for a memory card.
Respond with a single JSON object and nothing else, using exactly these keys:
canonical_url, site_name, author, published_at, thumbnail_url, favicon_url, title, description.
Every value is a string or null. Return only values that are confidently present; use null otherwise."""

_WRAPPING_QUOTES = re.compile(r'^["\']|["\']$')


@dataclass
class EnrichmentResult(Generic[T]):
    """Outcome of a best-effort model call."""
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    def unwrap_or(self, fallback: T) -> T:
        return self.value if self.ok else fallback


class NormalizedMetadata(BaseModel):
    """Shape the extraction model must return; every field is nullable."""
    model_config = ConfigDict(extra='ignore', alias_generator=to_camel, populate_by_name=True)

    canonical_url: Optional[str] = None
    site_name: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[str] = None
    thumbnail_url: Optional[str] = None
    favicon_url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


def clean_title(text: str) -> str:
    return _WRAPPING_QUOTES.sub('', text.strip())[:MAX_TITLE_LENGTH].strip()


class EnrichmentService:
    """Title generation and metadata normalization on Amazon Bedrock."""

    def __init__(self, llm: Optional[BedrockLLM] = None, config: Optional[BedrockLLMConfig] = None):
        """
        Initialize the enrichment service.

        Args:
            llm: Client exposing ``generate_text``; built from configuration if None
            config: BedrockLLMConfig instance, uses default if None
        """
        self.config = config or app_config.bedrock_llm
        self.enabled = self.config.enabled
        if llm is None and self.enabled:
            llm = BedrockLLM(self.config)
        self.llm = llm

    def try_generate_title(self, body: str) -> EnrichmentResult[str]:
        """Ask the title model for a concise title (at most eight words) for a note."""
        if not self.enabled or self.llm is None:
            return EnrichmentResult()

        started = time.monotonic()
        try:
            text = self.llm.generate_text(
                prompt=f'Generate a concise title (max 8 words) for this note:\n\n{body[:PROMPT_BODY_CHARS]}',
                system_prompt=TITLE_SYSTEM_PROMPT,
                model_id=self.config.title_model_id,
                max_tokens=64)
            title = clean_title(text)
            if not title:
                raise ValueError('Model returned an empty title')
        except Exception as e:
            logger.warning(f'ai.title.onError: {e}')
            return EnrichmentResult(error=e)

        logger.info(f'ai.title.onFinish duration_ms={int((time.monotonic() - started) * 1000)}')
        return EnrichmentResult(value=title)

    def generate_title(self, body: str) -> str:
        return self.try_generate_title(body).unwrap_or(UNTITLED_NOTE)

    def try_normalize_metadata(self, fallback: Dict[str, Any], body: str) -> EnrichmentResult[Dict[str, str]]:
        """
        Ask the extraction model to clean up fallback metadata.

        Returns:
            EnrichmentResult whose value holds only the fields the model set to a
            non-null value
        """
        if not self.enabled or self.llm is None:
            return EnrichmentResult()

        started = time.monotonic()
        prompt = '\n\n'.join([
            'Normalize this extracted metadata for a memory card.',
            'Return only values that are confidently present.',
            f'Body:\n{body[:PROMPT_BODY_CHARS]}',
            f'Fallback metadata:\n{json.dumps(fallback, default=str)}',
        ])
        try:
            text = self.llm.generate_text(prompt=prompt,
                                          system_prompt=NORMALIZE_SYSTEM_PROMPT,
                                          model_id=self.config.extraction_model_id)
            normalized = NormalizedMetadata.model_validate(extract_json_object(text))
        except Exception as e:
            logger.warning(f'ai.normalize.onError: {e}')
            return EnrichmentResult(error=e)

        # blank strings count as null
        values = {key: value for key, value in normalized.model_dump().items() if value is not None and value.strip()}
        logger.info(f'ai.normalize.onFinish fields={sorted(values)} '
                    f'duration_ms={int((time.monotonic() - started) * 1000)}')
        return EnrichmentResult(value=values)

    def normalize_metadata(self, fallback: Dict[str, Any], body: str) -> Dict[str, Any]:
        """Fallback metadata overlaid with the model's non-null values; the fallback alone on failure."""
        return {**fallback, **self.try_normalize_metadata(fallback, body).unwrap_or({})}
