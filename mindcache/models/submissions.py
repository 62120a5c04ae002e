"""
Request schemas for the caller-facing pipeline operations.

Payloads arrive as plain dicts from whatever transport sits in front of the
pipeline; they are parsed here and any pydantic failure is re-raised as the
pipeline's own ValidationError.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..utils.memory_store import decode_cursor
from .core import CONTENT_TYPES, MUTABLE_FIELDS
from .errors import ValidationError

ContentType = Literal['note', 'website', 'youtube', 'tweet']

MAX_TITLE_LENGTH = 180
MAX_DESCRIPTION_LENGTH = 2000


def _strip_or_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _require_http_url(value: str) -> str:
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValueError('Enter a valid http(s) URL')
    return value


class _Request(BaseModel):
    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)


class NoteSubmission(_Request):
    type: Literal['note']
    body: str = Field(min_length=1)
    title: Optional[str] = Field(default=None, max_length=MAX_TITLE_LENGTH)

    @field_validator('title', mode='before')
    @classmethod
    def blank_title_is_missing(cls, value: Any) -> Any:
        return _strip_or_none(value)


class WebsiteSubmission(_Request):
    type: Literal['website']
    url: str
    title: Optional[str] = Field(default=None, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)

    @field_validator('url')
    @classmethod
    def check_url(cls, value: str) -> str:
        return _require_http_url(value)

    @field_validator('title', 'description', mode='before')
    @classmethod
    def blank_is_missing(cls, value: Any) -> Any:
        return _strip_or_none(value)


class YouTubeSubmission(_Request):
    type: Literal['youtube']
    url: str
    title: Optional[str] = Field(default=None, max_length=MAX_TITLE_LENGTH)

    @field_validator('url')
    @classmethod
    def check_url(cls, value: str) -> str:
        return _require_http_url(value)

    @field_validator('title', mode='before')
    @classmethod
    def blank_title_is_missing(cls, value: Any) -> Any:
        return _strip_or_none(value)


class TweetSubmission(_Request):
    type: Literal['tweet']
    url: str
    body: Optional[str] = None

    @field_validator('url')
    @classmethod
    def check_url(cls, value: str) -> str:
        return _require_http_url(value)

    @field_validator('body', mode='before')
    @classmethod
    def blank_body_is_missing(cls, value: Any) -> Any:
        return _strip_or_none(value)


SUBMISSION_MODELS = (NoteSubmission, WebsiteSubmission, YouTubeSubmission, TweetSubmission)

Submission = Annotated[Union[NoteSubmission, WebsiteSubmission, YouTubeSubmission, TweetSubmission],
                       Field(discriminator='type')]

_submission_adapter = TypeAdapter(Submission)


class ListRequest(_Request):
    cursor: Optional[Union[datetime, str]] = Field(default=None, union_mode='left_to_right')
    limit: Optional[int] = Field(default=None, ge=1, le=100)

    @field_validator('cursor', mode='before')
    @classmethod
    def blank_cursor_is_missing(cls, value: Any) -> Any:
        return _strip_or_none(value)

    @field_validator('cursor')
    @classmethod
    def check_cursor(cls, value: Union[datetime, str, None]) -> Union[datetime, str, None]:
        if isinstance(value, str):
            decode_cursor(value)
        return value


class UpdateRequest(_Request):
    id: str = Field(min_length=1)
    title: Optional[str] = Field(default=None, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    thumbnail_url: Optional[str] = None

    @field_validator('title', 'description', mode='before')
    @classmethod
    def blank_is_missing(cls, value: Any) -> Any:
        return _strip_or_none(value)

    def changes(self) -> Dict[str, Optional[str]]:
        """Only the display fields the caller actually sent."""
        return {name: getattr(self, name) for name in MUTABLE_FIELDS if name in self.model_fields_set}


class DeleteRequest(_Request):
    id: str = Field(min_length=1)


class SearchRequest(_Request):
    query: str = Field(min_length=1)
    limit: Optional[int] = Field(default=None, ge=1, le=100)
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    types: Optional[List[ContentType]] = None


ModelT = TypeVar('ModelT', bound=BaseModel)


def _validation_error(error: PydanticValidationError, what: str) -> ValidationError:
    details = error.errors(include_url=False)
    locations = ', '.join('.'.join(str(part) for part in item['loc']) or what for item in details)
    return ValidationError(f'Invalid {what}: {locations}', errors=details)


def parse_submission(payload: Any):
    """Parse an ingest payload into one of the typed submissions.

    Args:
        payload: dict (or an already-parsed submission)

    Returns:
        NoteSubmission | WebsiteSubmission | YouTubeSubmission | TweetSubmission

    Raises:
        ValidationError: If the type is unknown or required fields are missing
    """
    if isinstance(payload, SUBMISSION_MODELS):
        return payload
    if isinstance(payload, dict) and payload.get('type') not in CONTENT_TYPES:
        raise ValidationError(f"Unsupported content type: {payload.get('type')!r}",
                              errors=[{'loc': ('type', ), 'msg': 'Unsupported type', 'type': 'literal_error'}])
    try:
        return _submission_adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise _validation_error(e, 'submission') from e


def parse_request(model: Type[ModelT], payload: Any) -> ModelT:
    """Parse a list/update/delete/search payload into its request model.

    Raises:
        ValidationError: If the payload does not match the model
    """
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload if payload is not None else {})
    except PydanticValidationError as e:
        raise _validation_error(e, model.__name__) from e
