"""
Metadata extraction for websites, YouTube videos and tweets.

Each extractor consults the metadata cache before calling out, and writes its
result back on a miss. Extraction is load-bearing for ingestion, so network,
HTTP and parse failures surface as ExtractionError instead of degrading.
"""

import math
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from ..models.core import EXTRACTABLE_TYPES, ExtractionResult, SourceMetadata
from ..models.errors import ExtractionError, InvalidSourceError, SourceNotFoundError
from ..utils.config import AppConfig
from ..utils.config import config as app_config
from ..utils.logging_config import get_logger
from .metadata_cache import CacheKeys, MetadataCache, create_metadata_cache

logger = get_logger(__name__)

YOUTUBE_ID_PATTERN = re.compile(r'(?:youtube\.com/(?:watch\?(?:[^#]*&)?v=|shorts/)|youtu\.be/)([A-Za-z0-9_-]{11})', re.IGNORECASE)
TWEET_ID_PATTERN = re.compile(r'(?:^|[/.@])(?:twitter|x)\.com/(?:[^/?#]+/)*?status(?:es)?/(\d+)', re.IGNORECASE)

YOUTUBE_OEMBED_URL = 'https://www.youtube.com/oembed'
YOUTUBE_THUMBNAIL_URL = 'https://i.ytimg.com/vi/{video_id}/hqdefault.jpg'
YOUTUBE_WATCH_URL = 'https://www.youtube.com/watch?v={video_id}'
TWEET_RESULT_URL = 'https://cdn.syndication.twimg.com/tweet-result'
TWEET_CANONICAL_URL = 'https://x.com/i/status/{tweet_id}'

TEXT_CONTENT_TYPES = ('text/', 'application/xhtml+xml', 'application/xml')

_BASE36_DIGITS = '0123456789abcdefghijklmnopqrstuvwxyz'


def get_youtube_video_id(url: str) -> Optional[str]:
    """Video id from ``watch?v=``, ``youtu.be/`` or ``/shorts/`` URLs, else None."""
    match = YOUTUBE_ID_PATTERN.search(url or '')
    return match.group(1) if match else None


def get_tweet_id(url: str) -> Optional[str]:
    """Status id from ``twitter.com``/``x.com`` status URLs, else None."""
    match = TWEET_ID_PATTERN.search(url or '')
    return match.group(1) if match else None


def tweet_token(tweet_id: str) -> str:
    """Token expected by the public tweet embed endpoint.

    ``(id / 1e15 * pi)`` written in base 36 with zeros and the radix point removed.
    """
    value = (int(tweet_id) / 1e15) * math.pi
    whole = int(value)
    fraction = value - whole

    digits = ''
    while whole:
        whole, remainder = divmod(whole, 36)
        digits = _BASE36_DIGITS[remainder] + digits
    digits = digits or '0'

    fraction_digits = ''
    # a double carries ~52 bits, about 11 base-36 digits
    while fraction and len(fraction_digits) < 11:
        fraction *= 36
        digit = int(fraction)
        fraction_digits += _BASE36_DIGITS[digit]
        fraction -= digit

    return re.sub(r'0+|\.', '', f'{digits}.{fraction_digits}')


def extract_html_text(soup: BeautifulSoup) -> str:
    """Readable text of a parsed page with scripts and styles removed."""
    for element in soup(['script', 'style', 'noscript', 'template']):
        element.decompose()
    lines = (line.strip() for line in soup.get_text().splitlines())
    chunks = (phrase.strip() for line in lines for phrase in line.split('  '))
    return '\n'.join(chunk for chunk in chunks if chunk)


def _join_lines(*parts: Optional[str]) -> str:
    return '\n'.join(part for part in parts if part)


class MetadataExtractionService:
    """Fetch and parse canonical metadata for each extractable source type."""

    def __init__(self,
                 cache: Optional[MetadataCache] = None,
                 config: Optional[AppConfig] = None,
                 session: Optional[requests.Session] = None):
        """
        Initialize the extraction service.

        Args:
            cache: Metadata cache, built from configuration if None
            config: AppConfig instance, uses default if None
            session: requests session to reuse, a new one if None
        """
        self.config = config or app_config
        self.cache = cache if cache is not None else create_metadata_cache(self.config.cache)
        self.session = session or requests.Session()
        self.timeout = self.config.extraction.timeout_seconds
        self.headers = {'User-Agent': self.config.extraction.user_agent}

    def extract(self, content_type: str, url: str) -> ExtractionResult:
        """
        Dispatch to the extractor for ``content_type``.

        Raises:
            InvalidSourceError: If the type has no extractor or the URL is unrecognized
            SourceNotFoundError: If the upstream reports the resource missing
            ExtractionError: If fetching or parsing fails
        """
        if content_type == 'website':
            return self.extract_website(url)
        if content_type == 'youtube':
            return self.extract_youtube(url)
        if content_type == 'tweet':
            return self.extract_tweet(url)
        raise InvalidSourceError(f'No metadata extractor for type {content_type!r}; expected one of {EXTRACTABLE_TYPES}')

    def extract_website(self, url: str) -> ExtractionResult:
        """
        Open Graph metadata for a page, falling back to a generic link preview.

        Args:
            url: Page URL

        Returns:
            ExtractionResult with the page metadata and a body of title, description,
            URL and readable page text

        Raises:
            ExtractionError: If the page is unreachable, errors, or is not text
        """
        key = CacheKeys.website(url)
        cached = self._read_cache(key, 'website')
        if cached is not None:
            return cached

        response = self._get(url)
        if not 200 <= response.status_code < 300:
            raise ExtractionError(f'{url} returned HTTP {response.status_code}')
        content_type = response.headers.get('Content-Type', '')
        if content_type and not content_type.lower().startswith(TEXT_CONTENT_TYPES):
            raise ExtractionError(f'{url} returned non-text content ({content_type})')

        try:
            soup = BeautifulSoup(response.text, 'html.parser')
        except Exception as e:
            raise ExtractionError(f'Failed to parse {url}: {e}') from e

        page_url = response.url or url
        preview = self._link_preview(soup, page_url)

        metadata = SourceMetadata(
            source_url=url,
            canonical_url=self._meta(soup, 'og:url') or preview['canonical'] or url,
            site_name=self._meta(soup, 'og:site_name') or preview['site_name'],
            author=self._meta(soup, 'article:author'),
            published_at=self._meta(soup, 'article:published_time'),
            thumbnail_url=self._absolute(page_url, self._meta(soup, 'og:image')) or next(iter(preview['images']), None)
            or next(iter(preview['favicons']), None),
            favicon_url=next(iter(preview['favicons']), None),
            title=self._meta(soup, 'og:title') or preview['title'],
            description=self._meta(soup, 'og:description') or preview['description'],
        )

        page_text = extract_html_text(soup)[:self.config.extraction.max_body_chars]
        result = ExtractionResult(metadata=metadata, body=_join_lines(metadata.title, metadata.description, url, page_text))
        self.cache.set(key, result.to_dict(), self.config.cache.metadata_ttl_seconds)
        return result

    def extract_youtube(self, url: str) -> ExtractionResult:
        """
        Video metadata from YouTube's public oEmbed endpoint.

        Raises:
            InvalidSourceError: If no video id can be parsed from the URL
            SourceNotFoundError: If oEmbed reports the video missing
            ExtractionError: If the oEmbed call fails
        """
        video_id = get_youtube_video_id(url)
        if not video_id:
            raise InvalidSourceError(f'Invalid YouTube URL: {url}')

        key = CacheKeys.youtube(video_id)
        cached = self._read_cache(key, 'youtube')
        if cached is not None:
            return cached

        response = self._get(YOUTUBE_OEMBED_URL, params={'url': url, 'format': 'json'})
        if response.status_code == 404:
            raise SourceNotFoundError(f'YouTube video not found: {video_id}')
        if response.status_code >= 400:
            raise ExtractionError(f'YouTube oEmbed returned HTTP {response.status_code} for {video_id}')
        oembed = self._json(response, 'YouTube oEmbed')

        metadata = SourceMetadata(
            source_id=video_id,
            source_url=url,
            canonical_url=YOUTUBE_WATCH_URL.format(video_id=video_id),
            site_name=oembed.get('provider_name') or 'YouTube',
            author=oembed.get('author_name'),
            thumbnail_url=oembed.get('thumbnail_url') or YOUTUBE_THUMBNAIL_URL.format(video_id=video_id),
            title=oembed.get('title'),
        )
        result = ExtractionResult(metadata=metadata, body=_join_lines(oembed.get('title'), oembed.get('author_name'), url))
        self.cache.set(key, result.to_dict(), self.config.cache.metadata_ttl_seconds)
        return result

    def extract_tweet(self, url: str) -> ExtractionResult:
        """
        Tweet text and author from the public tweet embed API.

        Raises:
            InvalidSourceError: If no status id can be parsed from the URL
            SourceNotFoundError: If the tweet does not exist or was removed
            ExtractionError: If the API call fails
        """
        tweet_id = get_tweet_id(url)
        if not tweet_id:
            raise InvalidSourceError(f'Invalid tweet URL: {url}')

        key = CacheKeys.tweet(tweet_id)
        cached = self._read_cache(key, 'tweet')
        if cached is not None:
            return cached

        response = self._get(TWEET_RESULT_URL, params={'id': tweet_id, 'lang': 'en', 'token': tweet_token(tweet_id)})
        if response.status_code == 404:
            raise SourceNotFoundError(f'Tweet not found: {tweet_id}')
        if response.status_code >= 400:
            raise ExtractionError(f'Tweet API returned HTTP {response.status_code} for {tweet_id}')
        data = self._json(response, 'Tweet API')
        if not data or data.get('__typename') == 'TweetTombstone':
            raise SourceNotFoundError(f'Tweet data not found: {tweet_id}')

        user = data.get('user') or {}
        name = user.get('name')
        photos = data.get('photos') or []
        metadata = SourceMetadata(
            source_id=tweet_id,
            source_url=url,
            canonical_url=TWEET_CANONICAL_URL.format(tweet_id=tweet_id),
            site_name='X',
            author=name,
            published_at=data.get('created_at'),
            thumbnail_url=photos[0].get('url') if photos else None,
            title=f'Tweet by {name}' if name else 'Tweet',
            description=data.get('text'),
            like_count=data.get('favorite_count'),
            reply_count=data.get('conversation_count'),
        )
        result = ExtractionResult(metadata=metadata, body=_join_lines(data.get('text'), name, url))
        self.cache.set(key, result.to_dict(), self.config.cache.tweet_ttl_seconds)
        return result

    def _read_cache(self, key: str, source: str) -> Optional[ExtractionResult]:
        cached = self.cache.get(key)
        if cached:
            try:
                result = ExtractionResult.from_dict(cached)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f'cache.metadata.error op=decode key={key}: {e}')
            else:
                logger.info(f'cache.metadata.hit key={key} source={source}')
                return result
        logger.info(f'cache.metadata.miss key={key} source={source}')
        return None

    def _get(self, url: str, params: Optional[Dict[str, str]] = None) -> requests.Response:
        try:
            return self.session.get(url, params=params, headers=self.headers, timeout=self.timeout, allow_redirects=True)
        except requests.Timeout as e:
            raise ExtractionError(f'Timed out after {self.timeout}s fetching {url}') from e
        except requests.RequestException as e:
            raise ExtractionError(f'Failed to fetch {url}: {e}') from e

    @staticmethod
    def _json(response: requests.Response, source: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ExtractionError(f'{source} returned malformed JSON') from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ExtractionError(f'{source} returned unexpected payload type {type(data).__name__}')
        return data

    @staticmethod
    def _meta(soup: BeautifulSoup, name: str) -> Optional[str]:
        """Content of a ``<meta property=...>`` or ``<meta name=...>`` tag."""
        pattern = re.compile(f'^{re.escape(name)}$', re.IGNORECASE)
        for attribute in ('property', 'name'):
            tag = soup.find('meta', attrs={attribute: pattern})
            if tag is not None:
                content = (tag.get('content') or '').strip()
                if content:
                    return content
        return None

    @staticmethod
    def _absolute(base_url: str, href: Optional[str]) -> Optional[str]:
        if not href:
            return None
        return urljoin(base_url, href.strip())

    def _link_preview(self, soup: BeautifulSoup, page_url: str) -> Dict[str, Any]:
        """Generic title/description/images/favicons used when Open Graph tags are absent."""
        title = soup.title.get_text(strip=True) if soup.title else None

        images: List[str] = []
        twitter_image = self._meta(soup, 'twitter:image')
        if twitter_image:
            images.append(self._absolute(page_url, twitter_image))
        for img in soup.find_all('img', src=True, limit=5):
            src = self._absolute(page_url, img['src'])
            if src and not src.startswith('data:') and src not in images:
                images.append(src)

        favicons: List[str] = []
        for link in soup.find_all('link', rel=re.compile('icon', re.IGNORECASE), href=True):
            href = self._absolute(page_url, link['href'])
            if href and href not in favicons:
                favicons.append(href)
        if not favicons:
            favicons.append(urljoin(page_url, '/favicon.ico'))

        canonical = soup.find('link', rel='canonical', href=True)
        return {
            'title': title or self._meta(soup, 'twitter:title'),
            'description': self._meta(soup, 'description') or self._meta(soup, 'twitter:description'),
            'site_name': self._meta(soup, 'application-name'),
            'images': images,
            'favicons': favicons,
            'canonical': self._absolute(page_url, canonical['href']) if canonical else None,
        }
