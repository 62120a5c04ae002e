"""Tests for submission and request validation."""

from datetime import datetime, timezone

import pytest

from mindcache.models.errors import ValidationError
from mindcache.models.submissions import (ListRequest, NoteSubmission, SearchRequest, TweetSubmission, UpdateRequest,
                                          WebsiteSubmission, parse_request, parse_submission)


class TestParseSubmission:

    def test_note(self):
        submission = parse_submission({'type': 'note', 'body': '  remember the milk  ', 'title': '   '})
        assert isinstance(submission, NoteSubmission)
        assert submission.body == 'remember the milk'
        assert submission.title is None

    def test_website_with_overrides(self):
        submission = parse_submission({
            'type': 'website',
            'url': 'https://example.com/a',
            'title': 'Mine',
            'description': 'My words'
        })
        assert isinstance(submission, WebsiteSubmission)
        assert submission.title == 'Mine'

    def test_tweet_body_optional(self):
        submission = parse_submission({'type': 'tweet', 'url': 'https://x.com/jack/status/20'})
        assert isinstance(submission, TweetSubmission)
        assert submission.body is None

    def test_unknown_fields_ignored(self):
        submission = parse_submission({'type': 'note', 'body': 'x', 'user_id': 'someone-else'})
        assert not hasattr(submission, 'user_id')

    def test_parsed_model_passes_through(self):
        submission = NoteSubmission(type='note', body='x')
        assert parse_submission(submission) is submission

    @pytest.mark.parametrize('payload', [
        {'type': 'note', 'body': '   '},
        {'type': 'note'},
        {'type': 'website'},
        {'type': 'website', 'url': 'not a url'},
        {'type': 'website', 'url': 'ftp://example.com/file'},
        {'type': 'youtube', 'url': '/relative/path'},
        {'type': 'note', 'body': 'x', 'title': 'a' * 181},
        {'type': 'website', 'url': 'https://example.com', 'description': 'd' * 2001},
    ])
    def test_invalid_payloads(self, payload):
        with pytest.raises(ValidationError) as excinfo:
            parse_submission(payload)
        assert excinfo.value.errors

    @pytest.mark.parametrize('payload', [{'type': 'podcast', 'url': 'https://example.com'}, {'body': 'no type'}, None, 'note'])
    def test_unsupported_type(self, payload):
        with pytest.raises(ValidationError):
            parse_submission(payload)


class TestParseRequest:

    def test_list_defaults(self):
        request = parse_request(ListRequest, None)
        assert request.cursor is None
        assert request.limit is None

    def test_list_cursor_parsed(self):
        request = parse_request(ListRequest, {'cursor': '2024-05-01T12:00:00Z', 'limit': 10})
        assert request.cursor == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize('limit', [0, 101, -1])
    def test_limit_bounds(self, limit):
        with pytest.raises(ValidationError):
            parse_request(ListRequest, {'limit': limit})

    def test_search_request(self):
        request = parse_request(SearchRequest, {'query': ' hiking ', 'types': ['note', 'tweet'], 'threshold': 0.5})
        assert request.query == 'hiking'
        assert request.types == ['note', 'tweet']

    @pytest.mark.parametrize('payload', [
        {'query': '   '},
        {'query': 'x', 'threshold': 1.5},
        {'query': 'x', 'threshold': -0.1},
        {'query': 'x', 'types': ['podcast']},
        {'query': 'x', 'limit': 500},
    ])
    def test_invalid_search(self, payload):
        with pytest.raises(ValidationError):
            parse_request(SearchRequest, payload)

    def test_update_changes_only_sent_fields(self):
        request = parse_request(UpdateRequest, {'id': 'm1', 'title': 'New', 'thumbnail_url': None})
        assert request.changes() == {'title': 'New', 'thumbnail_url': None}

    def test_update_requires_id(self):
        with pytest.raises(ValidationError):
            parse_request(UpdateRequest, {'title': 'New'})

    def test_update_blank_text_clears_field(self):
        request = parse_request(UpdateRequest, {'id': 'm1', 'title': '   ', 'description': ''})
        assert request.changes() == {'title': None, 'description': None}

    def test_list_cursor_with_id_kept_verbatim(self):
        request = parse_request(ListRequest, {'cursor': '2024-05-01T12:00:00+00:00|m7'})
        assert request.cursor == '2024-05-01T12:00:00+00:00|m7'

    @pytest.mark.parametrize('cursor', ['yesterday', 'not-a-time|m7'])
    def test_invalid_cursor(self, cursor):
        with pytest.raises(ValidationError):
            parse_request(ListRequest, {'cursor': cursor})

    def test_blank_cursor_is_missing(self):
        assert parse_request(ListRequest, {'cursor': '  '}).cursor is None
