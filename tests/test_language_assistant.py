"""
Tests for the retry policy, the generative language client and the
conversational assistant. The HTTP session and sleep are mocked.
"""
from unittest.mock import Mock

import pytest
import requests

from nada.errors import ExternalLanguageServiceError
from nada.services.chat_assistant import (
    MODE_FALLBACK_DUE_TO_ERROR, MODE_FALLBACK_EMPTY_OUTPUT, MODE_FALLBACK_NO_KEY, MODE_MODEL,
    ConversationalAssistant,
)
from nada.services.language_client import GenerativeLanguageClient
from nada.services.retry_policy import RetryPolicy

from tests.conftest import FakeResponse, gemini_payload, make_assessment


def _client(responses, api_key='test-key', policy=None):
    session = Mock()
    session.post.side_effect = responses
    sleeps = []
    client = GenerativeLanguageClient(
        api_key=api_key,
        retry_policy=policy or RetryPolicy(),
        session=session,
        sleep=sleeps.append,
        rng=lambda: 0.0
    )
    return client, session, sleeps


class TestRetryPolicy:
    """Test backoff computation."""

    def test_exponential_delays(self):
        policy = RetryPolicy()

        delays = [policy.compute_delay(attempt, rng=lambda: 0.0) for attempt in range(5)]

        assert delays == [1000, 2000, 4000, 8000, 10000]

    def test_jitter_is_bounded(self):
        policy = RetryPolicy(jitter_ratio=0.3)

        assert policy.compute_delay(1, rng=lambda: 0.999) <= 2000 * 1.3

    def test_retryable_failures(self):
        policy = RetryPolicy()

        assert policy.is_retryable(503)
        assert policy.is_retryable(429)
        assert policy.is_retryable(None, 'The model is overloaded. Please try again later.')
        assert not policy.is_retryable(400, 'API key not valid')

    def test_retry_budget(self):
        policy = RetryPolicy(max_retries=2)

        assert policy.max_attempts == 3
        assert policy.should_retry(1)
        assert not policy.should_retry(2)

    @pytest.mark.parametrize('kwargs', [
        {'max_retries': -1}, {'base_delay_ms': -5}, {'multiplier': 0.5}, {'jitter_ratio': 1.5},
    ])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_from_config(self, app):
        app.config['GEMINI_MAX_RETRIES'] = 5

        assert RetryPolicy.from_config('GEMINI').max_retries == 5


class TestGenerativeLanguageClient:
    """Test the retrying generateContent call."""

    def test_retries_transient_errors(self, app):
        client, session, sleeps = _client([
            FakeResponse(503, text='{"error": {"message": "The model is overloaded."}}'),
            FakeResponse(503, text='overloaded'),
            FakeResponse(200, gemini_payload('Your water looks healthy.')),
        ])

        text = client.generate('How is my water?')

        assert text == 'Your water looks healthy.'
        assert session.post.call_count == 3
        assert client.last_attempts == 3
        assert client.recorded_delays_ms == [1000, 2000]
        # Two backoffs of at least the first two base delays
        assert sum(sleeps) >= 3.0

    def test_api_key_header(self, app):
        client, session, _ = _client([FakeResponse(200, gemini_payload('ok'))])

        client.generate('hello')

        args, kwargs = session.post.call_args
        assert args[0].endswith(':generateContent')
        assert kwargs['headers']['x-goog-api-key'] == 'test-key'
        assert kwargs['json']['contents'][0]['parts'][0]['text'] == 'hello'

    def test_client_error_is_not_retried(self, app):
        client, session, sleeps = _client([
            FakeResponse(400, text='{"error": {"message": "API key not valid"}}'),
        ])

        with pytest.raises(ExternalLanguageServiceError) as excinfo:
            client.generate('hello')

        assert excinfo.value.status_code == 400
        assert excinfo.value.attempts == 1
        assert 'API key not valid' in str(excinfo.value)
        assert sleeps == []

    def test_gives_up_after_budget(self, app):
        client, session, sleeps = _client([FakeResponse(503, text='overloaded')] * 4)

        with pytest.raises(ExternalLanguageServiceError) as excinfo:
            client.generate('hello')

        assert excinfo.value.attempts == 4
        assert session.post.call_count == 4
        assert len(sleeps) == 3

    def test_network_errors_are_retried(self, app):
        client, _, sleeps = _client([
            requests.exceptions.ConnectionError('reset'),
            FakeResponse(200, gemini_payload('ok')),
        ])

        assert client.generate('hello') == 'ok'
        assert len(sleeps) == 1

    def test_missing_candidates_is_empty_text(self, app):
        client, _, _ = _client([FakeResponse(200, {'candidates': []})])

        assert client.generate('hello') == ''

    def test_non_json_success_body(self, app):
        client, session, sleeps = _client([FakeResponse(200, None, text='<html>proxy</html>')])

        with pytest.raises(ExternalLanguageServiceError) as excinfo:
            client.generate('hello')

        assert excinfo.value.attempts == 1
        assert session.post.call_count == 1
        assert sleeps == []

    def test_other_request_errors_are_not_retried(self, app):
        client, session, _ = _client([requests.exceptions.ChunkedEncodingError('truncated')])

        with pytest.raises(ExternalLanguageServiceError):
            client.generate('hello')
        assert session.post.call_count == 1

    def test_unexpected_candidate_shape(self, app):
        client, _, _ = _client([FakeResponse(200, {'candidates': [{'content': {'parts': ['text']}}]})])

        assert client.generate('hello') == ''

    def test_unconfigured(self, app):
        client, session, _ = _client([], api_key='')

        with pytest.raises(ExternalLanguageServiceError):
            client.generate('hello')
        assert session.post.call_count == 0
        assert client.test_connection() == {'success': False, 'error': 'API key not configured', 'attempts': 0}

    def test_api_status(self, app):
        client, _, _ = _client([])

        status = client.get_api_status()

        assert status['configured'] is True
        assert status['retry_config']['max_retries'] == 3


class TestConversationalAssistant:
    """Test answering with and without the language service."""

    CONTEXT = {
        'recent_analyses': [make_assessment(call_density=55, status='good')],
        'active_alerts': [],
    }

    def test_without_key_falls_back(self, app):
        client, session, _ = _client([], api_key='')

        result = ConversationalAssistant(client).answer('How is my water quality?', self.CONTEXT)

        assert result['mode'] == MODE_FALLBACK_NO_KEY
        assert '55 frog calls per minute' in result['response']
        assert 1 <= len(result['follow_up_questions']) <= 4
        assert session.post.call_count == 0

    def test_model_answer_is_formatted(self, app):
        client, _, _ = _client([FakeResponse(200, gemini_payload('**Good news**: your frogs are active.'))])

        result = ConversationalAssistant(client).answer('How is my water quality?', self.CONTEXT)

        assert result['mode'] == MODE_MODEL
        assert '**' not in result['response']
        assert 'Good news' in result['response']

    def test_exhausted_retries_fall_back(self, app):
        client, _, _ = _client([FakeResponse(503, text='overloaded')] * 4)

        result = ConversationalAssistant(client).answer('Hello there', self.CONTEXT)

        assert result['mode'] == MODE_FALLBACK_DUE_TO_ERROR
        assert 'high demand' in result['response']
        assert 1 <= len(result['follow_up_questions']) <= 4

    def test_malformed_model_response_falls_back(self, app):
        client, _, _ = _client([FakeResponse(200, None, text='<html>proxy</html>')])

        result = ConversationalAssistant(client).answer('How is my water quality?', self.CONTEXT)

        assert result['mode'] == MODE_FALLBACK_DUE_TO_ERROR
        assert '55 frog calls per minute' in result['response']
        assert 1 <= len(result['follow_up_questions']) <= 4

    def test_empty_output_falls_back(self, app):
        client, _, _ = _client([FakeResponse(200, gemini_payload('   '))])

        result = ConversationalAssistant(client).answer('Tell me about frogs', self.CONTEXT)

        assert result['mode'] == MODE_FALLBACK_EMPTY_OUTPUT
        assert 'Microhyla butleri' in result['response']

    def test_prompt_carries_latest_data_and_alerts(self, app):
        client, _, _ = _client([], api_key='')
        context = dict(self.CONTEXT, active_alerts=[
            {'title': 'Low Biodiversity Alert', 'message': 'Biodiversity is low', 'read': False},
            {'title': 'Old Alert', 'message': 'Already seen', 'read': True},
        ])

        prompt = ConversationalAssistant(client).build_prompt('Is it safe?', context)

        assert 'Frog call density: 55 calls per minute' in prompt
        assert 'Low Biodiversity Alert' in prompt
        assert 'Old Alert' not in prompt
        assert 'FARMER\'S QUESTION: "Is it safe?"' in prompt

    def test_prompt_location(self, app):
        client, _, _ = _client([], api_key='')
        assistant = ConversationalAssistant(client)
        location = {'latitude': 3.0738, 'longitude': 101.5183, 'region': 'Peninsular Malaysia'}

        prompt = assistant.build_prompt('Is it safe?', dict(self.CONTEXT, location=location))

        assert 'LOCATION: Peninsular Malaysia (3.074, 101.518)' in prompt
        assert 'LOCATION' not in assistant.build_prompt('Is it safe?', dict(self.CONTEXT, location='Selangor'))
        assert 'LOCATION' not in assistant.build_prompt(
            'Is it safe?', dict(self.CONTEXT, location={'latitude': '3.07', 'longitude': '101.5'})
        )

    def test_follow_ups_for_alert_status(self, app):
        client, _, _ = _client([], api_key='')
        context = {'recent_analyses': [make_assessment(call_density=10, status='alert')]}

        questions = ConversationalAssistant(client).generate_follow_up_questions(context)

        assert questions[0] == 'What immediate steps should I take?'
        assert len(questions) == 4

    def test_follow_ups_without_history(self, app):
        client, _, _ = _client([], api_key='')

        questions = ConversationalAssistant(client).generate_follow_up_questions({})

        assert 1 <= len(questions) <= 4
