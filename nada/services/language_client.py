"""
Generative Language Client - Gemini generateContent integration with retry and backoff
"""
import json
import random
import time

import requests
from flask import current_app

from nada.errors import ExternalLanguageServiceError
from nada.services.retry_policy import RetryPolicy

SAFETY_SETTINGS = [
    {'category': 'HARM_CATEGORY_HARASSMENT', 'threshold': 'BLOCK_MEDIUM_AND_ABOVE'},
    {'category': 'HARM_CATEGORY_HATE_SPEECH', 'threshold': 'BLOCK_MEDIUM_AND_ABOVE'},
    {'category': 'HARM_CATEGORY_SEXUALLY_EXPLICIT', 'threshold': 'BLOCK_MEDIUM_AND_ABOVE'},
    {'category': 'HARM_CATEGORY_DANGEROUS_CONTENT', 'threshold': 'BLOCK_MEDIUM_AND_ABOVE'},
]


class GenerativeLanguageClient:
    """Client for the Gemini generateContent endpoint"""

    def __init__(self, api_key=None, model=None, retry_policy=None, session=None,
                 sleep=time.sleep, rng=random.random):
        config = current_app.config
        self.api_key = api_key if api_key is not None else config.get('GOOGLE_GEMINI_API_KEY', '')
        self.model = model or config.get('GEMINI_MODEL', 'gemini-1.5-flash')
        self.api_base = config.get('GEMINI_API_BASE', 'https://generativelanguage.googleapis.com/v1beta/models')
        self.timeout = config.get('GEMINI_TIMEOUT', 30)
        self.retry_policy = retry_policy or RetryPolicy.from_config('GEMINI')
        self.session = session or requests.Session()
        self._sleep = sleep
        self._rng = rng
        self.last_attempts = 0
        self.recorded_delays_ms = []

    @property
    def api_url(self):
        return f"{self.api_base}/{self.model}:generateContent"

    def is_configured(self):
        return bool(self.api_key)

    def generate(self, prompt, temperature=0.7, max_output_tokens=500):
        """
        Generate text for a prompt

        Args:
            prompt: Full prompt text
            temperature: Sampling temperature
            max_output_tokens: Output token cap

        Returns:
            Generated text, or '' when the model returned no candidate text

        Raises:
            ExternalLanguageServiceError: when not configured, on a non-retryable
                error, or once the retry budget is exhausted
        """
        if not self.is_configured():
            raise ExternalLanguageServiceError('Gemini API key not configured')

        body = {
            'contents': [{'parts': [{'text': prompt}]}],
            'generationConfig': {
                'temperature': temperature,
                'topP': 0.8,
                'topK': 40,
                'maxOutputTokens': max_output_tokens,
                'candidateCount': 1,
            },
            'safetySettings': SAFETY_SETTINGS,
        }

        data = self._post_with_retry(body)
        try:
            text = data['candidates'][0]['content']['parts'][0].get('text', '')
        except (KeyError, IndexError, TypeError, AttributeError):
            current_app.logger.warning("Gemini response contained no candidate text")
            return ''
        return text if isinstance(text, str) else ''

    def _post_with_retry(self, body):
        """POST the request, retrying transient failures per the retry policy"""
        policy = self.retry_policy
        self.recorded_delays_ms = []

        for attempt in range(policy.max_attempts):
            self.last_attempts = attempt + 1
            current_app.logger.info(f"Calling Gemini API (attempt {attempt + 1}/{policy.max_attempts})")

            try:
                response = self.session.post(
                    self.api_url,
                    json=body,
                    headers={
                        'Content-Type': 'application/json',
                        'x-goog-api-key': self.api_key,
                    },
                    timeout=self.timeout
                )
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                current_app.logger.warning(f"Network error on Gemini attempt {attempt + 1}: {e}")
                if policy.should_retry(attempt):
                    self._backoff(attempt, 'network error')
                    continue
                raise ExternalLanguageServiceError(
                    f'Could not reach Gemini API: {e}', attempts=attempt + 1
                ) from e
            except requests.exceptions.RequestException as e:
                current_app.logger.error(f"Gemini request failed on attempt {attempt + 1}: {e}")
                raise ExternalLanguageServiceError(
                    f'Gemini API request failed: {e}', attempts=attempt + 1
                ) from e

            if response.ok:
                try:
                    data = response.json()
                except ValueError as e:
                    current_app.logger.error(f"Gemini API returned a non-JSON body: {(response.text or '')[:200]}")
                    raise ExternalLanguageServiceError(
                        'Gemini API returned a malformed response',
                        status_code=response.status_code,
                        attempts=attempt + 1
                    ) from e
                current_app.logger.info(f"Gemini API call successful on attempt {attempt + 1}")
                return data

            error_text = response.text or ''
            current_app.logger.warning(f"Gemini API responded with {response.status_code}: {error_text[:200]}")

            if policy.should_retry(attempt) and policy.is_retryable(response.status_code, error_text):
                self._backoff(attempt, f'{response.status_code} error')
                continue

            raise ExternalLanguageServiceError(
                f'Gemini API {response.status_code}: {self._parse_error_message(error_text)}',
                status_code=response.status_code,
                attempts=attempt + 1
            )

        # Only reached when max_attempts is 0
        raise ExternalLanguageServiceError('Gemini API call was not attempted', attempts=0)

    def _backoff(self, attempt, reason):
        delay_ms = self.retry_policy.sleep(attempt, sleep=self._sleep, rng=self._rng)
        self.recorded_delays_ms.append(delay_ms)
        current_app.logger.info(f"Retrying Gemini API call in {delay_ms:.0f}ms due to {reason}")

    @staticmethod
    def _parse_error_message(error_text):
        """Pull the message out of a structured Gemini error body"""
        try:
            data = json.loads(error_text)
        except ValueError:
            return error_text
        if isinstance(data, dict) and isinstance(data.get('error'), dict):
            return data['error'].get('message') or error_text
        return error_text

    def test_connection(self):
        """Send a short test prompt; returns success flag, attempts and error"""
        if not self.is_configured():
            return {'success': False, 'error': 'API key not configured', 'attempts': 0}

        try:
            self.generate('Hello, this is a test message from NADA system.',
                          temperature=0.1, max_output_tokens=50)
            return {'success': True, 'attempts': self.last_attempts}
        except ExternalLanguageServiceError as e:
            return {'success': False, 'error': str(e), 'attempts': e.attempts}

    def get_api_status(self):
        """Current configuration summary"""
        policy = self.retry_policy
        return {
            'configured': self.is_configured(),
            'model': self.model,
            'retry_config': {
                'max_retries': policy.max_retries,
                'base_delay_ms': policy.base_delay_ms,
                'max_delay_ms': policy.max_delay_ms,
                'backoff_multiplier': policy.multiplier,
                'jitter_ratio': policy.jitter_ratio,
            }
        }
