"""
Pytest configuration and shared fixtures.

This module provides:
- Flask application, client and store fixtures on an in-memory database
- Helper functions for synthetic field recordings
- Stub analyzers and fake HTTP responses for the outbound services
"""
import io

import numpy as np
import requests
import pytest
import soundfile as sf

from nada import create_app, db
from nada.errors import AnalyzerError
from nada.services.kv_store import KVStore

# Test constants
TEST_SAMPLE_RATE = 44100
CALL_FREQUENCY = 1250  # Hz, Microhyla butleri
CALL_LENGTH = 0.1  # seconds
NOISE_AMPLITUDE = 0.005


@pytest.fixture
def app():
    """Application on an in-memory database with all external channels off."""
    app = create_app('testing')
    ctx = app.app_context()
    ctx.push()
    db.create_all()

    yield app

    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return KVStore()


# Helper functions for test data creation

def create_frog_chorus(
    duration: float = 10.0,
    sample_rate: int = TEST_SAMPLE_RATE,
    frequency: float = CALL_FREQUENCY,
    calls_per_second: float = 1.0,
    amplitude: float = 0.5,
    noise_amplitude: float = NOISE_AMPLITUDE,
    seed: int = 7
) -> np.ndarray:
    """
    Tone-burst "calls" over a faint white noise floor.

    Args:
        duration: Length in seconds
        sample_rate: Sample rate in Hz
        frequency: Call frequency in Hz
        calls_per_second: Call rate
        amplitude: Call peak amplitude
        noise_amplitude: Standard deviation of the background noise
        seed: Noise seed

    Returns:
        float32 mono array
    """
    rng = np.random.default_rng(seed)
    n = int(duration * sample_rate)
    samples = rng.normal(0.0, noise_amplitude, n)

    call_samples = int(CALL_LENGTH * sample_rate)
    t = np.arange(call_samples) / sample_rate
    call = amplitude * np.sin(2 * np.pi * frequency * t) * np.hanning(call_samples)

    period = int(sample_rate / calls_per_second)
    for start in range(int(0.25 * sample_rate), n - call_samples, period):
        samples[start:start + call_samples] += call

    return samples.astype(np.float32)


def create_tone(duration=2.0, sample_rate=TEST_SAMPLE_RATE, frequency=CALL_FREQUENCY, amplitude=0.5):
    t = np.arange(int(duration * sample_rate)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.float32)


def encode_wav(samples, sample_rate=TEST_SAMPLE_RATE, channels=1, subtype='PCM_16') -> bytes:
    """Encode a mono buffer as WAV bytes, duplicated across channels if requested."""
    data = np.asarray(samples, dtype=np.float32)
    if channels > 1:
        data = np.tile(data[:, np.newaxis], (1, channels))
    buffer = io.BytesIO()
    sf.write(buffer, data, sample_rate, format='WAV', subtype=subtype)
    return buffer.getvalue()


def band_energy(samples, sample_rate, low, high):
    """Energy between low and high Hz."""
    spectrum = np.abs(np.fft.rfft(samples)) ** 2
    freqs = np.fft.rfftfreq(len(samples), 1.0 / sample_rate)
    return float(spectrum[(freqs >= low) & (freqs <= high)].sum())


def make_assessment(analysis_id='analysis_test_1', call_density=55, biodiversity=0.8,
                    status='good', **extra):
    """Minimal stored assessment shape."""
    assessment = {
        'analysis_id': analysis_id,
        'timestamp': '2026-10-19T08:00:00',
        'frog_analysis': {
            'species_detected': ['Microhyla butleri'],
            'call_density': call_density,
            'confidence_score': 0.8,
            'water_quality_indicator': 'good',
        },
        'environmental_analysis': {
            'biodiversity_score': biodiversity,
            'habitat_quality': 'good',
            'noise_pollution_level': 0.2,
            'ecosystem_health': 'healthy',
            'recommendations': ['Monitor ecosystem health regularly'],
        },
        'water_quality_assessment': {
            'overall_score': 0.9,
            'status': status,
            'factors': [],
            'farmer_recommendations': ['Check water pH, dissolved oxygen, and chemical contamination'],
        },
    }
    assessment.update(extra)
    return assessment


class StubAnalyzer:
    """Analyzer returning a fixed result, or raising when result is an exception."""

    def __init__(self, name, result):
        self.name = name
        self.result = result
        self.calls = 0

    def analyze(self, samples, sample_rate, filename, location=None):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return dict(self.result)


class FailingAnalyzer(StubAnalyzer):
    def __init__(self, name='broken_analyzer'):
        super().__init__(name, AnalyzerError(name, 'model endpoint unavailable'))


class FakeResponse:
    """Minimal requests.Response stand-in."""

    def __init__(self, status_code=200, payload=None, text=''):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError('No JSON body')
        return self._payload

    def raise_for_status(self):
        if not self.ok:
            error = requests.exceptions.HTTPError(f'{self.status_code} error')
            error.response = self
            raise error


def gemini_payload(text):
    return {'candidates': [{'content': {'parts': [{'text': text}]}}]}
