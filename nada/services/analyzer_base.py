"""
Analyzer contract shared by the species-call and environmental analyzers,
plus the HTTP plumbing for model-backed remote backends
"""
import io
import logging
from abc import ABC, abstractmethod

import numpy as np
import requests
import soundfile as sf

from nada.errors import AnalyzerError

logger = logging.getLogger(__name__)

# Rough bounds for Malaysia and Indonesia
REGION_BOUNDS = {
    'north': 10,
    'south': -15,
    'east': 145,
    'west': 90,
}


def validate_regional_compatibility(latitude=None, longitude=None):
    """Return False when coordinates fall outside the region the species tables cover"""
    if latitude is None or longitude is None:
        return True
    return (
        REGION_BOUNDS['south'] <= latitude <= REGION_BOUNDS['north']
        and REGION_BOUNDS['west'] <= longitude <= REGION_BOUNDS['east']
    )


def determine_water_quality(calls_per_minute):
    """Water quality hint from call density"""
    if calls_per_minute >= 50:
        return 'good'
    if calls_per_minute >= 30:
        return 'warning'
    return 'alert'


class AcousticAnalyzer(ABC):
    """
    Pure analysis contract

    Implementations take a mono buffer and return a plain dict, or raise
    AnalyzerError. They run on worker threads, so they must not touch the
    Flask application context.
    """

    name = 'analyzer'

    @abstractmethod
    def analyze(self, samples, sample_rate, filename, location=None):
        """
        Analyze one recording

        Args:
            samples: mono float array
            sample_rate: sample rate in Hz
            filename: original file name
            location: optional dict with latitude and longitude

        Returns:
            dict result for this analyzer

        Raises:
            AnalyzerError: on any failure
        """

    def check_region(self, location):
        if location and not validate_regional_compatibility(location.get('latitude'), location.get('longitude')):
            logger.warning(f"{self.name}: location outside Malaysia/Indonesia region, results may be less accurate")


class RemoteAnalyzerClient:
    """POSTs a WAV-encoded buffer to a model endpoint and returns the decoded JSON"""

    def __init__(self, name, endpoint, api_key='', timeout=60, session=None):
        self.name = name
        self.endpoint = (endpoint or '').rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    @staticmethod
    def encode_wav(samples, sample_rate):
        buffer = io.BytesIO()
        sf.write(buffer, np.asarray(samples, dtype=np.float32), sample_rate, format='WAV', subtype='PCM_16')
        return buffer.getvalue()

    def post(self, path, samples, sample_rate, filename, location=None):
        if not self.endpoint:
            raise AnalyzerError(self.name, 'endpoint not configured')

        headers = {}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'

        data = {'filename': filename}
        if location:
            data['latitude'] = location.get('latitude')
            data['longitude'] = location.get('longitude')

        try:
            response = self.session.post(
                f"{self.endpoint}/{path.lstrip('/')}",
                files={'audio': (filename or 'recording.wav', self.encode_wav(samples, sample_rate), 'audio/wav')},
                data=data,
                headers=headers,
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.Timeout as e:
            raise AnalyzerError(self.name, 'request timed out') from e
        except requests.exceptions.ConnectionError as e:
            raise AnalyzerError(self.name, f'could not connect to {self.endpoint}') from e
        except requests.exceptions.HTTPError as e:
            raise AnalyzerError(self.name, f'returned error: {e.response.status_code}') from e
        except ValueError as e:
            raise AnalyzerError(self.name, 'response was not valid JSON') from e

        if not isinstance(result, dict):
            raise AnalyzerError(self.name, 'unexpected response shape')
        return result


def build_species_analyzer(config):
    """Species-call analyzer for the configured backend"""
    from nada.services.species_call_analyzer import AcousticSpeciesCallAnalyzer, RemoteSpeciesCallAnalyzer

    backend = config.get('SPECIES_ANALYZER_BACKEND', 'acoustic')
    if backend == 'remote':
        return RemoteSpeciesCallAnalyzer(RemoteAnalyzerClient(
            'species_call_analyzer',
            config.get('NATURELM_ENDPOINT'),
            config.get('NATURELM_API_KEY', ''),
            config.get('ANALYZER_TIMEOUT', 60)
        ))
    return AcousticSpeciesCallAnalyzer()


def build_environment_analyzer(config):
    """Environmental analyzer for the configured backend"""
    from nada.services.environmental_analyzer import AcousticEnvironmentalAnalyzer, RemoteEnvironmentalAnalyzer

    backend = config.get('ENVIRONMENT_ANALYZER_BACKEND', 'acoustic')
    if backend == 'remote':
        return RemoteEnvironmentalAnalyzer(RemoteAnalyzerClient(
            'environmental_analyzer',
            config.get('AVES_ENDPOINT'),
            config.get('AVES_API_KEY', ''),
            config.get('ANALYZER_TIMEOUT', 60)
        ))
    return AcousticEnvironmentalAnalyzer()
