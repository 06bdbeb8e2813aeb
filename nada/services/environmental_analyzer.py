"""
Environmental Analyzer
Soundscape ecology indices: acoustic diversity (biodiversity) and the
normalized difference soundscape index (noise pollution)
"""
import logging

import numpy as np
from scipy import signal

from nada.errors import AnalyzerError
from nada.services.analyzer_base import AcousticAnalyzer

logger = logging.getLogger(__name__)


def categorize_habitat_quality(biodiversity_index):
    """Categorize habitat quality based on biodiversity index"""
    if biodiversity_index >= 0.8:
        return 'excellent'
    if biodiversity_index >= 0.6:
        return 'good'
    if biodiversity_index >= 0.4:
        return 'fair'
    return 'poor'


def assess_ecosystem_health(biodiversity_index, noise_level):
    if biodiversity_index >= 0.7 and noise_level <= 0.3:
        return 'healthy'
    if biodiversity_index >= 0.4 and noise_level <= 0.6:
        return 'stressed'
    return 'degraded'


def generate_recommendations(biodiversity_index, noise_level, frog_calls_detected):
    """Actionable recommendations for farmers"""
    recommendations = []

    if biodiversity_index < 0.5:
        recommendations.append('Consider creating wildlife corridors around your paddy fields')
        recommendations.append('Plant native vegetation along field borders to support biodiversity')

    if noise_level > 0.5:
        recommendations.append('High noise levels detected - consider noise reduction measures')
        recommendations.append('Limit machinery use during early morning and evening hours')

    if not frog_calls_detected:
        recommendations.append('No frog calls detected - check water quality and chemical usage')
        recommendations.append('Consider reducing pesticide application to support amphibian populations')

    if biodiversity_index >= 0.7:
        recommendations.append('Excellent biodiversity! Continue current sustainable practices')

    return recommendations


class AcousticEnvironmentalAnalyzer(AcousticAnalyzer):
    """In-process soundscape analysis"""

    name = 'environmental_analyzer'
    model_version = 'soundscape-indices-v1'

    BAND_WIDTH_HZ = 1000
    MAX_FREQUENCY_HZ = 10000
    OCCUPANCY_THRESHOLD_DB = -50
    ANTHROPHONY_BAND = (1000.0, 2000.0)
    BIOPHONY_BAND = (2000.0, 8000.0)
    FROG_BAND = (400.0, 4000.0)
    FROG_OCCUPANCY_MIN = 0.05
    FRAME_SIZE = 1024

    def analyze(self, samples, sample_rate, filename, location=None):
        self.check_region(location)
        samples = np.asarray(samples, dtype=np.float64)
        if len(samples) < self.FRAME_SIZE:
            raise AnalyzerError(self.name, 'recording too short for soundscape analysis')

        freqs, _, spectrum = signal.stft(samples, fs=sample_rate, nperseg=self.FRAME_SIZE)
        power = np.abs(spectrum) ** 2

        occupancy = self.band_occupancy(power, freqs, sample_rate)
        biodiversity = self.acoustic_diversity_index(occupancy)
        noise_level = self.noise_pollution_level(power, freqs)
        frog_detected = self._frog_band_occupancy(power, freqs) >= self.FROG_OCCUPANCY_MIN

        result = {
            'biodiversity_score': round(biodiversity, 3),
            'habitat_quality': categorize_habitat_quality(biodiversity),
            'noise_pollution_level': round(noise_level, 3),
            'species_richness': int(np.sum(occupancy > 0.1)),
            'ecosystem_health': assess_ecosystem_health(biodiversity, noise_level),
            'recommendations': generate_recommendations(biodiversity, noise_level, frog_detected),
            'model_version': self.model_version,
        }
        logger.info(
            f"{self.name}: {filename} -> biodiversity {result['biodiversity_score']}, "
            f"noise {result['noise_pollution_level']}, {result['ecosystem_health']}"
        )
        return result

    def _threshold(self, power):
        peak = power.max()
        return peak * 10 ** (self.OCCUPANCY_THRESHOLD_DB / 10.0) if peak > 0 else np.inf

    def band_occupancy(self, power, freqs, sample_rate):
        """Fraction of time-frequency cells above threshold in each 1 kHz band"""
        threshold = self._threshold(power)
        top = min(self.MAX_FREQUENCY_HZ, sample_rate / 2.0)
        edges = np.arange(0, top + 1, self.BAND_WIDTH_HZ)

        occupancy = []
        for low, high in zip(edges[:-1], edges[1:]):
            band = (freqs >= low) & (freqs < high)
            if np.any(band):
                occupancy.append(float(np.mean(power[band, :] > threshold)))
        return np.array(occupancy)

    @staticmethod
    def acoustic_diversity_index(occupancy):
        """Shannon entropy of band occupancy, normalized to 0-1"""
        total = occupancy.sum()
        if total <= 0 or len(occupancy) < 2:
            return 0.0
        proportions = occupancy[occupancy > 0] / total
        entropy = -np.sum(proportions * np.log(proportions))
        return float(np.clip(entropy / np.log(len(occupancy)), 0.0, 1.0))

    def noise_pollution_level(self, power, freqs):
        """(1 - NDSI) / 2, so pure biophony is 0 and pure anthrophony is 1"""
        anthro = power[(freqs >= self.ANTHROPHONY_BAND[0]) & (freqs < self.ANTHROPHONY_BAND[1]), :].sum()
        bio = power[(freqs >= self.BIOPHONY_BAND[0]) & (freqs < self.BIOPHONY_BAND[1]), :].sum()
        if anthro + bio <= 0:
            return 0.0
        ndsi = (bio - anthro) / (bio + anthro)
        return float(np.clip((1.0 - ndsi) / 2.0, 0.0, 1.0))

    def _frog_band_occupancy(self, power, freqs):
        threshold = self._threshold(power)
        band = (freqs >= self.FROG_BAND[0]) & (freqs <= self.FROG_BAND[1])
        if not np.any(band):
            return 0.0
        return float(np.mean(power[band, :] > threshold))


class RemoteEnvironmentalAnalyzer(AcousticAnalyzer):
    """AVES-style model endpoint"""

    name = 'environmental_analyzer'

    def __init__(self, client):
        self.client = client

    def analyze(self, samples, sample_rate, filename, location=None):
        self.check_region(location)
        result = self.client.post('analyze', samples, sample_rate, filename, location)

        indicators = result.get('environmental_indicators') or {}
        classifications = result.get('classifications') or []
        biodiversity = indicators.get('biodiversity_index', result.get('biodiversity_score'))
        noise_level = indicators.get('noise_level', result.get('noise_pollution_level'))

        if not isinstance(biodiversity, (int, float)) or not isinstance(noise_level, (int, float)):
            # Sanitization downstream fills in defaults
            return result

        frog_detected = any('frog' in str(c.get('label', '')).lower() for c in classifications)
        return {
            'biodiversity_score': biodiversity,
            'habitat_quality': categorize_habitat_quality(biodiversity),
            'noise_pollution_level': noise_level,
            'species_richness': len(classifications),
            'ecosystem_health': assess_ecosystem_health(biodiversity, noise_level),
            'recommendations': generate_recommendations(biodiversity, noise_level, frog_detected),
            'model_version': (result.get('processing_metadata') or {}).get('model_version'),
        }
