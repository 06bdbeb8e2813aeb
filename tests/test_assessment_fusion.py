"""
Tests for nada.services.assessment_fusion.
"""
import math

import pytest

from nada.services.assessment_fusion import (
    DEFAULT_FUSION_POLICY, fuse, sanitize_environmental_analysis, sanitize_frog_analysis,
    status_for_score,
)


def _frog(call_density=62, species=None):
    return sanitize_frog_analysis({
        'species_detected': species if species is not None else ['Microhyla butleri', 'Hylarana erythraea'],
        'call_density': call_density,
        'confidence_score': 0.89,
    })


def _environment(biodiversity=0.78, health='healthy'):
    return sanitize_environmental_analysis({
        'biodiversity_score': biodiversity,
        'habitat_quality': 'good',
        'noise_pollution_level': 0.15,
        'ecosystem_health': health,
        'recommendations': ['Monitor water quality regularly'],
    })


class TestSanitizeFrogAnalysis:
    """Test coercion of species-call results."""

    @pytest.mark.parametrize('raw,expected', [
        (150, 80),
        (-5, 0),
        (45.6, 46),
        (float('nan'), 30),
        ('lots', 30),
        (True, 30),
        (None, 30),
    ])
    def test_call_density_is_clamped_or_defaulted(self, raw, expected):
        assert sanitize_frog_analysis({'call_density': raw})['call_density'] == expected

    def test_call_count_alias(self):
        assert sanitize_frog_analysis({'call_count': 41})['call_density'] == 41

    @pytest.mark.parametrize('raw,expected', [(5, 1.0), (0.0, 0.1), ('x', 0.75)])
    def test_confidence_is_clamped_or_defaulted(self, raw, expected):
        assert sanitize_frog_analysis({'confidence_score': raw})['confidence_score'] == expected

    def test_non_dict_uses_defaults(self):
        result = sanitize_frog_analysis(None)

        assert result == {
            'species_detected': [],
            'call_density': 30,
            'confidence_score': 0.75,
            'water_quality_indicator': 'warning',
        }

    def test_invalid_indicator_is_derived_from_density(self):
        result = sanitize_frog_analysis({'call_density': 10, 'water_quality_indicator': 'purple'})
        assert result['water_quality_indicator'] == 'alert'

    def test_non_string_species_are_dropped(self):
        result = sanitize_frog_analysis({'species_detected': ['Microhyla butleri', 42, None]})
        assert result['species_detected'] == ['Microhyla butleri']


class TestSanitizeEnvironmentalAnalysis:
    def test_defaults(self):
        assert sanitize_environmental_analysis('garbage') == {
            'biodiversity_score': 0.5,
            'habitat_quality': 'fair',
            'noise_pollution_level': 0.3,
            'ecosystem_health': 'stressed',
            'recommendations': ['Monitor ecosystem health regularly'],
        }

    def test_scores_are_clamped(self):
        result = sanitize_environmental_analysis({'biodiversity_score': 1.7, 'noise_pollution_level': -0.2})
        assert result['biodiversity_score'] == 1.0
        assert result['noise_pollution_level'] == 0.0

    def test_unknown_categories_default(self):
        result = sanitize_environmental_analysis({'habitat_quality': 'lush', 'ecosystem_health': 'thriving'})
        assert result['habitat_quality'] == 'fair'
        assert result['ecosystem_health'] == 'stressed'


class TestFuse:
    """Test the weighted fusion."""

    def test_healthy_field(self):
        result = fuse(_frog(62), _environment(0.78, 'healthy'))

        # 1.0 * 0.4 + 0.78 * 0.3 + 1.0 * 0.3
        assert result['overall_score'] == 0.93
        assert result['status'] == 'good'
        assert result['component_scores'] == {'frog': 1.0, 'biodiversity': 0.78, 'environment': 1.0}
        assert any('High frog activity (62 calls/min)' in f for f in result['factors'])
        assert '2 frog species detected - maintain current habitat conditions' in result['farmer_recommendations']

    def test_stressed_field(self):
        result = fuse(_frog(34, ['Fejervarya limnocharis']), _environment(0.44, 'stressed'))

        # 0.6 * 0.4 + 0.44 * 0.3 + 0.5 * 0.3
        assert result['overall_score'] == 0.52
        assert result['status'] == 'warning'
        assert 'Monitor water conditions and consider reducing chemical inputs' in result['farmer_recommendations']

    def test_degraded_field(self):
        result = fuse(_frog(12, []), _environment(0.2, 'degraded'))

        assert result['overall_score'] == 0.2
        assert result['status'] == 'alert'
        assert 'Consider immediate water quality testing' in result['farmer_recommendations']
        assert 'No frog species clearly identified - consider improving habitat conditions' in \
            result['farmer_recommendations']

    def test_status_uses_unrounded_score(self):
        result = fuse(_frog(55), _environment(0.484, 'stressed'))

        # 0.4 + 0.1452 + 0.15 = 0.6952, stored as 0.7
        assert result['overall_score'] == 0.7
        assert result['status'] == 'warning'

    def test_warning_boundary_uses_unrounded_score(self):
        result = fuse(_frog(12), _environment(0.851, 'degraded'))

        # 0.08 + 0.2553 + 0.06 = 0.3953, stored as 0.4
        assert result['overall_score'] == 0.4
        assert result['status'] == 'alert'

    def test_score_is_always_in_range(self):
        for density in (0, 29, 30, 49, 50, 80):
            for biodiversity in (0.0, 0.39, 0.4, 0.69, 0.7, 1.0):
                for health in ('healthy', 'stressed', 'degraded'):
                    result = fuse(_frog(density), _environment(biodiversity, health))
                    assert 0.0 <= result['overall_score'] <= 1.0
                    assert not math.isnan(result['overall_score'])

    def test_recommendations_are_unique(self):
        result = fuse(_frog(12), _environment(0.2, 'degraded'))
        assert len(result['farmer_recommendations']) == len(set(result['farmer_recommendations']))

    def test_policy_override(self):
        strict = dict(DEFAULT_FUSION_POLICY, good_threshold=0.95)

        result = fuse(_frog(62), _environment(0.78, 'healthy'), strict)

        assert result['overall_score'] == 0.93
        assert result['status'] == 'warning'


class TestStatusForScore:
    @pytest.mark.parametrize('score,status', [
        (0.7, 'good'), (0.69, 'warning'), (0.4, 'warning'), (0.39, 'alert'), (0.0, 'alert'),
    ])
    def test_thresholds(self, score, status):
        assert status_for_score(score) == status
