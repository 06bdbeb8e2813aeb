"""
Assessment Fusion
Sanitizes raw analyzer output and fuses species-call and environmental
results into one weighted water quality assessment
"""
import logging
import math

from nada.errors import FusionDataError
from nada.services.analyzer_base import determine_water_quality

logger = logging.getLogger(__name__)

DEFAULT_FUSION_POLICY = {
    'frog_weight': 0.4,
    'biodiversity_weight': 0.3,
    'environment_weight': 0.3,
    'high_call_density': 50,
    'moderate_call_density': 30,
    'good_threshold': 0.7,
    'warning_threshold': 0.4,
}

WATER_QUALITY_INDICATORS = ('good', 'warning', 'alert')
HABITAT_QUALITIES = ('excellent', 'good', 'fair', 'poor')
ECOSYSTEM_HEALTH = ('healthy', 'stressed', 'degraded')

ENVIRONMENT_SCORES = {'healthy': 1.0, 'stressed': 0.5, 'degraded': 0.2}


def _clamp(value, low, high):
    return max(low, min(high, value))


def _number(raw, *names):
    """First present field among names, which must be a finite real number"""
    for name in names:
        if name in raw and raw[name] is not None:
            value = raw[name]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise FusionDataError(name, value)
            return float(value)
    raise FusionDataError(names[0], None)


def _choice(raw, name, allowed):
    value = raw.get(name)
    if value not in allowed:
        raise FusionDataError(name, value)
    return value


def _string_list(raw, *names):
    for name in names:
        value = raw.get(name)
        if isinstance(value, list):
            return [item for item in value if isinstance(item, str)]
    raise FusionDataError(names[0], raw.get(names[0]))


def _recover(field_fn, default):
    try:
        return field_fn()
    except FusionDataError as e:
        logger.warning(f"Sanitizing analyzer output: {e}, using default {default!r}")
        return default


def sanitize_frog_analysis(raw):
    """
    Coerce a species-call result into its schema; never raises

    Call density is clamped to [0, 80] and rounded to whole calls/min,
    confidence to [0.1, 1.0].
    """
    if not isinstance(raw, dict):
        logger.warning(f"Invalid frog analysis object ({type(raw).__name__}), using defaults")
        raw = {}

    density = _recover(lambda: _number(raw, 'call_density', 'call_count'), 30.0)
    density = int(round(_clamp(density, 0.0, 80.0)))

    confidence = _recover(lambda: _number(raw, 'confidence_score', 'confidence'), 0.75)
    confidence = round(_clamp(confidence, 0.1, 1.0), 2)

    return {
        'species_detected': _recover(lambda: _string_list(raw, 'species_detected', 'species'), []),
        'call_density': density,
        'confidence_score': confidence,
        'water_quality_indicator': _recover(
            lambda: _choice(raw, 'water_quality_indicator', WATER_QUALITY_INDICATORS),
            determine_water_quality(density)
        ),
    }


def sanitize_environmental_analysis(raw):
    """Coerce an environmental result into its schema; never raises"""
    if not isinstance(raw, dict):
        logger.warning(f"Invalid environmental analysis object ({type(raw).__name__}), using defaults")
        raw = {}

    biodiversity = _recover(lambda: _number(raw, 'biodiversity_score'), 0.5)
    noise = _recover(lambda: _number(raw, 'noise_pollution_level'), 0.3)

    return {
        'biodiversity_score': round(_clamp(biodiversity, 0.0, 1.0), 3),
        'habitat_quality': _recover(lambda: _choice(raw, 'habitat_quality', HABITAT_QUALITIES), 'fair'),
        'noise_pollution_level': round(_clamp(noise, 0.0, 1.0), 3),
        'ecosystem_health': _recover(lambda: _choice(raw, 'ecosystem_health', ECOSYSTEM_HEALTH), 'stressed'),
        'recommendations': _recover(
            lambda: _string_list(raw, 'recommendations'),
            ['Monitor ecosystem health regularly']
        ),
    }


def status_for_score(score, policy=None):
    """Map an overall score onto good / warning / alert"""
    policy = policy or DEFAULT_FUSION_POLICY
    if score >= policy['good_threshold']:
        return 'good'
    if score >= policy['warning_threshold']:
        return 'warning'
    return 'alert'


def _dedupe(items):
    seen = set()
    ordered = []
    for item in items:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


def fuse(frog, environment, policy=None):
    """
    Weighted fusion of sanitized analyzer results

    Args:
        frog: sanitized species-call result
        environment: sanitized environmental result
        policy: weights and thresholds (defaults to DEFAULT_FUSION_POLICY)

    Returns:
        dict with overall_score, status, factors, farmer_recommendations
        and component_scores
    """
    policy = dict(DEFAULT_FUSION_POLICY, **(policy or {}))
    factors = []
    recommendations = []

    call_density = frog['call_density']
    if call_density >= policy['high_call_density']:
        frog_score = 1.0
        factors.append(f'High frog activity ({call_density} calls/min) indicates healthy water')
    elif call_density >= policy['moderate_call_density']:
        frog_score = 0.6
        factors.append(f'Moderate frog activity ({call_density} calls/min) suggests adequate water quality')
        recommendations.append('Monitor water conditions and consider reducing chemical inputs')
    else:
        frog_score = 0.2
        factors.append(f'Low frog activity ({call_density} calls/min) may indicate water quality issues')
        recommendations.append('Check water pH, dissolved oxygen, and chemical contamination')
        recommendations.append('Consider immediate water quality testing')

    biodiversity_score = environment['biodiversity_score']
    if biodiversity_score >= 0.7:
        factors.append('High biodiversity indicates healthy ecosystem')
    elif biodiversity_score >= 0.4:
        factors.append('Moderate biodiversity - ecosystem under some stress')
        recommendations.append('Implement sustainable farming practices to support biodiversity')
    else:
        factors.append('Low biodiversity suggests ecosystem degradation')
        recommendations.append('Urgent need for ecosystem restoration measures')

    health = environment['ecosystem_health']
    environment_score = ENVIRONMENT_SCORES.get(health, ENVIRONMENT_SCORES['stressed'])
    if health == 'healthy':
        factors.append('Healthy ecosystem conditions detected')
    elif health == 'degraded':
        factors.append('Ecosystem appears degraded')
        recommendations.append('Implement immediate conservation measures')
    else:
        factors.append('Ecosystem shows signs of stress')
        recommendations.append('Reduce environmental stressors and monitor closely')

    species = frog['species_detected']
    if species:
        recommendations.append(f'{len(species)} frog species detected - maintain current habitat conditions')
    else:
        recommendations.append('No frog species clearly identified - consider improving habitat conditions')

    raw_score = (
        frog_score * policy['frog_weight']
        + biodiversity_score * policy['biodiversity_weight']
        + environment_score * policy['environment_weight']
    )

    # Status comes from the full-precision sum (float noise trimmed); only the
    # stored score is rounded to 2 places
    return {
        'overall_score': round(raw_score, 2),
        'status': status_for_score(round(raw_score, 9), policy),
        'factors': _dedupe(factors),
        'farmer_recommendations': _dedupe(recommendations),
        'component_scores': {
            'frog': frog_score,
            'biodiversity': biodiversity_score,
            'environment': environment_score,
        },
    }
