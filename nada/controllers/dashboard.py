"""Dashboard routes"""
from datetime import datetime, timedelta
from flask import Blueprint, request, jsonify, current_app

from nada.services.analysis_orchestrator import AnalysisOrchestrator
from nada.services.kv_store import KVStore

dashboard_bp = Blueprint('dashboard', __name__, url_prefix='/api')

TIME_RANGES = {'1d': 1, '7d': 7, '30d': 30}
MAX_CALL_DENSITY = 80


@dashboard_bp.route('/dashboard/recent')
def recent():
    """Latest analyses and unread alerts"""
    orchestrator = AnalysisOrchestrator()
    analyses = [a for a in orchestrator.get_analysis_history(limit=10) if _plausible(a)]
    alerts = [a for a in orchestrator.get_active_alerts() if not a.get('read')]

    return jsonify({
        'success': True,
        'recent_analyses': analyses,
        'active_alerts': alerts,
        'timestamp': datetime.utcnow().isoformat()
    })


@dashboard_bp.route('/analytics')
def analytics():
    """Aggregates over stored analyses for ?range=1d|7d|30d (default 7d)"""
    time_range = request.args.get('range', '7d')
    if time_range not in TIME_RANGES:
        time_range = '7d'
    days = TIME_RANGES[time_range]

    orchestrator = AnalysisOrchestrator()
    history = orchestrator.get_analysis_history(limit=current_app.config.get('HISTORY_LIMIT', 50))
    cutoff = datetime.utcnow() - timedelta(days=days)
    analyses = [a for a in history if _parse_timestamp(a.get('timestamp')) >= cutoff]

    return jsonify({
        'success': True,
        'analytics': get_analytics(analyses),
        'daily_counts': get_daily_counts(orchestrator.store, days),
        'time_range': time_range,
        'data_type': 'historical'
    })


def get_analytics(analyses):
    """Aggregate call density, species diversity and status distribution"""
    total = len(analyses)
    densities = [(a.get('frog_analysis') or {}).get('call_density') or 0 for a in analyses]
    species = set()
    for analysis in analyses:
        species.update((analysis.get('frog_analysis') or {}).get('species_detected') or [])

    distribution = {'good': 0, 'warning': 0, 'alert': 0}
    for analysis in analyses:
        status = (analysis.get('water_quality_assessment') or {}).get('status')
        if status in distribution:
            distribution[status] += 1

    return {
        'total_analyses': total,
        'average_call_density': round(sum(densities) / total, 1) if total > 0 else 0,
        'species_diversity': len(species),
        'water_quality_distribution': distribution,
    }


def get_daily_counts(store, days):
    """Per-day analysis totals from the daily summaries, oldest first"""
    today = datetime.utcnow().date()
    counts = []
    for offset in range(days - 1, -1, -1):
        day = (today - timedelta(days=offset)).isoformat()
        summary = store.get(KVStore.daily_summary_key(day)) or {}
        counts.append({'date': day, 'total_count': summary.get('total_count', 0)})
    return counts


def _plausible(analysis):
    density = (analysis.get('frog_analysis') or {}).get('call_density') or 0
    return 0 <= density <= MAX_CALL_DENSITY


def _parse_timestamp(value):
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return datetime.min
