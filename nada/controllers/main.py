"""
Main Controller - Service index and health check
"""
from datetime import datetime
from flask import Blueprint, jsonify, current_app

from nada.services.language_client import GenerativeLanguageClient

main_bp = Blueprint('main', __name__, url_prefix='/api')


@main_bp.route('/', methods=['GET'])
def index():
    """Service description and endpoint listing"""
    return jsonify({
        'message': 'NADA (Natural Acoustic Diagnostics & Alerts) API Server',
        'version': current_app.config.get('VERSION'),
        'description': 'Bioacoustic water quality monitoring for Malaysian rice farmers',
        'endpoints': [
            'POST /api/audio/analyze - Preprocess, denoise and analyze a field recording',
            'POST /api/audio/analyze-quality - Audio quality and suitability check',
            'POST /api/audio/denoise - Noise profile and denoising metrics',
            'POST /api/query - Farmer assistant over recent analyses and alerts',
            'POST /api/assistant/test - Language service connection test',
            'GET /api/dashboard/recent - Recent analyses and unread alerts',
            'GET /api/analytics - Aggregates over a 1d, 7d or 30d window',
            'GET /api/alerts - Active alerts',
            'GET|POST /api/notifications/preferences - Notification preferences',
            'POST /api/notifications/test - Multi-channel test notification',
            'GET /api/health - Configuration and subsystem status',
        ]
    })


@main_bp.route('/health', methods=['GET'])
def health():
    """Report which credentials are configured and which subsystems are active"""
    config = current_app.config
    api_status = GenerativeLanguageClient().get_api_status()

    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.utcnow().isoformat(),
        'version': config.get('VERSION'),
        'features': {
            'audio_processing': True,
            'biodenoising': True,
            'gemini_integration': api_status['configured'],
            'gemini_model': api_status['model'],
            'gemini_retry_enabled': api_status['retry_config']['max_retries'] > 0,
            'notifications': True,
            'fallback_responses': True,
        },
        'analyzers': {
            'species': config.get('SPECIES_ANALYZER_BACKEND'),
            'environment': config.get('ENVIRONMENT_ANALYZER_BACKEND'),
            'timeout_seconds': config.get('ANALYZER_TIMEOUT'),
        },
        'notification_channels': {
            'in_app': True,
            'push': bool(config.get('PUSH_WEBHOOK_URL')),
            'email': bool(config.get('EMAIL_ENABLED')),
            'sms': bool(config.get('SMS_ENABLED') and config.get('TWILIO_ACCOUNT_SID')),
        },
        'api_status': api_status
    })
