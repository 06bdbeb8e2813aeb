"""
Query Controller - Farmer assistant questions and language service checks
"""
import math
import time
from flask import Blueprint, request, jsonify, current_app

from nada.errors import PersistenceError
from nada.services.analysis_orchestrator import AnalysisOrchestrator, determine_region
from nada.services.chat_assistant import ConversationalAssistant, MODE_MODEL
from nada.services.language_client import GenerativeLanguageClient

query_bp = Blueprint('query', __name__, url_prefix='/api')

MAX_CALL_DENSITY = 80

ERROR_FALLBACK_RESPONSE = (
    "I can help you understand your rice field conditions through frog call analysis. "
    "Try asking: 'How is my water quality?', 'What should I do about low frog activity?', "
    "or 'When is the best time to record?' Please upload audio from your fields so I can "
    "provide specific advice."
)

ERROR_FALLBACK_QUESTIONS = [
    'How is my water quality?',
    'When should I record frog calls?',
    'What do different frog calls mean?',
    'How can I improve my water conditions?',
]


def _plausible(analysis):
    density = (analysis.get('frog_analysis') or {}).get('call_density') or 0
    return 0 <= density <= MAX_CALL_DENSITY


def _parse_location(raw):
    """
    Coerce a client-supplied location into {latitude, longitude, region}

    Raises:
        ValueError: when the location is not an object with numeric coordinates
    """
    if not isinstance(raw, dict):
        raise ValueError('location must be an object with latitude and longitude')

    coordinates = {}
    for field, bound in (('latitude', 90), ('longitude', 180)):
        value = raw.get(field)
        if isinstance(value, bool):
            raise ValueError(f'{field} must be a number')
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValueError(f'{field} must be a number')
        if not math.isfinite(number) or abs(number) > bound:
            raise ValueError(f'{field} is out of range')
        coordinates[field] = number

    coordinates['region'] = determine_region(coordinates['latitude'], coordinates['longitude'])
    return coordinates


@query_bp.route('/query', methods=['POST'])
def query():
    """Answer a natural-language question using recent analyses and alerts as context"""
    start = time.time()
    data = request.get_json(silent=True) or {}
    question = (data.get('query') or '').strip()

    if not question:
        return jsonify({'success': False, 'error': 'Query is required'}), 400

    location = None
    if data.get('location') is not None:
        try:
            location = _parse_location(data['location'])
        except ValueError as e:
            return jsonify({'success': False, 'error': str(e)}), 400

    current_app.logger.info(f"Processing natural language query: {question[:100]!r}")

    try:
        orchestrator = AnalysisOrchestrator()
        recent_analyses = [a for a in orchestrator.get_analysis_history(limit=10) if _plausible(a)]
        alerts = orchestrator.get_active_alerts()
        context = {'recent_analyses': recent_analyses, 'active_alerts': alerts}
        if location:
            context['location'] = location

        client = GenerativeLanguageClient()
        result = ConversationalAssistant(client).answer(question, context)
    except PersistenceError as e:
        processing_time = int((time.time() - start) * 1000)
        current_app.logger.error(f"Natural language query processing error ({processing_time}ms): {e}")
        # 200 so the client can still render the fallback text
        return jsonify({
            'success': False,
            'error': "I encountered an issue processing your question, but I'm still here to help!",
            'fallback_response': ERROR_FALLBACK_RESPONSE,
            'follow_up_questions': ERROR_FALLBACK_QUESTIONS,
            'metadata': {
                'processing_time_ms': processing_time,
                'api_mode': 'error_fallback',
                'error_details': str(e),
            }
        })

    processing_time = int((time.time() - start) * 1000)
    current_app.logger.info(
        f"Natural language query processed in {processing_time}ms using {result['mode']} mode"
    )

    return jsonify({
        'success': True,
        'response': result['response'],
        'follow_up_questions': result['follow_up_questions'],
        'metadata': {
            'processing_time_ms': processing_time,
            'api_mode': result['mode'],
            'api_available': client.is_configured(),
            'model_used': result['mode'] == MODE_MODEL,
            'context_analyses': len(recent_analyses),
            'context_alerts': len([a for a in alerts if not a.get('read')]),
            'query_length': len(question),
            'response_length': len(result['response']),
        }
    })


@query_bp.route('/assistant/test', methods=['POST'])
def test_assistant():
    """Check the language service through the retrying client"""
    client = GenerativeLanguageClient()
    current_app.logger.info("Testing Gemini API connection")
    test_result = client.test_connection()

    if test_result['success']:
        return jsonify({
            'success': True,
            'message': f"Gemini API is working correctly (tested with {test_result['attempts']} attempts)",
            'api_available': client.is_configured(),
            'api_status': client.get_api_status()
        })

    current_app.logger.error(
        f"Gemini API test failed after {test_result['attempts']} attempts: {test_result['error']}"
    )
    return jsonify({
        'success': False,
        'message': f"Gemini API test failed after {test_result['attempts']} attempts",
        'error': test_result['error'],
        'api_available': client.is_configured(),
        'api_status': client.get_api_status(),
        'fallback_available': True
    })
