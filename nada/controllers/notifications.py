"""
Notifications Controller - Preferences, test sends, in-app log and delivery audit
"""
from datetime import datetime
from flask import Blueprint, request, jsonify, current_app

from nada.errors import PersistenceError
from nada.models.notification_log import NotificationLog
from nada.services.notification_service import NotificationDispatcher

notifications_bp = Blueprint('notifications', __name__, url_prefix='/api/notifications')


@notifications_bp.route('/preferences', methods=['GET'])
def get_preferences():
    """Stored preferences for ?user_id, or the defaults"""
    user_id = request.args.get('user_id') or 'default'
    try:
        preferences = NotificationDispatcher().get_preferences(user_id)
    except PersistenceError as e:
        current_app.logger.error(f"Failed to get notification preferences: {e}")
        return jsonify({
            'success': False,
            'error': 'Failed to retrieve notification preferences',
            'details': str(e)
        }), 503

    return jsonify({'success': True, 'preferences': preferences})


@notifications_bp.route('/preferences', methods=['POST'])
def update_preferences():
    """Validate and store preferences from {preferences, user_id}"""
    data = request.get_json(silent=True) or {}
    user_id = data.get('user_id') or 'default'

    try:
        preferences = NotificationDispatcher().save_preferences(user_id, data.get('preferences'))
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    current_app.logger.info(f"Notification preferences updated for {user_id}")
    return jsonify({
        'success': True,
        'preferences': preferences,
        'message': 'Notification preferences updated'
    })


@notifications_bp.route('/test', methods=['POST'])
def test_notification():
    """Send a synthetic low-severity system notification through the user's channels"""
    data = request.get_json(silent=True) or {}
    user_id = data.get('user_id')
    now = datetime.utcnow()

    payload = {
        'id': f"test_{int(now.timestamp() * 1000)}",
        'type': 'system',
        'severity': 'low',
        'title': 'NADA Test Notification',
        'message': 'This is a test notification from your NADA system. Everything is working correctly!',
        'timestamp': now.isoformat(),
    }

    dispatcher = NotificationDispatcher()
    preferences = dispatcher.get_preferences(user_id)
    result = dispatcher.send(payload, preferences, user_id)

    return jsonify({
        'success': True,
        'result': result,
        'message': 'Test notification sent'
    })


@notifications_bp.route('', methods=['GET'])
def list_notifications():
    """In-app notification log for ?user_id (global when omitted)"""
    user_id = request.args.get('user_id')
    limit = request.args.get('limit', 50, type=int)
    notifications = NotificationDispatcher().get_in_app(user_id)[:limit]
    return jsonify({
        'success': True,
        'notifications': notifications,
        'unread_count': len([n for n in notifications if not n.get('read')])
    })


@notifications_bp.route('/deliveries', methods=['GET'])
def list_deliveries():
    """Delivery audit log for push, email and SMS hand-offs"""
    limit = request.args.get('limit', 100, type=int)
    days = request.args.get('days', 7, type=int)

    logs = NotificationLog.get_recent_logs(
        limit=limit,
        channel=request.args.get('channel'),
        status=request.args.get('status'),
        user_id=request.args.get('user_id')
    )

    return jsonify({
        'success': True,
        'deliveries': [log.to_dict() for log in logs],
        'statistics': NotificationLog.get_statistics(days=days)
    })
