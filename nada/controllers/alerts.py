"""
Alerts Controller - List, read and dismiss active alerts
"""
from flask import Blueprint, request, jsonify, current_app

from nada.services.alert_manager import AlertManager

alerts_bp = Blueprint('alerts', __name__, url_prefix='/api/alerts')


@alerts_bp.route('', methods=['GET'])
def list_alerts():
    """Active alerts, newest first; ?include_dismissed=true keeps dismissed ones"""
    include_dismissed = request.args.get('include_dismissed', 'false').lower() == 'true'
    alerts = AlertManager().list_alerts(include_dismissed=include_dismissed)

    return jsonify({
        'success': True,
        'alerts': alerts,
        'unread_count': len([a for a in alerts if not a.get('read')])
    })


@alerts_bp.route('/<alert_id>/read', methods=['POST'])
def mark_read(alert_id):
    alert = AlertManager().mark_read(alert_id)
    if alert is None:
        return jsonify({'success': False, 'error': f'Alert {alert_id} not found'}), 404
    return jsonify({'success': True, 'alert': alert})


@alerts_bp.route('/<alert_id>/dismiss', methods=['POST'])
def dismiss(alert_id):
    alert = AlertManager().dismiss(alert_id)
    if alert is None:
        return jsonify({'success': False, 'error': f'Alert {alert_id} not found'}), 404
    current_app.logger.info(f"Alert {alert_id} dismissed")
    return jsonify({'success': True, 'alert': alert})
