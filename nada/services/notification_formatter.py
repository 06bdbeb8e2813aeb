"""
Notification Formatter
Channel-appropriate message bodies for push, email and SMS alerts
"""
from datetime import datetime

from flask import render_template_string

SMS_MAX_LENGTH = 160

SEVERITY_COLORS = {
    'critical': '#d32f2f',
    'high': '#f57c00',
    'medium': '#1976d2',
    'low': '#388e3c',
}

EMAIL_HTML_TEMPLATE = """
<html>
  <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #f8f9fa; padding: 20px; border-radius: 8px;">
      <h2 style="color: {{ color }};">{{ payload.title }}</h2>
      <div style="background: white; padding: 15px; border-radius: 6px; margin: 15px 0;">
        <p><strong>Message:</strong> {{ payload.message }}</p>
        <p><strong>Time:</strong> {{ timestamp }}</p>
        <p><strong>Severity:</strong> {{ payload.severity | upper }}</p>
      </div>
      {% if recommendations %}
      <div style="background: #e8f5e8; padding: 15px; border-radius: 6px; margin: 15px 0;">
        <h3 style="color: #2d5a2d; margin-top: 0;">Recommendations for Farmers:</h3>
        <ul style="color: #2d5a2d;">
          {% for rec in recommendations %}<li>{{ rec }}</li>{% endfor %}
        </ul>
      </div>
      {% endif %}
      <div style="margin-top: 20px; padding-top: 15px; border-top: 1px solid #ddd; font-size: 12px; color: #666;">
        <p>This alert was sent by NADA (Natural Acoustic Diagnostics & Alerts)</p>
        <p>Visit your NADA dashboard for more details and historical data.</p>
      </div>
    </div>
  </body>
</html>
"""

EMAIL_TEXT_TEMPLATE = """{{ payload.title }}

{{ payload.message }}

Time: {{ timestamp }}
Severity: {{ payload.severity | upper }}
{% if recommendations %}
Recommendations for Farmers:
{% for rec in recommendations %}- {{ rec }}
{% endfor %}{% endif %}
This alert was sent by NADA (Natural Acoustic Diagnostics & Alerts).
"""


def severity_color(severity):
    return SEVERITY_COLORS.get(severity, '#666666')


def _display_time(timestamp):
    try:
        return datetime.fromisoformat(timestamp).strftime('%d %b %Y %H:%M UTC')
    except (TypeError, ValueError):
        return timestamp or ''


def format_email(payload):
    """
    Build the alert email

    Returns:
        dict with subject, html and text
    """
    context = {
        'payload': payload,
        'color': severity_color(payload.get('severity')),
        'timestamp': _display_time(payload.get('timestamp')),
        'recommendations': payload.get('farmer_recommendations') or [],
    }
    return {
        'subject': f"[NADA Alert] {payload['title']}",
        'html': render_template_string(EMAIL_HTML_TEMPLATE, **context),
        'text': render_template_string(EMAIL_TEXT_TEMPLATE, **context),
    }


def format_sms(payload):
    """Short, actionable SMS text; kept to 160 characters where possible"""
    severity = payload.get('severity')
    if severity == 'critical':
        prefix = 'CRITICAL'
    elif severity == 'high':
        prefix = 'ALERT'
    else:
        prefix = 'NADA'

    message = f"{prefix}: {payload['title']}\n\n{payload['message']}"

    recommendations = payload.get('farmer_recommendations') or []
    if severity == 'critical' and recommendations:
        message += f"\n\nACTION: {recommendations[0]}"

    message += "\n\nCheck NADA app for details."

    if len(message) > SMS_MAX_LENGTH:
        message = f"{prefix}: {payload['title']}\n\n{payload['message']}\n\nCheck NADA app for full details."

    if len(message) > SMS_MAX_LENGTH:
        message = f"{prefix}: {payload['title']}. Check NADA app for full details."

    return message


def format_push(payload, user_id=None):
    """Push provider body"""
    return {
        'title': payload['title'],
        'body': payload['message'],
        'user_id': user_id,
        'data': {
            'id': payload.get('id'),
            'type': payload.get('type'),
            'severity': payload.get('severity'),
            'timestamp': payload.get('timestamp'),
        },
        'priority': 'high' if payload.get('severity') == 'critical' else 'normal',
    }
