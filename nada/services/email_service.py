"""Email service for sending alert notifications"""
from flask import current_app
from flask_mail import Message

from nada import mail
from nada.errors import NotificationChannelError


def send_email(subject, recipients, html=None, body=None):
    """
    Send an email synchronously so the caller learns whether it was accepted

    Args:
        subject: Email subject line
        recipients: Email address or list of addresses
        html: HTML body
        body: Plain text body

    Raises:
        NotificationChannelError: if email is disabled or the SMTP hand-off fails
    """
    app = current_app._get_current_object()

    if not app.config.get('EMAIL_ENABLED'):
        raise NotificationChannelError('email', 'email delivery not configured')

    # Ensure recipients is a list
    if isinstance(recipients, str):
        recipients = [recipients]

    msg = Message(
        subject=subject,
        recipients=recipients,
        sender=app.config.get('MAIL_DEFAULT_SENDER', 'alerts@nada-app.com')
    )
    msg.html = html
    msg.body = body or f"NADA Notification: {subject}"

    try:
        mail.send(msg)
    except Exception as e:
        app.logger.error(f"Failed to send email to {', '.join(recipients)}: {e}")
        raise NotificationChannelError('email', str(e)) from e

    app.logger.info(f"Email sent to {', '.join(recipients)}: {subject}")
