"""
Notification Log Model
Tracks every push, email and SMS hand-off to an external delivery provider
"""
from datetime import datetime, timedelta
from sqlalchemy import func
from nada import db


class NotificationLog(db.Model):
    """Log of notifications handed to external providers (push, email, SMS)"""
    __tablename__ = 'notification_log'

    id = db.Column(db.Integer, primary_key=True)
    channel = db.Column(db.String(20), nullable=False, index=True)  # 'push', 'email', 'sms'
    user_id = db.Column(db.String(100), index=True)
    payload_id = db.Column(db.String(100), index=True)
    category = db.Column(db.String(30))  # 'water_quality', 'biodiversity', 'system', 'summary'
    severity = db.Column(db.String(20))
    recipient = db.Column(db.String(200))
    message_content = db.Column(db.Text)
    status = db.Column(db.String(20), default='pending', index=True)  # pending, sent, failed
    provider_message_id = db.Column(db.String(100), index=True)
    error_message = db.Column(db.Text)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    sent_at = db.Column(db.DateTime)
    failed_at = db.Column(db.DateTime)

    def __repr__(self):
        return f'<NotificationLog {self.id} {self.channel} to {self.recipient} status={self.status}>'

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            'id': self.id,
            'channel': self.channel,
            'user_id': self.user_id,
            'payload_id': self.payload_id,
            'category': self.category,
            'severity': self.severity,
            'recipient': self.recipient,
            'message_content': self.message_content,
            'status': self.status,
            'provider_message_id': self.provider_message_id,
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'sent_at': self.sent_at.isoformat() if self.sent_at else None,
            'failed_at': self.failed_at.isoformat() if self.failed_at else None,
        }

    @staticmethod
    def get_recent_logs(limit=100, channel=None, status=None, user_id=None):
        """Get recent notification logs with optional filters"""
        query = NotificationLog.query

        if channel:
            query = query.filter_by(channel=channel)

        if status:
            query = query.filter_by(status=status)

        if user_id:
            query = query.filter_by(user_id=user_id)

        return query.order_by(NotificationLog.created_at.desc()).limit(limit).all()

    @staticmethod
    def get_statistics(days=7):
        """Get delivery statistics for the last N days"""
        cutoff_date = datetime.utcnow() - timedelta(days=days)

        stats = db.session.query(
            NotificationLog.channel,
            NotificationLog.status,
            func.count(NotificationLog.id).label('count')
        ).filter(
            NotificationLog.created_at >= cutoff_date
        ).group_by(
            NotificationLog.channel,
            NotificationLog.status
        ).all()

        result = {}
        for channel, status, count in stats:
            if channel not in result:
                result[channel] = {}
            result[channel][status] = count

        return result
