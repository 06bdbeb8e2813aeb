"""Key/value store entry model backing recent analyses, alerts, preferences and in-app notifications"""
from datetime import datetime
from nada import db
import json


class StoreEntry(db.Model):
    """Key-value record with an optimistic-concurrency version counter.

    Values are stored as JSON strings. Every write bumps ``version``; writers
    only succeed when the version they read is still current, which keeps
    capped lists correct when several requests touch the same key.
    """
    __tablename__ = 'store_entries'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(200), unique=True, nullable=False, index=True)
    value = db.Column(db.Text, nullable=False)  # JSON-encoded value
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<StoreEntry {self.key} v{self.version}>'

    def get_value(self):
        """Decode the stored JSON value"""
        return json.loads(self.value)

    def set_value(self, value):
        """Set value with JSON encoding"""
        self.value = json.dumps(value)

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            'key': self.key,
            'value': self.get_value(),
            'version': self.version,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
