"""
NADA - Database Models
"""
from nada.models.store_entry import StoreEntry
from nada.models.notification_log import NotificationLog

__all__ = [
    # Key/value persistence
    'StoreEntry',

    # Communication & Notifications
    'NotificationLog',
]
