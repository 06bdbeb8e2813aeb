"""
Key/Value Store Service
Minimal get / set / append-capped contract over the store_entries table.
Every write is a compare-and-swap on the entry version so concurrent requests
against the same key never lose an update.
"""
import copy
import json
from datetime import datetime
from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from nada import db
from nada.errors import PersistenceError
from nada.models.store_entry import StoreEntry


class KVStore:
    """Atomic key/value operations used for all cross-request shared state"""

    # Well-known keys
    RECENT_ANALYSES = 'recent_analyses'
    ACTIVE_ALERTS = 'active_alerts'

    @staticmethod
    def analysis_key(analysis_id):
        return f'analysis:{analysis_id}'

    @staticmethod
    def daily_summary_key(day):
        return f'daily_summary:{day}'

    @staticmethod
    def preferences_key(user_id):
        return f'notification_preferences:{user_id or "default"}'

    @staticmethod
    def notifications_key(user_id):
        return f'notifications:{user_id}' if user_id else 'notifications:global'

    def __init__(self, max_attempts=None):
        self.max_attempts = max_attempts or current_app.config.get('STORE_CAS_MAX_ATTEMPTS', 5)

    def get(self, key, default=None):
        """
        Read a value

        Args:
            key: Store key
            default: Returned when the key does not exist

        Returns:
            Decoded JSON value or default
        """
        try:
            row = db.session.execute(
                select(StoreEntry.value).where(StoreEntry.key == key)
            ).first()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError(f"Failed to read '{key}': {e}") from e

        if row is None:
            return copy.deepcopy(default)
        return json.loads(row.value)

    def set(self, key, value):
        """Unconditionally replace the value stored under key"""
        return self.update(key, lambda _current: value)

    def append_capped(self, key, item, cap):
        """
        Prepend an item to a list value and trim it to cap entries

        Args:
            key: Store key holding a list
            item: New item (becomes index 0)
            cap: Maximum list length kept

        Returns:
            The list as written
        """
        return self.prepend_many(key, [item], cap)

    def prepend_many(self, key, items, cap):
        """Prepend several items (in order) to a list value and trim it to cap entries"""
        def _prepend(current):
            current = current if isinstance(current, list) else []
            return (list(items) + current)[:cap]

        return self.update(key, _prepend, default=[])

    def update(self, key, fn, default=None):
        """
        Read-modify-write a value with compare-and-swap semantics

        fn receives the current value (or a copy of default when the key is
        missing) and returns the new value. fn may be called more than once
        when another writer wins the race, so it must not have side effects.

        Returns:
            The value as written
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                row = db.session.execute(
                    select(StoreEntry.version, StoreEntry.value).where(StoreEntry.key == key)
                ).first()

                if row is None:
                    new_value = fn(copy.deepcopy(default))
                    entry = StoreEntry(key=key, version=1)
                    entry.set_value(new_value)
                    db.session.add(entry)
                    db.session.commit()
                    return new_value

                new_value = fn(json.loads(row.value))
                result = db.session.execute(
                    update(StoreEntry)
                    .where(StoreEntry.key == key, StoreEntry.version == row.version)
                    .values(
                        value=json.dumps(new_value),
                        version=row.version + 1,
                        updated_at=datetime.utcnow()
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    db.session.commit()
                    return new_value

                db.session.rollback()

            except IntegrityError:
                # Another writer created the key first
                db.session.rollback()
            except SQLAlchemyError as e:
                db.session.rollback()
                raise PersistenceError(f"Failed to write '{key}': {e}") from e

            current_app.logger.info(f"Write conflict on '{key}' (attempt {attempt}/{self.max_attempts}), retrying")

        raise PersistenceError(f"Gave up writing '{key}' after {self.max_attempts} conflicting attempts")

    def delete(self, key):
        """Remove a key; missing keys are ignored"""
        try:
            StoreEntry.query.filter_by(key=key).delete()
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError(f"Failed to delete '{key}': {e}") from e

    def increment_daily(self, day, analysis_id):
        """Record one analysis against the per-day counter"""
        def _increment(summary):
            summary = summary or {'date': day, 'analyses': [], 'total_count': 0}
            summary['analyses'].append(analysis_id)
            summary['total_count'] = summary.get('total_count', 0) + 1
            return summary

        return self.update(self.daily_summary_key(day), _increment)
