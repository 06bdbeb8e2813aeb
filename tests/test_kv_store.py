"""
Tests for nada.services.kv_store.

Covers the capped-list contract and compare-and-swap behaviour under a
concurrent writer.
"""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from nada import db
from nada.errors import PersistenceError
from nada.models.store_entry import StoreEntry
from nada.services.kv_store import KVStore


class TestGetSet:
    def test_missing_key_returns_default_copy(self, store):
        default = []
        value = store.get('missing', default)
        value.append('x')

        assert default == []
        assert store.get('missing') is None

    def test_round_trip_and_version_bump(self, store):
        store.set('greeting', {'text': 'selamat pagi'})
        store.set('greeting', {'text': 'selamat petang'})

        assert store.get('greeting') == {'text': 'selamat petang'}
        entry = StoreEntry.query.filter_by(key='greeting').one()
        assert entry.version == 2

    def test_delete(self, store):
        store.set('temp', 1)
        store.delete('temp')
        store.delete('never-existed')

        assert store.get('temp') is None


class TestAppendCapped:
    """Test the bounded newest-first lists."""

    def test_newest_first_and_capped(self, store):
        for i in range(60):
            store.append_capped(KVStore.RECENT_ANALYSES, f'analysis_{i}', 50)

        ids = store.get(KVStore.RECENT_ANALYSES)
        assert len(ids) == 50
        assert ids[0] == 'analysis_59'
        assert ids[-1] == 'analysis_10'

    def test_prepend_many_keeps_order(self, store):
        store.append_capped('alerts', 'old', 20)
        store.prepend_many('alerts', ['new_a', 'new_b'], 20)

        assert store.get('alerts') == ['new_a', 'new_b', 'old']

    def test_non_list_value_is_replaced(self, store):
        store.set('alerts', {'corrupt': True})
        store.append_capped('alerts', 'first', 20)

        assert store.get('alerts') == ['first']


class TestCompareAndSwap:
    """Test optimistic concurrency on update."""

    def test_stale_version_is_retried(self, store):
        store.set('counter', 0)
        calls = []

        def increment(value):
            calls.append(value)
            if len(calls) == 1:
                # Another writer lands between our read and our write
                KVStore().set('counter', 100)
            return value + 1

        result = store.update('counter', increment)

        assert result == 101
        assert store.get('counter') == 101
        assert calls == [0, 100]

    def test_gives_up_after_max_attempts(self, app):
        store = KVStore(max_attempts=2)
        store.set('contended', 0)
        other = KVStore()

        def always_conflicting(value):
            other.set('contended', value + 10)
            return value + 1

        with pytest.raises(PersistenceError):
            store.update('contended', always_conflicting)

    def test_daily_summary_counter(self, store):
        store.increment_daily('2026-10-19', 'analysis_a')
        store.increment_daily('2026-10-19', 'analysis_b')

        summary = store.get(KVStore.daily_summary_key('2026-10-19'))
        assert summary == {'date': '2026-10-19', 'analyses': ['analysis_a', 'analysis_b'], 'total_count': 2}


class TestFailures:
    def test_database_error_becomes_persistence_error(self, store):
        error = OperationalError('SELECT', {}, Exception('database is locked'))

        with patch.object(db.session, 'execute', side_effect=error):
            with pytest.raises(PersistenceError):
                store.get('anything')
            with pytest.raises(PersistenceError):
                store.set('anything', 1)


class TestKeys:
    def test_key_helpers(self):
        assert KVStore.analysis_key('analysis_1') == 'analysis:analysis_1'
        assert KVStore.preferences_key(None) == 'notification_preferences:default'
        assert KVStore.preferences_key('farmer_7') == 'notification_preferences:farmer_7'
        assert KVStore.notifications_key(None) == 'notifications:global'
