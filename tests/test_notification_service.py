"""
Tests for nada.services.notification_service and the channel formatters.

Quiet hours, category filters, per-channel failure isolation and the
in-app cap. External providers are mocked.
"""
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import requests

from nada import mail
from nada.models.notification_log import NotificationLog
from nada.services import notification_formatter
from nada.services.kv_store import KVStore
from nada.services.notification_service import (
    NotificationDispatcher, create_default_preferences, is_category_enabled, is_in_quiet_hours,
    payload_from_alert, validate_preferences,
)

from tests.conftest import FakeResponse

NIGHT = datetime(2026, 10, 19, 23, 30)
NOON = datetime(2026, 10, 19, 12, 0)


def _payload(severity='medium', category='water_quality', **extra):
    payload = {
        'id': f'alert_analysis_1_{category}',
        'type': category,
        'severity': severity,
        'title': 'Critical Water Quality Alert' if severity == 'critical' else 'Water Quality Warning',
        'message': 'Very low frog activity detected (12 calls/min). Immediate attention required.',
        'farmer_recommendations': ['Check water pH, dissolved oxygen, and chemical contamination'],
        'timestamp': '2026-10-19T23:30:00',
    }
    payload.update(extra)
    return payload


def _preferences(**channels):
    """Default preferences with exactly the named channels enabled"""
    preferences = create_default_preferences()
    for channel in preferences['channels']:
        channel['enabled'] = channel['type'] in channels
        if channels.get(channel['type']):
            channel['config'] = channels[channel['type']]
    return preferences


@pytest.fixture
def dispatcher(store):
    return NotificationDispatcher(store)


class TestQuietHours:
    """Test the quiet-hours window."""

    def test_wraps_midnight(self):
        preferences = create_default_preferences()

        assert is_in_quiet_hours(preferences, NIGHT)
        assert is_in_quiet_hours(preferences, datetime(2026, 10, 19, 3, 0))
        assert not is_in_quiet_hours(preferences, NOON)

    def test_both_ends_inclusive(self):
        preferences = create_default_preferences()

        assert is_in_quiet_hours(preferences, datetime(2026, 10, 19, 22, 0))
        assert is_in_quiet_hours(preferences, datetime(2026, 10, 19, 6, 0))
        assert not is_in_quiet_hours(preferences, datetime(2026, 10, 19, 6, 1))
        assert not is_in_quiet_hours(preferences, datetime(2026, 10, 19, 21, 59))

    def test_same_day_window(self):
        preferences = create_default_preferences()
        preferences['quiet_hours'] = {'enabled': True, 'start_time': '12:00', 'end_time': '14:00'}

        assert is_in_quiet_hours(preferences, datetime(2026, 10, 19, 13, 0))
        assert not is_in_quiet_hours(preferences, NIGHT)

    def test_disabled(self):
        preferences = create_default_preferences()
        preferences['quiet_hours']['enabled'] = False

        assert not is_in_quiet_hours(preferences, NIGHT)

    def test_user_timezone(self, app):
        preferences = create_default_preferences()
        preferences['location'] = {'timezone': 'Asia/Kuala_Lumpur'}

        # 15:30 UTC is 23:30 in Kuala Lumpur
        assert is_in_quiet_hours(preferences, datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc))
        assert not is_in_quiet_hours(preferences, datetime(2026, 10, 19, 23, 30, tzinfo=timezone.utc))


class TestSend:
    """Test dispatch through the enabled channels."""

    def test_warning_is_suppressed_at_night(self, dispatcher):
        result = dispatcher.send(_payload('medium'), create_default_preferences(), now=NIGHT)

        assert result == {'sent': [], 'failed': [], 'in_quiet_hours': True}
        assert dispatcher.get_in_app() == []

    def test_critical_bypasses_quiet_hours(self, dispatcher):
        result = dispatcher.send(_payload('critical'), create_default_preferences(), now=NIGHT)

        assert result == {'sent': ['in_app'], 'failed': [], 'in_quiet_hours': False}
        notifications = dispatcher.get_in_app()
        assert len(notifications) == 1
        assert notifications[0]['read'] is False
        assert notifications[0]['severity'] == 'critical'

    def test_disabled_category_is_suppressed(self, dispatcher):
        preferences = create_default_preferences()
        preferences['alert_types']['biodiversity_low'] = False

        result = dispatcher.send(_payload('critical', 'biodiversity'), preferences, now=NOON)

        assert result == {'sent': [], 'failed': [], 'in_quiet_hours': False}

    def test_failed_channels_do_not_block_others(self, dispatcher):
        preferences = _preferences(
            in_app=None, push=None,
            email={'email': 'farmer@example.com'},
            sms={'phone': '+60123456789'},
        )

        result = dispatcher.send(_payload('critical'), preferences, user_id='farmer_1', now=NOON)

        assert result['sent'] == ['in_app']
        assert result['failed'] == ['push', 'email', 'sms']
        assert len(dispatcher.get_in_app('farmer_1')) == 1
        logs = NotificationLog.get_recent_logs()
        assert {log.channel for log in logs} == {'push', 'email', 'sms'}
        assert all(log.status == 'failed' for log in logs)

    def test_unexpected_channel_error_is_isolated(self, dispatcher):
        dispatcher._send_push = Mock(side_effect=RuntimeError('webhook client crashed'))
        preferences = _preferences(push=None, in_app=None)

        result = dispatcher.send(_payload('critical'), preferences, user_id='farmer_1', now=NOON)

        assert result == {'sent': ['in_app'], 'failed': ['push'], 'in_quiet_hours': False}
        assert len(dispatcher.get_in_app('farmer_1')) == 1

    def test_channels_without_recipient_are_skipped(self, dispatcher):
        preferences = _preferences(in_app=None, email=None, sms=None)

        result = dispatcher.send(_payload('critical'), preferences, now=NOON)

        assert result == {'sent': ['in_app'], 'failed': [], 'in_quiet_hours': False}

    def test_each_channel_attempted_once(self, dispatcher):
        preferences = create_default_preferences()
        preferences['channels'].append({'type': 'in_app', 'enabled': True})

        result = dispatcher.send(_payload('critical'), preferences, now=NOON)

        assert result['sent'] == ['in_app']
        assert len(dispatcher.get_in_app()) == 1

    def test_in_app_log_is_capped(self, dispatcher):
        for i in range(55):
            dispatcher.send(_payload('critical', id=f'alert_{i}'), create_default_preferences(), now=NOON)

        notifications = dispatcher.get_in_app()
        assert len(notifications) == 50
        assert notifications[0]['id'] == 'alert_54'


class TestProviders:
    """Test the external channels with mocked providers."""

    def test_push_webhook(self, app, store):
        app.config['PUSH_WEBHOOK_URL'] = 'https://push.example.com/send'
        app.config['PUSH_API_KEY'] = 'secret'
        session = Mock()
        session.post.return_value = FakeResponse(200, {'id': 'push-1'})
        dispatcher = NotificationDispatcher(store, session=session)

        result = dispatcher.send(_payload('critical'), _preferences(push=None), user_id='farmer_1', now=NOON)

        assert result['sent'] == ['push']
        args, kwargs = session.post.call_args
        assert args[0] == 'https://push.example.com/send'
        assert kwargs['json']['priority'] == 'high'
        assert kwargs['headers']['Authorization'] == 'Bearer secret'
        log = NotificationLog.get_recent_logs(channel='push')[0]
        assert log.status == 'sent'
        assert log.provider_message_id == 'push-1'

    def test_email(self, app, store):
        app.config['EMAIL_ENABLED'] = True
        dispatcher = NotificationDispatcher(store)

        with mail.record_messages() as outbox:
            result = dispatcher.send(
                _payload('critical'), _preferences(email={'email': 'farmer@example.com'}), now=NOON
            )

        assert result['sent'] == ['email']
        assert len(outbox) == 1
        assert outbox[0].subject == '[NADA Alert] Critical Water Quality Alert'
        assert outbox[0].recipients == ['farmer@example.com']

    def test_sms(self, app, store):
        app.config['SMS_ENABLED'] = True
        app.config['TWILIO_PHONE_NUMBER'] = '+15005550006'
        twilio = Mock()
        twilio.messages.create.return_value = Mock(sid='SM123')
        dispatcher = NotificationDispatcher(store, twilio_client=twilio)

        result = dispatcher.send(_payload('critical'), _preferences(sms={'phone': '012-345 6789'}), now=NOON)

        assert result['sent'] == ['sms']
        kwargs = twilio.messages.create.call_args.kwargs
        assert kwargs['to'] == '+60123456789'
        assert kwargs['body'].startswith('CRITICAL: ')
        assert NotificationLog.get_recent_logs(channel='sms')[0].provider_message_id == 'SM123'

    def test_sms_transport_error_does_not_block_in_app(self, app, store):
        app.config['SMS_ENABLED'] = True
        twilio = Mock()
        twilio.messages.create.side_effect = requests.exceptions.ConnectionError('provider down')
        dispatcher = NotificationDispatcher(store, twilio_client=twilio)
        preferences = create_default_preferences()
        preferences['channels'] = [
            {'type': 'sms', 'enabled': True, 'config': {'phone': '+60123456789'}},
            {'type': 'in_app', 'enabled': True},
        ]

        result = dispatcher.send(_payload('critical'), preferences, now=NOON)

        assert result['sent'] == ['in_app']
        assert result['failed'] == ['sms']
        assert NotificationLog.get_recent_logs(channel='sms')[0].status == 'failed'

    def test_push_response_without_object_body(self, app, store):
        app.config['PUSH_WEBHOOK_URL'] = 'https://push.example.com/send'
        session = Mock()
        session.post.return_value = FakeResponse(200, ['queued'])
        dispatcher = NotificationDispatcher(store, session=session)

        result = dispatcher.send(_payload('critical'), _preferences(push=None), now=NOON)

        assert result['sent'] == ['push']
        assert NotificationLog.get_recent_logs(channel='push')[0].provider_message_id is None

    def test_invalid_phone_fails_sms(self, app, store):
        app.config['SMS_ENABLED'] = True
        dispatcher = NotificationDispatcher(store, twilio_client=Mock())

        result = dispatcher.send(_payload('critical'), _preferences(sms={'phone': '12'}), now=NOON)

        assert result['failed'] == ['sms']


class TestPreferences:
    """Test preference validation and storage."""

    def test_defaults_when_nothing_stored(self, dispatcher):
        assert dispatcher.get_preferences('farmer_1') == create_default_preferences()

    def test_save_and_load(self, dispatcher, store):
        saved = dispatcher.save_preferences('farmer_1', {
            'channels': [{'type': 'sms', 'enabled': True, 'config': {'phone': '+60123456789'}}],
            'quiet_hours': {'start_time': '21:30'},
        })

        assert dispatcher.get_preferences('farmer_1') == saved
        assert saved['quiet_hours'] == {'enabled': True, 'start_time': '21:30', 'end_time': '06:00'}
        assert saved['alert_types'] == create_default_preferences()['alert_types']
        assert store.get(KVStore.preferences_key('farmer_1')) == saved

    @pytest.mark.parametrize('preferences', [
        'not a dict',
        {'channels': [{'type': 'pigeon', 'enabled': True}]},
        {'channels': [{'type': 'sms'}, {'type': 'sms'}]},
        {'alert_types': {'meteor_strike': True}},
        {'quiet_hours': {'start_time': '25:00'}},
        {'quiet_hours': 'night'},
        {'quiet_hours': ['22:00', '06:00']},
        {'location': {'timezone': 'Mars/Olympus_Mons'}},
    ])
    def test_invalid_preferences(self, app, preferences):
        with pytest.raises(ValueError):
            validate_preferences(preferences)

    def test_category_mapping(self):
        preferences = create_default_preferences()

        assert is_category_enabled('water_quality', preferences)
        assert is_category_enabled('biodiversity', preferences)
        assert not is_category_enabled('system', preferences)
        assert is_category_enabled('something_new', preferences)


class TestFormatter:
    """Test channel message bodies."""

    def test_email_content(self, app):
        content = notification_formatter.format_email(_payload('critical'))

        assert content['subject'] == '[NADA Alert] Critical Water Quality Alert'
        assert '#d32f2f' in content['html']
        assert 'Check water pH' in content['html']
        assert 'CRITICAL' in content['text']

    def test_sms_fits_in_one_message(self):
        message = notification_formatter.format_sms(_payload('critical'))
        assert len(message) <= 160
        assert message.startswith('CRITICAL: Critical Water Quality Alert')

    def test_long_sms_is_shortened(self):
        message = notification_formatter.format_sms(_payload('high', message='x' * 300))
        assert message == 'ALERT: Water Quality Warning. Check NADA app for full details.'

    def test_push_body(self):
        body = notification_formatter.format_push(_payload('medium'), 'farmer_1')
        assert body['priority'] == 'normal'
        assert body['user_id'] == 'farmer_1'

    def test_payload_from_alert(self):
        alert = {'id': 'alert_1', 'type': 'biodiversity', 'severity': 'medium', 'title': 't',
                 'message': 'm', 'recommendations': ['r'], 'timestamp': '2026-10-19T08:00:00'}

        payload = payload_from_alert(alert)

        assert payload['farmer_recommendations'] == ['r']
        assert payload['type'] == 'biodiversity'
