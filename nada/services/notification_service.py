"""
Notification Service
Delivers alert payloads over in-app, push, email and SMS channels subject to
per-user preferences and quiet hours. SMS goes through Twilio.
"""
import copy
import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import phonenumbers
import requests
from flask import current_app
from phonenumbers import NumberParseException
from sqlalchemy.exc import SQLAlchemyError
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from nada import db
from nada.errors import NotificationChannelError, PersistenceError
from nada.models.notification_log import NotificationLog
from nada.services import notification_formatter
from nada.services.email_service import send_email
from nada.services.kv_store import KVStore

CHANNEL_TYPES = ('in_app', 'push', 'email', 'sms')
ALERT_TYPES = ('water_quality_critical', 'water_quality_warning', 'biodiversity_low',
               'system_updates', 'daily_summary')
SEVERITIES = ('low', 'medium', 'high', 'critical')
TIME_PATTERN = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)$')


def create_default_preferences():
    """Default notification preferences for a user with none stored"""
    return {
        'channels': [
            {'type': 'in_app', 'enabled': True},
            {'type': 'push', 'enabled': False},
            {'type': 'email', 'enabled': False},
            {'type': 'sms', 'enabled': False},
        ],
        'alert_types': {
            'water_quality_critical': True,
            'water_quality_warning': True,
            'biodiversity_low': True,
            'system_updates': False,
            'daily_summary': False,
        },
        'quiet_hours': {
            'enabled': True,
            'start_time': '22:00',
            'end_time': '06:00',
        },
    }


def validate_preferences(preferences):
    """
    Normalize submitted preferences, filling omitted sections from the defaults

    Raises:
        ValueError: on malformed channels, alert types or quiet-hours times
    """
    if not isinstance(preferences, dict):
        raise ValueError('Preferences must be an object')

    defaults = create_default_preferences()
    result = {}

    channels = preferences.get('channels', defaults['channels'])
    if not isinstance(channels, list):
        raise ValueError('channels must be a list')
    result['channels'] = []
    seen = set()
    for channel in channels:
        if not isinstance(channel, dict) or channel.get('type') not in CHANNEL_TYPES:
            raise ValueError(f"Unknown channel: {channel!r}")
        if channel['type'] in seen:
            raise ValueError(f"Duplicate channel: {channel['type']}")
        seen.add(channel['type'])
        normalized = {'type': channel['type'], 'enabled': bool(channel.get('enabled', False))}
        config = channel.get('config')
        if config is not None:
            if not isinstance(config, dict):
                raise ValueError(f"config for {channel['type']} must be an object")
            normalized['config'] = {k: v for k, v in config.items() if k in ('email', 'phone', 'webhook_url')}
        result['channels'].append(normalized)

    alert_types = preferences.get('alert_types', {})
    if not isinstance(alert_types, dict):
        raise ValueError('alert_types must be an object')
    unknown = set(alert_types) - set(ALERT_TYPES)
    if unknown:
        raise ValueError(f"Unknown alert types: {', '.join(sorted(unknown))}")
    result['alert_types'] = {
        name: bool(alert_types.get(name, defaults['alert_types'][name])) for name in ALERT_TYPES
    }

    requested_quiet_hours = preferences.get('quiet_hours') or {}
    if not isinstance(requested_quiet_hours, dict):
        raise ValueError('quiet_hours must be an object')
    quiet_hours = dict(defaults['quiet_hours'], **requested_quiet_hours)
    for field in ('start_time', 'end_time'):
        if not isinstance(quiet_hours[field], str) or not TIME_PATTERN.match(quiet_hours[field]):
            raise ValueError(f"quiet_hours.{field} must be HH:MM")
    result['quiet_hours'] = {
        'enabled': bool(quiet_hours['enabled']),
        'start_time': quiet_hours['start_time'],
        'end_time': quiet_hours['end_time'],
    }

    location = preferences.get('location')
    if location:
        timezone_name = location.get('timezone') if isinstance(location, dict) else None
        if timezone_name:
            try:
                ZoneInfo(timezone_name)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"Unknown timezone: {timezone_name}")
            result['location'] = {'timezone': timezone_name}

    return result


def _minutes(hhmm):
    hours, minutes = hhmm.split(':')
    return int(hours) * 60 + int(minutes)


def _local_now(preferences, now=None):
    timezone_name = (preferences.get('location') or {}).get('timezone')
    tz = timezone.utc
    if timezone_name:
        try:
            tz = ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            current_app.logger.warning(f"Unknown timezone '{timezone_name}', using UTC for quiet hours")

    if now is None:
        return datetime.now(tz)
    if now.tzinfo is not None:
        return now.astimezone(tz)
    return now


def is_in_quiet_hours(preferences, now=None):
    """
    Whether now falls inside the quiet-hours window

    Both ends of the window are inclusive and windows that cross midnight
    (e.g. 22:00-06:00) wrap around.
    """
    quiet_hours = preferences.get('quiet_hours') or {}
    if not quiet_hours.get('enabled'):
        return False

    local = _local_now(preferences, now)
    current = local.hour * 60 + local.minute
    start = _minutes(quiet_hours.get('start_time', '22:00'))
    end = _minutes(quiet_hours.get('end_time', '06:00'))

    if start > end:
        return current >= start or current <= end
    return start <= current <= end


def is_category_enabled(category, preferences):
    """Check if a payload category is enabled in preferences"""
    alert_types = preferences.get('alert_types') or {}
    if category == 'water_quality':
        return bool(alert_types.get('water_quality_critical') or alert_types.get('water_quality_warning'))
    if category == 'biodiversity':
        return bool(alert_types.get('biodiversity_low'))
    if category == 'system':
        return bool(alert_types.get('system_updates'))
    if category == 'summary':
        return bool(alert_types.get('daily_summary'))
    # Unknown categories are enabled by default
    return True


def payload_from_alert(alert):
    """Notification payload for a stored alert"""
    return {
        'id': alert['id'],
        'type': alert['type'],
        'severity': alert['severity'],
        'title': alert['title'],
        'message': alert['message'],
        'farmer_recommendations': alert.get('recommendations') or [],
        'timestamp': alert.get('timestamp') or datetime.utcnow().isoformat(),
    }


class NotificationDispatcher:
    """Multi-channel notification delivery"""

    def __init__(self, store=None, twilio_client=None, session=None):
        config = current_app.config
        self.store = store or KVStore()
        self.in_app_cap = config.get('IN_APP_NOTIFICATION_LIMIT', 50)
        self.push_url = config.get('PUSH_WEBHOOK_URL', '')
        self.push_api_key = config.get('PUSH_API_KEY', '')
        self.push_timeout = config.get('PUSH_TIMEOUT', 10)
        self.phone_number = config.get('TWILIO_PHONE_NUMBER')
        self.default_region = config.get('SMS_DEFAULT_REGION', 'MY')
        self.session = session or requests.Session()
        self.client = twilio_client

        account_sid = config.get('TWILIO_ACCOUNT_SID')
        auth_token = config.get('TWILIO_AUTH_TOKEN')
        if self.client is None and account_sid and auth_token:
            self.client = Client(account_sid, auth_token)

    # Preferences

    def get_preferences(self, user_id=None):
        stored = self.store.get(KVStore.preferences_key(user_id))
        if not stored:
            return create_default_preferences()
        return stored

    def save_preferences(self, user_id, preferences):
        """Validate and store preferences; raises ValueError when malformed"""
        normalized = validate_preferences(preferences)
        self.store.set(KVStore.preferences_key(user_id), normalized)
        return normalized

    def get_in_app(self, user_id=None):
        return self.store.get(KVStore.notifications_key(user_id), [])

    # Dispatch

    def send(self, payload, preferences, user_id=None, now=None):
        """
        Send a payload through every enabled channel

        Args:
            payload: dict with id, type, severity, title, message, timestamp
                and optional farmer_recommendations
            preferences: notification preferences
            user_id: Optional recipient user
            now: Optional datetime used for the quiet-hours check

        Returns:
            dict with sent and failed channel lists and in_quiet_hours
        """
        sent = []
        failed = []
        preferences = preferences or create_default_preferences()
        current_app.logger.info(f"Sending notification: {payload.get('title')} ({payload.get('severity')})")

        if payload.get('severity') != 'critical' and is_in_quiet_hours(preferences, now):
            current_app.logger.info("Notification suppressed due to quiet hours")
            return {'sent': sent, 'failed': failed, 'in_quiet_hours': True}

        if not is_category_enabled(payload.get('type'), preferences):
            current_app.logger.info(f"Notification type {payload.get('type')} is disabled")
            return {'sent': sent, 'failed': failed, 'in_quiet_hours': False}

        attempted = set()
        for channel in preferences.get('channels') or []:
            channel_type = channel.get('type')
            if not channel.get('enabled') or channel_type in attempted:
                continue
            attempted.add(channel_type)
            config = channel.get('config') or {}

            try:
                if channel_type == 'in_app':
                    self._send_in_app(payload, user_id)
                elif channel_type == 'push':
                    self._send_push(payload, user_id)
                elif channel_type == 'email':
                    if not config.get('email'):
                        continue
                    self._send_email(payload, config['email'], user_id)
                elif channel_type == 'sms':
                    if not config.get('phone'):
                        continue
                    self._send_sms(payload, config['phone'], user_id)
                else:
                    continue
                sent.append(channel_type)
            except (NotificationChannelError, PersistenceError) as e:
                current_app.logger.error(f"Failed to send {channel_type} notification: {e}")
                failed.append(channel_type)
            except Exception as e:
                # Provider or transport errors outside the channel error types
                current_app.logger.error(f"Unexpected error sending {channel_type} notification: {e}")
                failed.append(channel_type)

        current_app.logger.info(f"Notification sent via: {', '.join(sent) or 'none'} | Failed: {', '.join(failed) or 'none'}")
        return {'sent': sent, 'failed': failed, 'in_quiet_hours': False}

    def _send_in_app(self, payload, user_id=None):
        notification = dict(
            copy.deepcopy(payload),
            channel='in_app',
            user_id=user_id,
            read=False,
            created_at=datetime.utcnow().isoformat()
        )
        self.store.append_capped(KVStore.notifications_key(user_id), notification, self.in_app_cap)

    def _send_push(self, payload, user_id=None):
        body = notification_formatter.format_push(payload, user_id)
        log = self._start_log('push', payload, user_id, self.push_url or None, body['body'])

        if not self.push_url:
            self._finish_log(log, error='push provider not configured')
            raise NotificationChannelError('push', 'push provider not configured')

        headers = {'Content-Type': 'application/json'}
        if self.push_api_key:
            headers['Authorization'] = f'Bearer {self.push_api_key}'

        try:
            response = self.session.post(self.push_url, json=body, headers=headers, timeout=self.push_timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            self._finish_log(log, error=str(e))
            raise NotificationChannelError('push', str(e)) from e

        message_id = None
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            message_id = data.get('id')
        self._finish_log(log, provider_message_id=message_id)

    def _send_email(self, payload, email, user_id=None):
        content = notification_formatter.format_email(payload)
        log = self._start_log('email', payload, user_id, email, content['subject'])
        try:
            send_email(content['subject'], email, html=content['html'], body=content['text'])
        except NotificationChannelError as e:
            self._finish_log(log, error=str(e))
            raise
        self._finish_log(log)

    def _send_sms(self, payload, phone, user_id=None):
        message = notification_formatter.format_sms(payload)
        to_phone = self.validate_phone_number(phone)
        log = self._start_log('sms', payload, user_id, to_phone or phone, message)

        if not to_phone:
            self._finish_log(log, error='invalid phone number')
            raise NotificationChannelError('sms', f'invalid phone number: {phone}')

        if not current_app.config.get('SMS_ENABLED') or self.client is None:
            self._finish_log(log, error='SMS provider not configured')
            raise NotificationChannelError('sms', 'SMS provider not configured')

        try:
            twilio_message = self.client.messages.create(
                body=message,
                from_=self.phone_number,
                to=to_phone
            )
        except (TwilioRestException, requests.exceptions.RequestException) as e:
            self._finish_log(log, error=str(e))
            raise NotificationChannelError('sms', str(e)) from e

        current_app.logger.info(f"SMS sent: {twilio_message.sid} to {to_phone}")
        self._finish_log(log, provider_message_id=twilio_message.sid)

    def validate_phone_number(self, phone_number, default_region=None):
        """
        Validate and format phone number to E.164 format

        Args:
            phone_number: Phone number string
            default_region: Region used for numbers without a country code

        Returns:
            Formatted phone number in E.164 format or None if invalid
        """
        try:
            parsed = phonenumbers.parse(phone_number, default_region or self.default_region)
        except NumberParseException as e:
            current_app.logger.warning(f"Phone number parse error for {phone_number}: {e}")
            return None
        if not phonenumbers.is_valid_number(parsed):
            current_app.logger.warning(f"Invalid phone number: {phone_number}")
            return None
        return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)

    # Delivery audit log (best effort)

    def _start_log(self, channel, payload, user_id, recipient, content):
        log = NotificationLog(
            channel=channel,
            user_id=user_id,
            payload_id=payload.get('id'),
            category=payload.get('type'),
            severity=payload.get('severity'),
            recipient=recipient,
            message_content=content,
            status='pending'
        )
        try:
            db.session.add(log)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.warning(f"Could not write {channel} delivery log: {e}")
            return None
        return log

    def _finish_log(self, log, provider_message_id=None, error=None):
        if log is None:
            return
        try:
            if error:
                log.status = 'failed'
                log.error_message = error
                log.failed_at = datetime.utcnow()
            else:
                log.status = 'sent'
                log.provider_message_id = provider_message_id
                log.sent_at = datetime.utcnow()
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.warning(f"Could not update delivery log {log.id}: {e}")
