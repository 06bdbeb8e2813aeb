"""
Alert Manager
Evaluates trigger rules against fused assessments and maintains the bounded
active alert list
"""
from datetime import datetime

from flask import current_app

from nada.services.kv_store import KVStore

BIODIVERSITY_ALERT_THRESHOLD = 0.3


class AlertManager:
    """Creates, lists and actions alerts"""

    def __init__(self, store=None):
        self.store = store or KVStore()
        self.cap = current_app.config.get('ALERT_LIMIT', 20)

    @staticmethod
    def alert_id(analysis_id, alert_type):
        return f'alert_{analysis_id}_{alert_type}'

    def build_alerts(self, assessment):
        """
        Apply the trigger rules to one assessment without storing anything

        Returns:
            list of alert dicts (at most one per rule)
        """
        analysis_id = assessment['analysis_id']
        frog = assessment.get('frog_analysis') or {}
        environment = assessment.get('environmental_analysis') or {}
        water_quality = assessment.get('water_quality_assessment') or {}
        timestamp = datetime.utcnow().isoformat()
        alerts = []

        if water_quality.get('status') == 'alert':
            alerts.append({
                'id': self.alert_id(analysis_id, 'water_quality'),
                'analysis_id': analysis_id,
                'type': 'water_quality',
                'severity': 'critical',
                'title': 'Critical Water Quality Alert',
                'message': (
                    f"Very low frog activity detected ({frog.get('call_density')} calls/min). "
                    "Immediate attention required."
                ),
                'recommendations': list(water_quality.get('farmer_recommendations') or []),
                'timestamp': timestamp,
                'read': False,
                'dismissed': False,
            })

        biodiversity = environment.get('biodiversity_score')
        if biodiversity is not None and biodiversity < BIODIVERSITY_ALERT_THRESHOLD:
            alerts.append({
                'id': self.alert_id(analysis_id, 'biodiversity'),
                'analysis_id': analysis_id,
                'type': 'biodiversity',
                'severity': 'medium',
                'title': 'Low Biodiversity Alert',
                'message': 'Ecosystem biodiversity is critically low. Consider conservation measures.',
                'recommendations': list(environment.get('recommendations') or []),
                'timestamp': timestamp,
                'read': False,
                'dismissed': False,
            })

        for alert in alerts:
            for field in ('field_id', 'field_name'):
                if assessment.get(field):
                    alert[field] = assessment[field]

        return alerts

    def evaluate(self, assessment):
        """
        Create alerts for an assessment and prepend them to the active list

        Evaluating the same assessment again creates nothing new.

        Returns:
            list of newly created alerts
        """
        candidates = self.build_alerts(assessment)
        if not candidates:
            return []

        created = []

        def _prepend(current):
            current = current if isinstance(current, list) else []
            existing_ids = {a.get('id') for a in current}
            fresh = [a for a in candidates if a['id'] not in existing_ids]
            # fn may run again on a write conflict
            created[:] = fresh
            return (fresh + current)[:self.cap]

        self.store.update(KVStore.ACTIVE_ALERTS, _prepend, default=[])

        for alert in created:
            current_app.logger.info(f"Created {alert['severity']} {alert['type']} alert {alert['id']}")
        return list(created)

    def list_alerts(self, include_dismissed=False):
        alerts = self.store.get(KVStore.ACTIVE_ALERTS, [])
        if include_dismissed:
            return alerts
        return [a for a in alerts if not a.get('dismissed')]

    def unread_alerts(self):
        return [a for a in self.list_alerts() if not a.get('read')]

    def _set_flag(self, alert_id, flag):
        found = {}

        def _mark(current):
            current = current if isinstance(current, list) else []
            found.clear()
            updated = []
            for alert in current:
                if alert.get('id') == alert_id:
                    alert = dict(alert, **{flag: True})
                    found['alert'] = alert
                updated.append(alert)
            return updated

        self.store.update(KVStore.ACTIVE_ALERTS, _mark, default=[])
        return found.get('alert')

    def mark_read(self, alert_id):
        """Mark an alert read; returns the updated alert or None if unknown"""
        return self._set_flag(alert_id, 'read')

    def dismiss(self, alert_id):
        """Dismiss an alert; returns the updated alert or None if unknown"""
        return self._set_flag(alert_id, 'dismissed')
