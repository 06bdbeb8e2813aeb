"""
Analysis Orchestrator
Runs the species-call and environmental analyzers concurrently, recovers
failed branches with deterministic fallbacks, fuses the results into a water
quality assessment, persists it and raises alerts and notifications
"""
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from datetime import datetime

from flask import current_app

from nada.errors import PersistenceError
from nada.services.alert_manager import AlertManager
from nada.services.analysis_fallbacks import fallback_environmental_analysis, fallback_frog_analysis
from nada.services.analyzer_base import build_environment_analyzer, build_species_analyzer
from nada.services.assessment_fusion import fuse, sanitize_environmental_analysis, sanitize_frog_analysis
from nada.services.kv_store import KVStore
from nada.services.notification_service import NotificationDispatcher, payload_from_alert


def determine_region(latitude, longitude):
    """Coarse region label for Malaysia and Indonesia"""
    if 1 <= latitude <= 7 and 100 <= longitude <= 120:
        return 'Peninsular Malaysia'
    if -1 <= latitude <= 7 and 109 <= longitude <= 120:
        return 'Malaysian Borneo'
    if -11 <= latitude <= 6 and 95 <= longitude <= 141:
        return 'Indonesia'
    return 'Southeast Asia'


def generate_analysis_id():
    return f"analysis_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class AnalysisOrchestrator:
    """Coordinates one analysis request end to end"""

    def __init__(self, species_analyzer=None, environment_analyzer=None, store=None,
                 alert_manager=None, dispatcher=None):
        config = current_app.config
        self.species_analyzer = species_analyzer or build_species_analyzer(config)
        self.environment_analyzer = environment_analyzer or build_environment_analyzer(config)
        self.store = store or KVStore()
        self.alert_manager = alert_manager or AlertManager(self.store)
        self._dispatcher = dispatcher
        self.timeout = config.get('ANALYZER_TIMEOUT', 60)
        self.policy = config.get('FUSION_POLICY')
        self.history_limit = config.get('HISTORY_LIMIT', 50)

    @property
    def dispatcher(self):
        if self._dispatcher is None:
            self._dispatcher = NotificationDispatcher(self.store)
        return self._dispatcher

    def process(self, samples, sample_rate, filename, location=None, audio_metadata=None,
                tags=None, user_id=None):
        """
        Analyze one recording and persist the fused assessment

        Args:
            samples: preprocessed mono buffer
            sample_rate: sample rate in Hz
            filename: original file name
            location: optional dict with latitude and longitude
            audio_metadata: optional dict with duration and file_size
            tags: optional dict with field_id and field_name
            user_id: submitting user, whose preferences drive notifications

        Returns:
            The assessment dict

        Raises:
            PersistenceError: storage failed; the error carries the computed assessment
        """
        analysis_id = generate_analysis_id()
        current_app.logger.info(f"Starting comprehensive audio analysis: {analysis_id}")

        frog_raw, environment_raw, sources = self._run_analyzers(samples, sample_rate, filename, location)

        frog = sanitize_frog_analysis(frog_raw)
        environment = sanitize_environmental_analysis(environment_raw)
        water_quality = fuse(frog, environment, self.policy)

        audio_metadata = audio_metadata or {}
        duration = audio_metadata.get('duration')
        if duration is None and sample_rate:
            duration = round(len(samples) / float(sample_rate), 2)

        assessment = {
            'analysis_id': analysis_id,
            'timestamp': datetime.utcnow().isoformat(),
            'audio_metadata': {
                'filename': filename,
                'duration': duration,
                'file_size': audio_metadata.get('file_size'),
            },
            'frog_analysis': frog,
            'environmental_analysis': environment,
            'water_quality_assessment': water_quality,
            'analysis_sources': sources,
        }

        if location and location.get('latitude') is not None and location.get('longitude') is not None:
            assessment['location'] = {
                'latitude': location['latitude'],
                'longitude': location['longitude'],
                'region': determine_region(location['latitude'], location['longitude']),
            }

        for field in ('field_id', 'field_name'):
            if tags and tags.get(field):
                assessment[field] = tags[field]

        try:
            self._persist(assessment)
        except PersistenceError as e:
            current_app.logger.error(f"Failed to store analysis {analysis_id}: {e}")
            e.assessment = assessment
            raise

        new_alerts = self._raise_alerts(assessment)
        assessment['alerts_created'] = [alert['id'] for alert in new_alerts]
        self._notify(new_alerts, user_id)

        current_app.logger.info(
            f"Comprehensive analysis completed: {analysis_id} "
            f"(score {water_quality['overall_score']}, {water_quality['status']})"
        )
        return assessment

    def _run_analyzers(self, samples, sample_rate, filename, location):
        """
        Run both analyzers in parallel; any failure or timeout in one branch is
        replaced by that branch's fallback without affecting the other
        """
        branches = {
            'frog_analysis': (self.species_analyzer, fallback_frog_analysis),
            'environmental_analysis': (self.environment_analyzer, fallback_environmental_analysis),
        }
        results = {}
        sources = {}

        executor = ThreadPoolExecutor(max_workers=len(branches), thread_name_prefix='nada-analyzer')
        try:
            futures = {
                key: executor.submit(analyzer.analyze, samples, sample_rate, filename, location)
                for key, (analyzer, _) in branches.items()
            }
            deadline = time.monotonic() + self.timeout

            for key, future in futures.items():
                analyzer, fallback = branches[key]
                try:
                    results[key] = future.result(timeout=max(0.0, deadline - time.monotonic()))
                    sources[key] = (results[key] or {}).get('model_version') or analyzer.name
                except FuturesTimeoutError:
                    current_app.logger.warning(
                        f"{analyzer.name} timed out after {self.timeout}s, using fallback"
                    )
                    results[key] = fallback(filename)
                    sources[key] = 'fallback'
                except Exception as e:
                    current_app.logger.warning(f"{analyzer.name} failed, using fallback: {e}")
                    results[key] = fallback(filename)
                    sources[key] = 'fallback'
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return results['frog_analysis'], results['environmental_analysis'], sources

    def _persist(self, assessment):
        analysis_id = assessment['analysis_id']
        self.store.set(KVStore.analysis_key(analysis_id), assessment)
        self.store.append_capped(KVStore.RECENT_ANALYSES, analysis_id, self.history_limit)
        self.store.increment_daily(assessment['timestamp'][:10], analysis_id)
        current_app.logger.info(f"Stored analysis as historical record: {analysis_id}")

    def _raise_alerts(self, assessment):
        try:
            return self.alert_manager.evaluate(assessment)
        except Exception as e:
            current_app.logger.error(f"Failed to create alerts for {assessment['analysis_id']}: {e}")
            return []

    def _notify(self, alerts, user_id=None):
        if not alerts:
            return
        try:
            preferences = self.dispatcher.get_preferences(user_id)
        except Exception as e:
            current_app.logger.error(f"Could not load notification preferences: {e}")
            return

        for alert in alerts:
            try:
                result = self.dispatcher.send(payload_from_alert(alert), preferences, user_id)
            except Exception as e:
                current_app.logger.error(f"Notification dispatch failed for alert {alert['id']}: {e}")
                continue
            alert_status = 'suppressed (quiet hours)' if result['in_quiet_hours'] else (
                f"sent={result['sent']} failed={result['failed']}"
            )
            current_app.logger.info(f"Alert {alert['id']} notification: {alert_status}")

    def get_analysis_history(self, limit=10):
        """Most recent stored assessments, newest first"""
        analysis_ids = self.store.get(KVStore.RECENT_ANALYSES, [])
        analyses = []
        for analysis_id in analysis_ids[:limit]:
            analysis = self.store.get(KVStore.analysis_key(analysis_id))
            if analysis:
                analyses.append(analysis)
        return analyses

    def get_active_alerts(self):
        return self.alert_manager.list_alerts()
