"""
NADA Services - Audio analysis, alerting, notifications and the farmer assistant
"""
from nada.services.audio_preprocessor import AudioPreprocessor
from nada.services.denoiser import Denoiser
from nada.services.analysis_orchestrator import AnalysisOrchestrator
from nada.services.alert_manager import AlertManager
from nada.services.notification_service import NotificationDispatcher
from nada.services.chat_assistant import ConversationalAssistant
from nada.services.kv_store import KVStore

__all__ = [
    'AudioPreprocessor', 'Denoiser', 'AnalysisOrchestrator', 'AlertManager',
    'NotificationDispatcher', 'ConversationalAssistant', 'KVStore',
]
