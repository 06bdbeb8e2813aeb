"""
NADA - Error types
Domain exceptions raised and recovered across the analysis pipeline
"""


class NadaError(Exception):
    """Base class for all NADA errors"""


class InputQualityError(NadaError):
    """Audio failed suitability validation; nothing downstream was attempted"""

    def __init__(self, message, warnings=None, recommendations=None, metadata=None):
        super().__init__(message)
        self.message = message
        self.warnings = list(warnings or [])
        self.recommendations = list(recommendations or [])
        self.metadata = metadata

    def to_dict(self):
        """Convert to dictionary for API responses"""
        payload = {
            'success': False,
            'error': self.message,
            'warnings': self.warnings,
            'recommendations': self.recommendations,
        }
        if self.metadata is not None:
            payload['metadata'] = self.metadata
        return payload


class AudioDecodeError(InputQualityError):
    """Audio bytes could not be decoded into samples"""


class AnalyzerError(NadaError):
    """An analyzer branch failed; recovered with a fallback result"""

    def __init__(self, analyzer, message):
        super().__init__(f"{analyzer}: {message}")
        self.analyzer = analyzer


class FusionDataError(NadaError):
    """A field of an analyzer result is malformed; recovered by defaulting"""

    def __init__(self, field, value):
        super().__init__(f"Malformed value for '{field}': {value!r}")
        self.field = field
        self.value = value


class NotificationChannelError(NadaError):
    """Delivery through one channel failed"""

    def __init__(self, channel, message):
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class ExternalLanguageServiceError(NadaError):
    """The generative-language service call failed"""

    def __init__(self, message, status_code=None, attempts=0):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


class PersistenceError(NadaError):
    """The key/value store could not complete a read or write"""

    def __init__(self, message, assessment=None):
        super().__init__(message)
        self.assessment = assessment
