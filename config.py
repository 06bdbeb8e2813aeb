"""
NADA - Configuration Module
Handles all application configuration settings
"""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name, default='False'):
    return os.environ.get(name, default) == 'True'


class Config:
    """Base configuration"""

    # Flask Core
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    FLASK_APP = os.environ.get('FLASK_APP') or 'app.py'

    # Database (key/value store + delivery log)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///nada.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False
    STORE_CAS_MAX_ATTEMPTS = int(os.environ.get('STORE_CAS_MAX_ATTEMPTS', 5))

    # File Upload
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_UPLOAD_SIZE', 100 * 1024 * 1024))  # 100MB field recordings
    ALLOWED_AUDIO_EXTENSIONS = {'wav', 'mp3', 'flac', 'ogg'}

    # Bounded shared state
    HISTORY_LIMIT = int(os.environ.get('HISTORY_LIMIT', 50))
    ALERT_LIMIT = int(os.environ.get('ALERT_LIMIT', 20))
    IN_APP_NOTIFICATION_LIMIT = int(os.environ.get('IN_APP_NOTIFICATION_LIMIT', 50))

    # Acoustic analyzers
    SPECIES_ANALYZER_BACKEND = os.environ.get('SPECIES_ANALYZER_BACKEND', 'acoustic')  # 'acoustic' or 'remote'
    ENVIRONMENT_ANALYZER_BACKEND = os.environ.get('ENVIRONMENT_ANALYZER_BACKEND', 'acoustic')
    NATURELM_ENDPOINT = os.environ.get('NATURELM_ENDPOINT', 'http://localhost:8000')
    NATURELM_API_KEY = os.environ.get('NATURELM_API_KEY', '')
    AVES_ENDPOINT = os.environ.get('AVES_ENDPOINT', 'http://localhost:8001')
    AVES_API_KEY = os.environ.get('AVES_API_KEY', '')
    ANALYZER_TIMEOUT = float(os.environ.get('ANALYZER_TIMEOUT', 60))  # seconds, per branch

    # Fusion calibration (weights and thresholds are policy, not invariants)
    FUSION_POLICY = {
        'frog_weight': 0.4,
        'biodiversity_weight': 0.3,
        'environment_weight': 0.3,
        'high_call_density': 50,
        'moderate_call_density': 30,
        'good_threshold': 0.7,
        'warning_threshold': 0.4,
    }

    # Google Gemini (conversational assistant)
    GOOGLE_GEMINI_API_KEY = os.environ.get('GOOGLE_GEMINI_API_KEY', '')
    GEMINI_MODEL = os.environ.get('GEMINI_MODEL', 'gemini-1.5-flash')
    GEMINI_API_BASE = os.environ.get(
        'GEMINI_API_BASE', 'https://generativelanguage.googleapis.com/v1beta/models'
    )
    GEMINI_TIMEOUT = int(os.environ.get('GEMINI_TIMEOUT', 30))
    GEMINI_MAX_RETRIES = int(os.environ.get('GEMINI_MAX_RETRIES', 3))
    GEMINI_BASE_DELAY_MS = int(os.environ.get('GEMINI_BASE_DELAY_MS', 1000))
    GEMINI_MAX_DELAY_MS = int(os.environ.get('GEMINI_MAX_DELAY_MS', 10000))
    GEMINI_BACKOFF_MULTIPLIER = float(os.environ.get('GEMINI_BACKOFF_MULTIPLIER', 2))
    GEMINI_JITTER_RATIO = float(os.environ.get('GEMINI_JITTER_RATIO', 0.3))

    # Push notifications (provider webhook)
    PUSH_WEBHOOK_URL = os.environ.get('PUSH_WEBHOOK_URL', '')
    PUSH_API_KEY = os.environ.get('PUSH_API_KEY', '')
    PUSH_TIMEOUT = int(os.environ.get('PUSH_TIMEOUT', 10))

    # Email
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.gmail.com')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', 587))
    MAIL_USE_TLS = _env_bool('MAIL_USE_TLS', 'True')
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER', 'alerts@nada-app.com')
    EMAIL_ENABLED = _env_bool('EMAIL_ENABLED')

    # Twilio Configuration (SMS)
    TWILIO_ACCOUNT_SID = os.environ.get('TWILIO_ACCOUNT_SID')
    TWILIO_AUTH_TOKEN = os.environ.get('TWILIO_AUTH_TOKEN')
    TWILIO_PHONE_NUMBER = os.environ.get('TWILIO_PHONE_NUMBER')
    SMS_ENABLED = _env_bool('SMS_ENABLED')
    SMS_DEFAULT_REGION = os.environ.get('SMS_DEFAULT_REGION', 'MY')

    # Application Settings
    ORGANIZATION_NAME = "NADA"
    PROJECT_NAME = "NADA - Natural Acoustic Diagnostics & Alerts"
    VERSION = "1.2.0"


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    @staticmethod
    def init_app(app):
        # Log to file in production
        import logging
        from logging.handlers import RotatingFileHandler

        if not os.path.exists('logs'):
            os.mkdir('logs')

        file_handler = RotatingFileHandler(
            'logs/nada.log',
            maxBytes=10240000,
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
        app.logger.setLevel(logging.INFO)
        app.logger.info('NADA startup')


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    GOOGLE_GEMINI_API_KEY = ''
    PUSH_WEBHOOK_URL = ''
    EMAIL_ENABLED = False
    SMS_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    ANALYZER_TIMEOUT = 30


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
