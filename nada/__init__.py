"""
NADA - Application Factory
Initializes and configures the Flask application
"""
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_mail import Mail
from flask_cors import CORS
from config import config
import os

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
mail = Mail()


def create_app(config_name=None):
    """Application factory pattern"""

    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    config_class = config.get(config_name, config['default'])

    app = Flask(__name__)
    app.config.from_object(config_class)

    if hasattr(config_class, 'init_app'):
        config_class.init_app(app)

    # Initialize extensions with app
    db.init_app(app)
    migrate.init_app(app, db)
    mail.init_app(app)
    CORS(app)

    # Register blueprints
    from nada.controllers.main import main_bp
    from nada.controllers.audio import audio_bp
    from nada.controllers.query import query_bp
    from nada.controllers.notifications import notifications_bp
    from nada.controllers.alerts import alerts_bp
    from nada.controllers.dashboard import dashboard_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(audio_bp)
    app.register_blueprint(query_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(alerts_bp)
    app.register_blueprint(dashboard_bp)

    _register_error_handlers(app)

    # Shell context for flask shell command
    @app.shell_context_processor
    def make_shell_context():
        from nada.models import StoreEntry, NotificationLog
        return {
            'db': db,
            'StoreEntry': StoreEntry,
            'NotificationLog': NotificationLog,
        }

    return app


def _register_error_handlers(app):
    """Map domain exceptions onto JSON responses"""
    from nada.errors import InputQualityError, PersistenceError

    @app.errorhandler(InputQualityError)
    def handle_input_quality(error):
        app.logger.warning(f"Rejected audio input: {error}")
        return jsonify(error.to_dict()), 400

    @app.errorhandler(PersistenceError)
    def handle_persistence(error):
        app.logger.error(f"Persistence failure: {error}")
        return jsonify({
            'success': False,
            'error': 'Storage is temporarily unavailable',
            'details': str(error)
        }), 503

    @app.errorhandler(413)
    def handle_too_large(error):
        return jsonify({'success': False, 'error': 'Audio file is too large'}), 413

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'success': False, 'error': 'Not found'}), 404

    @app.errorhandler(500)
    def handle_internal_error(error):
        original = getattr(error, 'original_exception', None) or error
        app.logger.error(f"Unhandled error: {original}")
        return jsonify({
            'success': False,
            'error': 'Internal server error',
            'details': str(original)
        }), 500
