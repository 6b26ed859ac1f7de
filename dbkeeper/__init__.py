import os
import atexit
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from flask_sqlalchemy import SQLAlchemy


# Initialize extensions
db = SQLAlchemy()


def configure_logging(app):
    """Configure application logging"""

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'dbkeeper.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    app.logger.addHandler(console_handler)
    app.logger.addHandler(file_handler)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from dbkeeper.config import config, BackupSettings
    app.config.from_object(config[config_name])

    configure_logging(app)

    # Ensure required directories exist
    os.makedirs(app.config['TEMP_DIR'], exist_ok=True)
    db_path = app.config['SQLALCHEMY_DATABASE_URI'].replace('sqlite:///', '')
    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite:///') and db_path != ':memory:':
        os.makedirs(os.path.dirname(db_path), exist_ok=True)

    db.init_app(app)

    from dbkeeper.utils.error_tracking import LoggingErrorReporter
    app.extensions['error_reporter'] = LoggingErrorReporter()

    from dbkeeper.routes import backup_routes
    app.register_blueprint(backup_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    from dbkeeper import models
    from dbkeeper.migrations import init_database_schema
    init_database_schema(app)

    # Only one process may own the backup timer
    from dbkeeper.scheduler import BackupScheduler

    settings = BackupSettings.from_config(app.config)
    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)
    is_scheduler_worker = os.environ.get('SCHEDULER_WORKER', 'true').lower() == 'true'

    if is_development:
        should_start_scheduler = is_reloader_child
        app.logger.info(f"Development mode: is_reloader_child={is_reloader_child}")
    else:
        should_start_scheduler = is_scheduler_worker
        app.logger.info(f"Production mode: is_scheduler_worker={is_scheduler_worker}")

    backup_scheduler = BackupScheduler(
        app,
        interval_hours=settings.interval_hours,
        start_delay_minutes=settings.start_delay_minutes
    )
    app.extensions['backup_scheduler'] = backup_scheduler

    if not settings.enabled:
        app.logger.info("Database backup disabled, scheduler not started")
    elif should_start_scheduler:
        app.logger.info("Starting backup scheduler in this process...")
        backup_scheduler.start()
        atexit.register(backup_scheduler.stop)
    else:
        app.logger.info("Backup scheduler skipped in this process (not designated scheduler worker)")

    return app
