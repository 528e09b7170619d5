import os
import secrets
from dotenv import load_dotenv
from typing import Optional

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""
    pass


def _env_int(key: str, default: int) -> int:
    """Read an integer environment variable, tolerating empty strings"""
    value = os.environ.get(key)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be an integer, got {value!r}")


def _add_ssl_params(url: str) -> str:
    """Append the cert requirement managed rediss:// services expect"""
    if url.startswith('rediss://') and 'ssl_cert_reqs' not in url:
        separator = '&' if '?' in url else '?'
        return f"{url}{separator}ssl_cert_reqs=CERT_NONE"
    return url


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    FLASK_ENV = os.environ.get('FLASK_ENV')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'crm.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Celery uses Redis as broker and result backend. Flask loads the
    # uppercase names and celery_config maps them onto the Celery app.
    CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL') or os.environ.get('REDIS_URL') or 'redis://localhost:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND') or CELERY_BROKER_URL

    # Uploads are capped by the import pipeline; leave headroom for form fields
    IMPORT_MAX_FILE_SIZE = _env_int('IMPORT_MAX_FILE_SIZE', 10 * 1024 * 1024)
    MAX_CONTENT_LENGTH = IMPORT_MAX_FILE_SIZE + 64 * 1024
    JSON_SORT_KEYS = False

    # Contact import pipeline
    IMPORT_SYNC_THRESHOLD = _env_int('IMPORT_SYNC_THRESHOLD', 500)
    IMPORT_BATCH_SIZE = _env_int('IMPORT_BATCH_SIZE', 100)
    IMPORT_DEFAULT_CONTACT_NAME = os.environ.get('IMPORT_DEFAULT_CONTACT_NAME', 'Sem nome')

    # Background import jobs
    IMPORT_QUEUE_NAME = os.environ.get('IMPORT_QUEUE_NAME', 'contact_import')
    IMPORT_WORKER_CONCURRENCY = _env_int('IMPORT_WORKER_CONCURRENCY', 2)
    IMPORT_JOB_MAX_ATTEMPTS = _env_int('IMPORT_JOB_MAX_ATTEMPTS', 3)
    IMPORT_JOB_BACKOFF_SECONDS = _env_int('IMPORT_JOB_BACKOFF_SECONDS', 5)
    IMPORT_JOB_COMPLETED_RETENTION = _env_int('IMPORT_JOB_COMPLETED_RETENTION', 3600)  # 1 hour
    IMPORT_JOB_COMPLETED_MAX_KEEP = _env_int('IMPORT_JOB_COMPLETED_MAX_KEEP', 100)
    IMPORT_JOB_FAILED_RETENTION = _env_int('IMPORT_JOB_FAILED_RETENTION', 86400)  # 24 hours
    IMPORT_JOB_CLEANUP_INTERVAL = _env_int('IMPORT_JOB_CLEANUP_INTERVAL', 900)

    # Error tracking
    SENTRY_DSN = os.environ.get('SENTRY_DSN')

    @classmethod
    def validate_required_config(cls) -> None:
        """Validate that all required configuration is present"""
        # Skip validation in testing environment or during migrations
        if os.environ.get('FLASK_ENV') == 'testing' or os.environ.get('SKIP_ENV_VALIDATION'):
            return

        missing_vars = [var for var in ('DATABASE_URL', 'REDIS_URL') if not os.environ.get(var)]
        if missing_vars:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )

        if cls.IMPORT_BATCH_SIZE <= 0:
            raise ConfigurationError("IMPORT_BATCH_SIZE must be positive")

    @staticmethod
    def get_required_env(key: str) -> str:
        """Get required environment variable or raise error"""
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        pass


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # Disable login requirement for testing
    LOGIN_DISABLED = True

    # Tests never reach a broker; tasks are invoked directly or mocked
    CELERY_BROKER_URL = 'memory://'
    CELERY_RESULT_BACKEND = 'cache+memory://'

    LOG_LEVEL = 'WARNING'


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')
    SQLALCHEMY_ENGINE_OPTIONS = {'pool_pre_ping': True}

    REDIS_URL = os.environ.get('REDIS_URL', '')
    CELERY_BROKER_URL = _add_ssl_params(REDIS_URL)
    CELERY_RESULT_BACKEND = _add_ssl_params(REDIS_URL)

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        Config.init_app(app)

        # Validate all required config
        cls.validate_required_config()

        # Log to syslog in production
        import logging
        from logging.handlers import SysLogHandler
        syslog_handler = SysLogHandler()
        syslog_handler.setLevel(logging.WARNING)
        app.logger.addHandler(syslog_handler)


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type[Config]:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    return config.get(config_name, DevelopmentConfig)
