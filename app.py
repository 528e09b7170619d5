# app.py

from flask import Flask, g, request, jsonify
from flask_migrate import Migrate
from config import get_config
from extensions import db, login_manager
import os
import uuid
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="contact-import-crm", log_level=os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_logger(__name__)


# Configure Sentry for production error tracking
def init_sentry():
    """Initialize Sentry error tracking in production."""
    sentry_dsn = os.environ.get('SENTRY_DSN')
    if sentry_dsn and os.environ.get('FLASK_ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.celery import CeleryIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FlaskIntegration(transaction_style='endpoint'),
                SqlalchemyIntegration(),
                CeleryIntegration()
            ],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.environ.get('FLASK_ENV', 'development'),
            release=os.environ.get('GIT_SHA', 'unknown')
        )
        logger.info("Sentry error tracking initialized")


init_sentry()


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)

    # Initialize app with config
    config_class.init_app(app)

    if test_config:
        app.config.update(test_config)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)
    Migrate(app, db)

    # Celery shares this app's config; tasks look it up via celery.current_app
    from celery_config import create_celery_app
    celery = create_celery_app(app.import_name, flask_app=app)
    celery.set_default()
    app.extensions['celery'] = celery

    app.services = _create_service_registry(app)

    # Initialize authentication
    login_manager.init_app(app)

    # User loader for Flask-Login
    from crm_database import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    # Add request tracking middleware
    @app.before_request
    def before_request():
        g.request_id = str(uuid.uuid4())
        logger.info("Request started",
                    request_id=g.request_id,
                    method=request.method,
                    path=request.path)

    @app.after_request
    def after_request(response):
        logger.info("Request completed",
                    request_id=getattr(g, 'request_id', None),
                    status_code=response.status_code)
        return response

    # Global error handlers
    @app.errorhandler(RequestEntityTooLarge)
    def request_too_large(error):
        max_mb = app.config['IMPORT_MAX_FILE_SIZE'] // (1024 * 1024)
        return jsonify({'error': f'File too large. Maximum size is {max_mb}MB'}), 413

    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error",
                     request_id=getattr(g, 'request_id', None),
                     error=str(error))
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning("Page not found",
                       request_id=getattr(g, 'request_id', None),
                       path=request.path)
        return jsonify({'error': 'Not found'}), 404

    # Health check endpoint - must be defined before blueprints to avoid auth
    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring - no auth required"""
        from sqlalchemy import text
        health_status = {
            'status': 'healthy',
            'service': 'contact-import-crm'
        }

        try:
            # Quick database check
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except Exception as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error("Health check database error", error=str(e))

        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    # Register blueprints for routes
    from routes.contact_import_routes import contact_import_bp

    app.register_blueprint(contact_import_bp, url_prefix='/api/contacts')

    return app


def _create_service_registry(app):
    """
    Wire repositories and services.

    Repositories and the import service are transient so each lookup binds
    to whatever db.session is current (test fixtures replace it).
    """
    from services.registry import ServiceRegistry, ServiceLifecycle

    registry = ServiceRegistry()
    transient = ServiceLifecycle.TRANSIENT

    registry.register_factory('db_session', lambda: db.session, lifecycle=transient)

    registry.register_factory(
        'contact_repository',
        lambda db_session: _create_contact_repository(db_session),
        lifecycle=transient,
        dependencies=['db_session']
    )
    registry.register_factory(
        'organization_repository',
        lambda db_session: _create_organization_repository(db_session),
        lifecycle=transient,
        dependencies=['db_session']
    )
    registry.register_factory(
        'tag_repository',
        lambda db_session: _create_tag_repository(db_session),
        lifecycle=transient,
        dependencies=['db_session']
    )
    registry.register_factory(
        'import_job_repository',
        lambda db_session: _create_import_job_repository(db_session),
        lifecycle=transient,
        dependencies=['db_session']
    )

    # Stateless helpers
    registry.register_factory('import_parser', _create_import_parser)
    registry.register_factory('import_validator', _create_import_validator)

    registry.register_factory(
        'contact_import',
        lambda contact_repository, organization_repository, tag_repository,
               import_job_repository, import_parser, import_validator: _create_contact_import_service(
            app.config,
            contact_repository,
            organization_repository,
            tag_repository,
            import_job_repository,
            import_parser,
            import_validator
        ),
        lifecycle=transient,
        dependencies=['contact_repository', 'organization_repository', 'tag_repository',
                      'import_job_repository', 'import_parser', 'import_validator']
    )

    missing = registry.validate_dependencies()
    if missing:
        raise RuntimeError(f"Service registry misconfigured: {missing}")

    return registry


# Factory functions for lazy loading

def _create_contact_repository(db_session):
    """Create ContactRepository instance"""
    from repositories.contact_repository import ContactRepository
    return ContactRepository(session=db_session)


def _create_organization_repository(db_session):
    """Create OrganizationRepository instance"""
    from repositories.organization_repository import OrganizationRepository
    return OrganizationRepository(session=db_session)


def _create_tag_repository(db_session):
    """Create TagRepository instance"""
    from repositories.tag_repository import TagRepository
    return TagRepository(session=db_session)


def _create_import_job_repository(db_session):
    """Create ImportJobRepository instance"""
    from repositories.import_job_repository import ImportJobRepository
    return ImportJobRepository(session=db_session)


def _create_import_parser():
    from services.import_parser import ImportParser
    return ImportParser()


def _create_import_validator():
    from services.import_validator import ImportValidator
    return ImportValidator()


def _create_contact_import_service(config, contact_repository, organization_repository, tag_repository,
                                   import_job_repository, import_parser, import_validator):
    """Create ContactImportService with its repositories and import settings"""
    from services.contact_import_service import ContactImportService
    return ContactImportService(
        contact_repository=contact_repository,
        organization_repository=organization_repository,
        tag_repository=tag_repository,
        import_job_repository=import_job_repository,
        parser=import_parser,
        validator=import_validator,
        sync_threshold=config['IMPORT_SYNC_THRESHOLD'],
        batch_size=config['IMPORT_BATCH_SIZE'],
        default_contact_name=config['IMPORT_DEFAULT_CONTACT_NAME'],
        queue_name=config['IMPORT_QUEUE_NAME'],
    )


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
