"""
Shared Celery configuration for both Flask app and Celery workers
"""
import os
import ssl
from urllib.parse import urlparse, parse_qs
from celery import Celery

from config import get_config


_SSL_OPTIONS = {
    'ssl_cert_reqs': ssl.CERT_NONE,
    'ssl_ca_certs': None,
    'ssl_certfile': None,
    'ssl_keyfile': None,
}


def add_ssl_params(url):
    """Managed Redis behind rediss:// needs ssl_cert_reqs on the URL"""
    if not url.startswith('rediss://'):
        return url
    parsed = urlparse(url)
    query_params = parse_qs(parsed.query)
    if 'ssl_cert_reqs' not in query_params:
        separator = '&' if parsed.query else '?'
        return url + f"{separator}ssl_cert_reqs=CERT_NONE"
    return url


def create_celery_app(app_name=__name__, flask_app=None):
    """
    Create a Celery app with proper SSL Redis configuration.

    Settings come from the Flask app's config when one is given, otherwise
    from the config class selected by FLASK_ENV.
    """
    if flask_app is not None:
        settings = flask_app.config
    else:
        config_class = get_config()
        settings = {key: getattr(config_class, key) for key in dir(config_class) if key.isupper()}

    def setting(key, default=None):
        return settings.get(key, default)

    broker_url = setting('CELERY_BROKER_URL') or os.environ.get('REDIS_URL') or 'redis://localhost:6379/0'
    result_backend_url = setting('CELERY_RESULT_BACKEND') or broker_url

    broker_uses_ssl = broker_url.startswith('rediss://')
    backend_uses_ssl = result_backend_url.startswith('rediss://')

    celery = Celery(
        app_name,
        broker=add_ssl_params(broker_url),
        backend=add_ssl_params(result_backend_url),
    )

    if broker_uses_ssl or backend_uses_ssl:
        celery.conf.update(
            broker_use_ssl=_SSL_OPTIONS if broker_uses_ssl else None,
            redis_backend_use_ssl=_SSL_OPTIONS if backend_uses_ssl else None,
            broker_connection_retry_on_startup=True,
            broker_connection_retry=True,
            broker_connection_max_retries=3,
            broker_transport_options={
                'socket_connect_timeout': 30,
                'socket_timeout': 30,
            },
        )

    import_queue = setting('IMPORT_QUEUE_NAME', 'contact_import')

    celery.conf.update(
        task_serializer='json',
        result_serializer='json',
        accept_content=['json'],
        timezone='UTC',
        enable_utc=True,
        task_track_started=True,
        # Imports are long-running; hand out one at a time per worker process
        worker_prefetch_multiplier=1,
        worker_concurrency=setting('IMPORT_WORKER_CONCURRENCY', 2),
        result_expires=setting('IMPORT_JOB_FAILED_RETENTION', 86400),
        task_routes={
            'tasks.contact_import_tasks.process_contact_import': {'queue': import_queue},
        },
    )

    return celery
