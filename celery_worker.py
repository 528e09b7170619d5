# celery_worker.py
#
# Run the import worker with:
#   celery -A celery_worker.celery worker -Q contact_import,celery
# and the scheduler with:
#   celery -A celery_worker.celery beat

from app import create_app
from logging_config import get_logger

logger = get_logger(__name__)

# Create the Flask app instance. This is still needed to provide context for tasks when they run.
flask_app = create_app()

# The Celery app is built by create_app from the same config
celery = flask_app.extensions['celery']


# Set the custom Task class to ensure tasks run within the Flask app context.
class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)


celery.Task = ContextTask

# --- Celery Beat Schedule ---
celery.conf.beat_schedule = {
    'cleanup-expired-import-jobs': {
        'task': 'tasks.contact_import_tasks.cleanup_expired_import_jobs',
        # Completed jobs are kept 1 hour, failed jobs 24 hours
        'schedule': float(flask_app.config['IMPORT_JOB_CLEANUP_INTERVAL']),
    },
}

# Import tasks to ensure they're registered with Celery
# This must be done after the Flask app is created
with flask_app.app_context():
    import tasks.contact_import_tasks  # noqa: E402,F401

logger.info("Celery worker configured", registered_tasks=sorted(
    name for name in celery.tasks.keys() if not name.startswith('celery.')
))
