"""
Celery tasks for background contact imports.

Large uploads are parsed in the web request and handed to the worker as a
JSON payload of raw rows. The ImportJob row is the durable record pollers
read; Celery task meta mirrors progress for anyone watching the broker.

Features:
- Same per-row algorithm as synchronous imports
- Per-batch progress, never moving backwards across retries
- Exponential backoff retries (5s, 10s) for transient failures
- Periodic reclamation of finished jobs
"""

from typing import Any, Dict

from celery import Task
from celery import current_app as celery_app
from flask import current_app, has_app_context

from config import Config
from logging_config import get_logger
from services.exceptions import InvalidImportConfig, JobNotFound, OrganizationNotFound
from services.import_schemas import ImportConfig

logger = get_logger(__name__)


def _flask_app():
    """Reuse the worker's app context when present, else build an app"""
    if has_app_context():
        return current_app._get_current_object()
    from app import create_app
    return create_app()


class ContactImportTask(Task):
    """Keeps the ImportJob row in step with Celery's retry/failure lifecycle"""

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning("Contact import retry scheduled", job_id=task_id, error=str(exc))
        self._update_job(task_id, lambda repo, job: repo.mark_waiting(job))

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error("Contact import failed", job_id=task_id, error=str(exc))
        self._update_job(task_id, lambda repo, job: repo.mark_failed(job, str(exc)))

    def _update_job(self, job_id, transition):
        app = _flask_app()
        with app.app_context():
            repo = app.services.get('import_job_repository')
            # The failed attempt may have left the session mid-transaction
            repo.rollback()
            job = repo.get_by_id(job_id)
            if job is None:
                logger.warning("Import job vanished before state update", job_id=job_id)
                return
            transition(repo, job)


@celery_app.task(
    bind=True,
    base=ContactImportTask,
    name='tasks.contact_import_tasks.process_contact_import',
    autoretry_for=(Exception,),
    dont_autoretry_for=(OrganizationNotFound, JobNotFound, InvalidImportConfig),
    max_retries=Config.IMPORT_JOB_MAX_ATTEMPTS - 1,
    retry_backoff=Config.IMPORT_JOB_BACKOFF_SECONDS,
    retry_jitter=False
)
def process_contact_import(self, job_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run a queued contact import.

    Args:
        job_id: ImportJob id (also this task's id)
        payload: {'rows', 'userId', 'organizationId', 'config'}

    Returns:
        The ImportResult as a dict (also stored on the job)
    """
    app = _flask_app()

    with app.app_context():
        import_service = app.services.get('contact_import')
        job_repository = app.services.get('import_job_repository')

        job = job_repository.get_by_id(job_id)
        if job is None:
            raise JobNotFound(job_id)

        job_repository.mark_active(job)
        logger.info("Contact import job started",
                    job_id=job_id, attempt=job.attempts, rows=len(payload.get('rows', [])))

        organization_id = payload['organizationId']
        config = ImportConfig.from_dict(payload.get('config'))
        import_service.ensure_organization_exists(organization_id)

        def report_progress(progress: int) -> None:
            job_repository.update_progress(job, progress)
            self.update_state(
                state='PROGRESS',
                meta={
                    'job_id': job_id,
                    'progress': job.progress,
                }
            )

        result = import_service.run_import(
            payload.get('rows', []),
            organization_id,
            config,
            progress_callback=report_progress,
        )

        result_data = result.to_dict()
        job_repository.mark_completed(job, result_data)
        logger.info("Contact import job completed", job_id=job_id,
                    success=result.success, duplicates=result.duplicates, errors=result.errors)
        return result_data


@celery_app.task(name='tasks.contact_import_tasks.cleanup_expired_import_jobs')
def cleanup_expired_import_jobs() -> Dict[str, Any]:
    """
    Reclaim finished import jobs past their retention window (runs every 15 minutes).

    Returns:
        Dict with success status and number of deleted jobs
    """
    try:
        app = _flask_app()
        with app.app_context():
            job_repository = app.services.get('import_job_repository')
            deleted = job_repository.delete_expired(
                completed_retention=app.config['IMPORT_JOB_COMPLETED_RETENTION'],
                completed_max_keep=app.config['IMPORT_JOB_COMPLETED_MAX_KEEP'],
                failed_retention=app.config['IMPORT_JOB_FAILED_RETENTION'],
            )
            return {'success': True, 'deleted': deleted}

    except Exception as e:
        logger.error("Error cleaning up expired import jobs", error=str(e))
        return {'success': False, 'error': str(e), 'deleted': 0}
