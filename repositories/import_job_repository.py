"""
ImportJobRepository - Durable state for background contact imports
"""

from typing import Optional, Dict, Any
from sqlalchemy.exc import SQLAlchemyError
from repositories.base_repository import BaseRepository
from crm_database import ImportJob
from utils.datetime_utils import utc_now, utc_seconds_ago
import logging

logger = logging.getLogger(__name__)


class ImportJobStatus:
    WAITING = 'waiting'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    FAILED = 'failed'


class ImportJobRepository(BaseRepository[ImportJob]):
    """
    Repository for ImportJob records.

    Every state transition commits immediately so pollers on other
    connections see it without waiting for the worker to finish.
    """

    def __init__(self, session):
        super().__init__(session, ImportJob)

    def create_job(self, job_id: str, organization_id: int, user_id: Optional[int],
                   total_rows: int) -> ImportJob:
        job = self.create(
            id=job_id,
            organization_id=organization_id,
            user_id=user_id,
            status=ImportJobStatus.WAITING,
            progress=0,
            total_rows=total_rows,
            attempts=0,
        )
        self.commit()
        return job

    def get_for_organization(self, job_id: str, organization_id: int) -> Optional[ImportJob]:
        return self.find_one_by(id=job_id, organization_id=organization_id)

    def mark_active(self, job: ImportJob) -> ImportJob:
        self.update(
            job,
            status=ImportJobStatus.ACTIVE,
            attempts=(job.attempts or 0) + 1,
            started_at=utc_now(),
            error=None,
        )
        self.commit()
        return job

    def mark_waiting(self, job: ImportJob) -> ImportJob:
        """Job is queued again for a retry"""
        self.update(job, status=ImportJobStatus.WAITING)
        self.commit()
        return job

    def update_progress(self, job: ImportJob, progress: int) -> ImportJob:
        """
        Record progress, never moving backwards.

        A retried attempt restarts its batch loop at 0%, so the stored
        value keeps whatever maximum the job has already reported.
        """
        progress = max(0, min(100, int(progress)))
        if progress > (job.progress or 0):
            self.update(job, progress=progress)
            self.commit()
        return job

    def mark_completed(self, job: ImportJob, result: Dict[str, Any]) -> ImportJob:
        self.update(
            job,
            status=ImportJobStatus.COMPLETED,
            progress=100,
            result=result,
            error=None,
            finished_at=utc_now(),
        )
        self.commit()
        return job

    def mark_failed(self, job: ImportJob, error: str) -> ImportJob:
        self.update(
            job,
            status=ImportJobStatus.FAILED,
            result=None,
            error=error,
            finished_at=utc_now(),
        )
        self.commit()
        return job

    def delete_expired(self, completed_retention: int, completed_max_keep: int,
                       failed_retention: int) -> int:
        """
        Reclaim finished jobs past their retention window.

        Args:
            completed_retention: Seconds a completed job is kept
            completed_max_keep: Completed jobs beyond the newest N are deleted
            failed_retention: Seconds a failed job is kept

        Returns:
            Number of deleted jobs
        """
        try:
            completed_cutoff = utc_seconds_ago(completed_retention)
            failed_cutoff = utc_seconds_ago(failed_retention)

            expired_ids = set()

            completed_query = self.session.query(ImportJob.id).filter(
                ImportJob.status == ImportJobStatus.COMPLETED
            )
            expired_ids.update(
                row.id for row in completed_query.filter(ImportJob.finished_at < completed_cutoff)
            )
            # Beyond the newest N completed jobs, age no longer matters
            expired_ids.update(
                row.id for row in completed_query
                .order_by(ImportJob.finished_at.desc())
                .offset(completed_max_keep)
            )
            expired_ids.update(
                row.id for row in self.session.query(ImportJob.id).filter(
                    ImportJob.status == ImportJobStatus.FAILED,
                    ImportJob.finished_at < failed_cutoff,
                )
            )

            if not expired_ids:
                return 0

            deleted = self.session.query(ImportJob).filter(
                ImportJob.id.in_(expired_ids)
            ).delete(synchronize_session=False)
            self.session.commit()
            logger.info(f"Deleted {deleted} expired import jobs")
            return deleted
        except SQLAlchemyError as e:
            logger.error(f"Error deleting expired import jobs: {e}")
            self.session.rollback()
            raise
