"""
Contact Import Service - Bulk contact import orchestration

Small files are imported inside the request. Files at or above the sync
threshold become an ImportJob processed by a Celery worker, which runs the
same per-row algorithm (run_import) and reports progress per batch.
"""

import json
import random
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import FileStorage

from logging_config import get_logger
from repositories.contact_repository import ContactRepository
from repositories.import_job_repository import ImportJobRepository
from repositories.organization_repository import OrganizationRepository
from repositories.tag_repository import TagRepository
from services.exceptions import (
    JobNotFound,
    OrganizationNotFound,
    PersistenceError,
    ValidationError,
)
from services.import_parser import ImportParser
from services.import_schemas import (
    ImportConfig,
    ImportOutcome,
    ImportResult,
    ParsedContact,
    RawRow,
)
from services.import_validator import ImportValidator
from utils.datetime_utils import utc_now

logger = get_logger(__name__)


TAG_COLORS = (
    '#8b5cf6',  # purple
    '#3b82f6',  # blue
    '#10b981',  # green
    '#f59e0b',  # amber
    '#ef4444',  # red
    '#ec4899',  # pink
)

# Fields an update overwrites even when the new value is empty
OVERWRITE_FIELDS = ('company', 'position', 'city', 'state', 'notes')

ERROR_VALUE_MAX_LENGTH = 100

ProgressCallback = Callable[[int], None]
JobDispatcher = Callable[[str, Dict[str, Any]], None]


def _row_preview(row: RawRow) -> str:
    """Compact JSON of the offending row, truncated for the error report"""
    return json.dumps(row, ensure_ascii=False, separators=(',', ':'), default=str)[:ERROR_VALUE_MAX_LENGTH]


class ContactImportService:
    """
    Orchestrates bulk contact imports using the repository pattern.

    Uses repositories for all database access; the parser and validator
    are stateless and injected so tests can substitute them.
    """

    def __init__(self,
                 contact_repository: ContactRepository,
                 organization_repository: OrganizationRepository,
                 tag_repository: TagRepository,
                 import_job_repository: ImportJobRepository,
                 parser: Optional[ImportParser] = None,
                 validator: Optional[ImportValidator] = None,
                 sync_threshold: int = 500,
                 batch_size: int = 100,
                 default_contact_name: str = 'Sem nome',
                 queue_name: str = 'contact_import',
                 dispatcher: Optional[JobDispatcher] = None):
        self.contact_repository = contact_repository
        self.organization_repository = organization_repository
        self.tag_repository = tag_repository
        self.import_job_repository = import_job_repository
        self.parser = parser or ImportParser()
        self.validator = validator or ImportValidator()
        self.sync_threshold = sync_threshold
        self.batch_size = batch_size
        self.default_contact_name = default_contact_name
        self.queue_name = queue_name
        self._dispatcher = dispatcher or self._dispatch_celery_task

    # Entry points

    def process_import(self, file: FileStorage, content_type: Optional[str],
                       user_id: Optional[int], organization_id: int,
                       config: Optional[ImportConfig] = None) -> ImportOutcome:
        """
        Import an uploaded spreadsheet into an organization's contacts.

        Args:
            file: Uploaded CSV or xlsx file
            content_type: Declared MIME type of the upload
            user_id: User who started the import
            organization_id: Tenant receiving the contacts
            config: Import options (defaults when omitted)

        Returns:
            ImportOutcome with either the finished result or a job id to poll

        Raises:
            OrganizationNotFound: Unknown organization
            UnsupportedFormat, UnreadableFile: File could not be parsed
        """
        config = config or ImportConfig()

        self.ensure_organization_exists(organization_id)

        rows = self.parser.parse(file, content_type, config.column_mapping)

        if len(rows) < self.sync_threshold:
            logger.info("Processing contact import synchronously",
                        organization_id=organization_id, rows=len(rows))
            result = self.run_import(rows, organization_id, config)
            return ImportOutcome.sync(result)

        job_id = self._enqueue_job(rows, user_id, organization_id, config)
        return ImportOutcome.queued(job_id)

    def run_import(self, rows: List[RawRow], organization_id: int, config: ImportConfig,
                   progress_callback: Optional[ProgressCallback] = None) -> ImportResult:
        """
        Run the per-row import algorithm in batches.

        Row-level failures are recorded in the result and never abort the run.
        Each batch's new contacts go in as one insert; a failed insert marks
        the whole batch as errored and moves on to the next one.

        Args:
            rows: Raw rows in file order
            organization_id: Tenant receiving the contacts
            config: Import options
            progress_callback: Called with 0-100 after every batch

        Returns:
            ImportResult with per-category counts and error details
        """
        result = ImportResult(total=len(rows))
        tags_to_create: Set[str] = set()
        total = len(rows)

        try:
            for batch_start in range(0, total, self.batch_size):
                batch = rows[batch_start:batch_start + self.batch_size]
                pending: List[Dict[str, Any]] = []
                queued_by_email: Dict[str, Dict[str, Any]] = {}

                for offset, row in enumerate(batch):
                    line = batch_start + offset + 2  # line 1 is the header
                    self._process_row(row, line, organization_id, config, result,
                                      pending, queued_by_email, tags_to_create)

                self._insert_batch(pending, batch_start, result)

                if progress_callback:
                    processed = batch_start + len(batch)
                    progress_callback(int(processed * 100 / total + 0.5))
        finally:
            # Batches already committed are counted even when the run aborts,
            # a retried job sees those rows as duplicates
            if result.inserted > 0:
                self.organization_repository.increment_contact_count(organization_id, result.inserted)

        if tags_to_create and config.create_tags:
            self._create_tags(organization_id, tags_to_create)

        logger.info("Contact import finished",
                    organization_id=organization_id,
                    total=result.total,
                    success=result.success,
                    duplicates=result.duplicates,
                    errors=result.errors)
        return result

    def ensure_organization_exists(self, organization_id: int) -> None:
        """Raises OrganizationNotFound for unknown tenants"""
        if not self.organization_repository.exists_by_id(organization_id):
            raise OrganizationNotFound(organization_id)

    def get_job_status(self, job_id: str, organization_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Look up a background import.

        Raises:
            JobNotFound: Unknown or reclaimed job, or owned by another organization
        """
        job = self.import_job_repository.get_by_id(job_id)
        if job is None or (organization_id is not None and job.organization_id != organization_id):
            raise JobNotFound(job_id)

        status = {
            'status': job.status,
            'progress': job.progress,
        }
        if job.result is not None:
            status['result'] = job.result
        if job.error:
            status['error'] = job.error
        return status

    # Per-row algorithm

    def _process_row(self, row: RawRow, line: int, organization_id: int, config: ImportConfig,
                     result: ImportResult, pending: List[Dict[str, Any]],
                     queued_by_email: Dict[str, Dict[str, Any]], tags_to_create: Set[str]) -> None:
        try:
            contact = self.validator.validate(row)
        except ValidationError as e:
            result.add_error(line=line, error=e.message, field=e.field, value=_row_preview(row))
            return

        if contact.email and config.skip_duplicates:
            queued = queued_by_email.get(contact.email)
            if queued is not None:
                # Same email earlier in this batch, not yet written
                if config.update_existing:
                    queued.update(self._merged_fields(queued.get('name'), queued.get('phone'), contact))
                    result.success += 1
                else:
                    result.duplicates += 1
                return

            try:
                existing = self.contact_repository.find_by_organization_and_email(
                    organization_id, contact.email
                )
                if existing is not None:
                    if config.update_existing:
                        self._update_existing(existing, contact)
                        result.success += 1
                    else:
                        result.duplicates += 1
                    return
            except SQLAlchemyError as e:
                self.contact_repository.rollback()
                logger.warning("Duplicate handling failed for row", line=line, error=str(e))
                result.add_error(line=line, error=str(e), value=_row_preview(row))
                return

        if contact.tags and config.create_tags:
            tags_to_create.update(contact.tags)

        values = self._to_insert_values(contact, organization_id)
        pending.append(values)
        if contact.email:
            queued_by_email[contact.email] = values

    @staticmethod
    def _merged_fields(current_name, current_phone, contact: ParsedContact) -> Dict[str, Any]:
        """name/phone only when the new value is non-empty; the rest always overwritten"""
        updates = {
            'name': contact.name or current_name,
            'phone': contact.phone or current_phone,
        }
        for field in OVERWRITE_FIELDS:
            updates[field] = getattr(contact, field)
        return updates

    def _update_existing(self, existing, contact: ParsedContact) -> None:
        updates = self._merged_fields(existing.name, existing.phone, contact)
        self.contact_repository.update(existing, **updates)
        # Updates commit per row, independent of the batch insert
        self.contact_repository.commit()

    def _to_insert_values(self, contact: ParsedContact, organization_id: int) -> Dict[str, Any]:
        return {
            'organization_id': organization_id,
            'name': contact.name or self.default_contact_name,
            'email': contact.email,
            'phone': contact.phone,
            'company': contact.company,
            'position': contact.position,
            'city': contact.city,
            'state': contact.state,
            'notes': contact.notes,
            'custom_fields': contact.custom_fields,
            'status': 'ACTIVE',
            'created_at': utc_now(),
        }

    def _insert_batch(self, pending: List[Dict[str, Any]], batch_start: int, result: ImportResult) -> None:
        if not pending:
            return

        try:
            inserted = self.contact_repository.bulk_insert_ignore_conflicts(pending)
        except PersistenceError as e:
            logger.error("Batch insert failed", batch_start=batch_start, size=len(pending), error=str(e))
            result.add_error(line=batch_start, error=f"Batch insert failed: {e}", count=len(pending))
            return

        result.success += len(pending)
        result.inserted += inserted

    def _create_tags(self, organization_id: int, tag_names: Set[str]) -> None:
        for name in sorted(tag_names):
            try:
                self.tag_repository.upsert_by_organization_and_name(
                    organization_id, name, random.choice(TAG_COLORS)
                )
            except SQLAlchemyError as e:
                logger.warning("Failed to create tag", organization_id=organization_id, tag=name, error=str(e))

    # Background jobs

    def _enqueue_job(self, rows: List[RawRow], user_id: Optional[int], organization_id: int,
                     config: ImportConfig) -> str:
        job_id = str(uuid.uuid4())
        job = self.import_job_repository.create_job(
            job_id=job_id,
            organization_id=organization_id,
            user_id=user_id,
            total_rows=len(rows),
        )

        payload = {
            'rows': rows,
            'userId': user_id,
            'organizationId': organization_id,
            'config': config.to_dict(),
        }

        try:
            self._dispatcher(job_id, payload)
        except Exception:
            logger.exception("Failed to enqueue contact import", job_id=job_id)
            self.import_job_repository.delete(job)
            self.import_job_repository.commit()
            raise

        logger.info("Queued contact import job",
                    job_id=job_id, organization_id=organization_id, rows=len(rows))
        return job_id

    def _dispatch_celery_task(self, job_id: str, payload: Dict[str, Any]) -> None:
        # Import the task
        from tasks.contact_import_tasks import process_contact_import

        process_contact_import.apply_async(
            args=[job_id, payload],
            task_id=job_id,
            queue=self.queue_name,
        )
