"""
Contact import error taxonomy.

Input errors abort a run before any row is touched. Row and batch errors are
recovered inside the run and only show up in the ImportResult. Lookup errors
surface to the caller as not-found conditions.
"""

from typing import Optional


class ContactImportError(Exception):
    """Base class for every error raised by the import pipeline"""
    pass


class UnsupportedFormat(ContactImportError):
    """The uploaded file's content type is not CSV or an Excel workbook"""

    def __init__(self, content_type: Optional[str]):
        self.content_type = content_type
        super().__init__(f"Unsupported file format: {content_type or 'unknown'}")


class UnreadableFile(ContactImportError):
    """The file has a supported type but could not be decoded or parsed"""
    pass


class InvalidImportConfig(ContactImportError):
    """Import options could not be parsed (e.g. malformed column mapping)"""
    pass


class ValidationError(ContactImportError):
    """A single row failed validation. Recovered per row."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class PersistenceError(ContactImportError):
    """A storage operation failed. Recovered at batch granularity."""
    pass


class OrganizationNotFound(ContactImportError):
    def __init__(self, organization_id):
        self.organization_id = organization_id
        super().__init__(f"Organization {organization_id} not found")


class JobNotFound(ContactImportError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Import job {job_id} not found")
