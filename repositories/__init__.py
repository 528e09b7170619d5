"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import BaseRepository
from .contact_repository import ContactRepository
from .organization_repository import OrganizationRepository
from .tag_repository import TagRepository
from .import_job_repository import ImportJobRepository, ImportJobStatus

__all__ = [
    'BaseRepository',
    'ContactRepository',
    'OrganizationRepository',
    'TagRepository',
    'ImportJobRepository',
    'ImportJobStatus',
]
