"""
Test Data Factories for the contact import CRM

Usage:
    from tests.fixtures.factories import ImportJobFactory, OrganizationFactory

    # Create single instance
    organization = OrganizationFactory.create(name='Acme')

    # Create with specific attributes
    job = ImportJobFactory.create(status='completed', finished_at=utc_now())
"""

from .base import BaseFactory
from .import_job_factory import ImportJobFactory
from .organization_factory import OrganizationFactory, UserFactory

__all__ = [
    'BaseFactory',
    'ImportJobFactory',
    'OrganizationFactory',
    'UserFactory',
]
