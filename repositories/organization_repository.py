"""
OrganizationRepository - Data access layer for Organization entities
"""

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from repositories.base_repository import BaseRepository
from crm_database import Organization
import logging

logger = logging.getLogger(__name__)


class OrganizationRepository(BaseRepository[Organization]):
    """Repository for Organization data access"""

    def __init__(self, session):
        super().__init__(session, Organization)

    def exists_by_id(self, organization_id: int) -> bool:
        return self.exists(id=organization_id)

    def increment_contact_count(self, organization_id: int, amount: int) -> bool:
        """
        Atomically add `amount` to the organization's contact counter.

        Done as a single UPDATE ... SET current_contacts = current_contacts + n
        so concurrent imports into the same organization never lose increments.

        Returns:
            True if a row was updated
        """
        if amount <= 0:
            return False

        try:
            result = self.session.execute(
                update(Organization)
                .where(Organization.id == organization_id)
                .values(current_contacts=Organization.current_contacts + amount)
            )
            self.session.commit()
            logger.debug(f"Incremented contact count for organization {organization_id} by {amount}")
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error incrementing contact count for organization {organization_id}: {e}")
            self.session.rollback()
            raise
