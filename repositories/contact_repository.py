"""
ContactRepository - Data access layer for Contact entities
Isolates all database queries related to contacts
"""

from typing import List, Optional, Dict, Any
from sqlalchemy import insert as generic_insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from repositories.base_repository import BaseRepository
from services.exceptions import PersistenceError
from crm_database import Contact
import logging

logger = logging.getLogger(__name__)


# Dialects whose INSERT supports ON CONFLICT DO NOTHING ... RETURNING
_CONFLICT_AWARE_INSERTS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}


class ContactRepository(BaseRepository[Contact]):
    """Repository for Contact data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, Contact)

    def find_by_organization_and_email(self, organization_id: int, email: str) -> Optional[Contact]:
        """
        Find a contact by exact email within one organization.

        Args:
            organization_id: Owning organization
            email: Email to match (case-sensitive)

        Returns:
            Contact or None
        """
        return self.find_one_by(organization_id=organization_id, email=email)

    def count_by_organization(self, organization_id: int) -> int:
        return self.count(organization_id=organization_id)

    def bulk_insert_ignore_conflicts(self, contacts_data: List[Dict[str, Any]]) -> int:
        """
        Insert many contacts in one statement, skipping rows whose
        (organization_id, email) already exists.

        Args:
            contacts_data: Column-value dicts, one per contact

        Returns:
            Number of rows actually written

        Raises:
            PersistenceError: If the statement fails; the session is rolled back
        """
        if not contacts_data:
            return 0

        dialect = self.session.get_bind().dialect.name
        dialect_insert = _CONFLICT_AWARE_INSERTS.get(dialect)

        try:
            if dialect_insert is not None:
                stmt = (
                    dialect_insert(Contact)
                    .values(contacts_data)
                    .on_conflict_do_nothing(index_elements=['organization_id', 'email'])
                    .returning(Contact.id)
                )
                inserted = len(self.session.execute(stmt).scalars().all())
            else:
                # No conflict clause available; a duplicate fails the whole batch
                self.session.execute(generic_insert(Contact).values(contacts_data))
                inserted = len(contacts_data)

            self.session.commit()
            logger.debug(f"Bulk inserted {inserted} of {len(contacts_data)} contacts")
            return inserted
        except SQLAlchemyError as e:
            self.session.rollback()
            message = str(getattr(e, 'orig', None) or e)
            logger.error(f"Error bulk inserting contacts: {message}")
            raise PersistenceError(message) from e
