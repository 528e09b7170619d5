"""
TagRepository - Data access layer for organization tags
"""

from typing import List, Optional
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from repositories.base_repository import BaseRepository
from crm_database import Tag
from utils.datetime_utils import utc_now
import logging

logger = logging.getLogger(__name__)


class TagRepository(BaseRepository[Tag]):
    """Repository for Tag data access"""

    def __init__(self, session):
        super().__init__(session, Tag)

    def find_by_organization_and_name(self, organization_id: int, name: str) -> Optional[Tag]:
        return self.find_one_by(organization_id=organization_id, name=name)

    def list_names(self, organization_id: int) -> List[str]:
        return [tag.name for tag in self.find_by(organization_id=organization_id)]

    def upsert_by_organization_and_name(self, organization_id: int, name: str, color: str) -> bool:
        """
        Create the tag unless (organization_id, name) already exists.

        An existing tag is left untouched, color included.

        Returns:
            True if a new tag was created
        """
        dialect = self.session.get_bind().dialect.name
        values = {
            'organization_id': organization_id,
            'name': name,
            'color': color,
            'created_at': utc_now(),
        }

        try:
            if dialect in ('postgresql', 'sqlite'):
                dialect_insert = postgresql.insert if dialect == 'postgresql' else sqlite.insert
                stmt = (
                    dialect_insert(Tag)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=['organization_id', 'name'])
                    .returning(Tag.id)
                )
                created = self.session.execute(stmt).first() is not None
            else:
                if self.find_by_organization_and_name(organization_id, name):
                    return False
                self.session.add(Tag(**values))
                self.session.flush()
                created = True

            self.session.commit()
            return created
        except IntegrityError:
            # Lost a race with a concurrent import creating the same tag
            self.session.rollback()
            return False
        except SQLAlchemyError as e:
            logger.error(f"Error upserting tag {name!r} for organization {organization_id}: {e}")
            self.session.rollback()
            raise
