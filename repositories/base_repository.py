"""
Base Repository - Common database operations shared by all repositories
Implements the Repository Pattern so services never touch the session directly
"""

from typing import TypeVar, Generic, List, Optional, Dict, Any, Type
from sqlalchemy.orm import Session, Query
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

# Type variable for model classes
T = TypeVar('T')


class BaseRepository(Generic[T]):
    """
    Base repository with the CRUD operations the import pipeline relies on.

    Writes flush but do not commit; transaction boundaries belong to the
    caller, which uses commit()/rollback() explicitly.
    """

    def __init__(self, session: Session, model_class: Type[T]):
        """
        Initialize repository with database session and model class.

        Args:
            session: SQLAlchemy database session
            model_class: The model class this repository manages
        """
        self.session = session
        self.model_class = model_class

    # CREATE Operations

    def create(self, **kwargs) -> T:
        """
        Create a new entity.

        Raises:
            SQLAlchemyError: If database operation fails
        """
        try:
            entity = self.model_class(**kwargs)
            self.session.add(entity)
            self.session.flush()  # Flush to get ID without committing
            logger.debug(f"Created {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    # READ Operations

    def get_by_id(self, entity_id: Any) -> Optional[T]:
        try:
            return self.session.get(self.model_class, entity_id)
        except SQLAlchemyError as e:
            logger.error(f"Error getting {self.model_class.__name__} by id {entity_id}: {e}")
            return None

    def find_by(self, **filters) -> List[T]:
        """
        Find entities by specific field values.

        Args:
            **filters: Field-value pairs to filter by

        Returns:
            List of matching entities
        """
        try:
            return self._build_query(filters).all()
        except SQLAlchemyError as e:
            logger.error(f"Error finding {self.model_class.__name__} by filters: {e}")
            return []

    def find_one_by(self, **filters) -> Optional[T]:
        try:
            return self._build_query(filters).first()
        except SQLAlchemyError as e:
            logger.error(f"Error finding {self.model_class.__name__} by filters: {e}")
            return None

    def exists(self, **filters) -> bool:
        try:
            return self._build_query(filters).first() is not None
        except SQLAlchemyError as e:
            logger.error(f"Error checking existence of {self.model_class.__name__}: {e}")
            return False

    def count(self, **filters) -> int:
        try:
            return self._build_query(filters).count()
        except SQLAlchemyError as e:
            logger.error(f"Error counting {self.model_class.__name__}: {e}")
            return 0

    # UPDATE Operations

    def update(self, entity: T, **updates) -> T:
        """
        Update an entity with new values.

        Raises:
            SQLAlchemyError: If database operation fails
        """
        try:
            for field, value in updates.items():
                if hasattr(entity, field):
                    setattr(entity, field, value)
            self.session.flush()
            logger.debug(f"Updated {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    # DELETE Operations

    def delete(self, entity: T) -> bool:
        try:
            self.session.delete(entity)
            self.session.flush()
            logger.debug(f"Deleted {self.model_class.__name__} with id {entity.id}")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {self.model_class.__name__}: {e}")
            self.session.rollback()
            return False

    # Transaction Management

    def commit(self) -> None:
        """Commit the current transaction."""
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.session.rollback()

    def flush(self) -> None:
        """Flush pending changes without committing."""
        self.session.flush()

    # Helper Methods

    def _build_query(self, filters: Optional[Dict[str, Any]] = None) -> Query:
        """
        Build a query with filters.

        Lists become IN clauses and None becomes IS NULL.
        """
        query = self.session.query(self.model_class)

        if filters:
            for field, value in filters.items():
                if hasattr(self.model_class, field):
                    column = getattr(self.model_class, field)
                    if isinstance(value, list):
                        query = query.filter(column.in_(value))
                    elif value is None:
                        query = query.filter(column.is_(None))
                    else:
                        query = query.filter(column == value)

        return query
