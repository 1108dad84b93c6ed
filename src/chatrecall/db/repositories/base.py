"""
Generic repository with basic CRUD operations.
"""

import uuid
from typing import Generic, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from chatrecall.models.db import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Base repository keyed by UUID primary key."""

    def __init__(self, model: Type[ModelT], session: Session):
        self.model = model
        self.session = session

    def get(self, id: uuid.UUID) -> Optional[ModelT]:
        """
        Get a record by primary key.

        Args:
            id: Record UUID

        Returns:
            Record or None
        """
        return self.session.get(self.model, id)

    def delete(self, instance: ModelT) -> None:
        """Delete a record (cascades follow the model relationships)."""
        self.session.delete(instance)
