"""Repository layer for data access."""

from typing import Generic, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from referrals.storage.models import Base

ModelT = TypeVar("ModelT", bound=Base)


class Repository(Generic[ModelT]):
    """Per-aggregate data access.

    ``query(for_update=True)`` issues ``SELECT ... FOR UPDATE`` so rows read
    through it stay locked until the surrounding transaction ends. SQLite
    drops the clause; there the whole transaction already holds the write
    lock from its first statement.
    """

    def __init__(self, session: Session, model: type[ModelT]):
        self.session = session
        self.model = model

    def query(self, for_update: bool = False) -> Select:
        """Base select for the aggregate, optionally row-locking."""
        stmt = select(self.model)
        if for_update:
            stmt = stmt.with_for_update()
        return stmt

    def get_by_id(self, entity_id: int, for_update: bool = False) -> ModelT | None:
        """Get entity by ID."""
        stmt = self.query(for_update).where(self.model.id == entity_id)
        return self.session.scalars(stmt).first()

    def all(self, stmt: Select) -> list[ModelT]:
        """Execute a select built from ``query``."""
        return list(self.session.scalars(stmt).unique())

    def first(self, stmt: Select) -> ModelT | None:
        """Execute a select and return the first row."""
        return self.session.scalars(stmt).first()

    def create(self, entity: ModelT) -> ModelT:
        """Persist a new entity and assign its ID."""
        self.session.add(entity)
        self.session.flush()
        return entity

    def update(self, entity: ModelT) -> ModelT:
        """Flush pending changes of an entity."""
        self.session.add(entity)
        self.session.flush()
        return entity

    def update_many(self, entities: list[ModelT]) -> list[ModelT]:
        """Flush pending changes of several entities."""
        self.session.add_all(entities)
        self.session.flush()
        return entities
