"""
Adapter: Document Collaborator over SQLAlchemy
korban/services/document_store.py

The ledger engine only needs per-collection CRUD + query-by-field:

    get(id) · query(field=value, ...) · create(data) · update(id, partial) · delete(id)

plus `lock(...)` for read-modify-write under a row lock (SELECT … FOR UPDATE)
and an optional `subscribe(...)` that pushes the full refreshed list after
every commit of the session (used by dashboards, never by the engine).

Writes commit by default. Callers that must write several rows atomically
pass commit=False and finish with `commit(db)`.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def commit(db: Session) -> None:
    """Commit, or roll back and re-raise so no half-written state survives."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Commit failed, session rolled back: {e}")
        raise


class Collection:
    """One entity collection (table) seen as a document collection."""

    def __init__(self, db: Session, model):
        self.db = db
        self.model = model

    def _filtered(self, session: Session, equals: Dict[str, Any]):
        return session.query(self.model).filter_by(**equals).order_by(self.model.id)

    def get(self, doc_id) -> Optional[Any]:
        if doc_id is None:
            return None
        return self.db.get(self.model, doc_id)

    def query(self, **equals) -> List[Any]:
        return self._filtered(self.db, equals).all()

    def first(self, **equals) -> Optional[Any]:
        return self._filtered(self.db, equals).first()

    def all(self) -> List[Any]:
        return self._filtered(self.db, {}).all()

    def lock(self, **equals) -> Optional[Any]:
        """First matching row, locked for update until the next commit/rollback."""
        return self._filtered(self.db, equals).with_for_update().first()

    def create(self, data: Dict[str, Any], commit_now: bool = True) -> int:
        doc = self.model(**data)
        try:
            self.db.add(doc)
            self.db.flush()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        if commit_now:
            commit(self.db)
        return doc.id

    def update(self, doc_id, partial: Dict[str, Any], commit_now: bool = True) -> None:
        doc = self.get(doc_id)
        if doc is None:
            raise LookupError(f"{self.model.__tablename__} #{doc_id} not found")
        for field, value in partial.items():
            setattr(doc, field, value)
        if commit_now:
            commit(self.db)

    def delete(self, doc_id, commit_now: bool = True) -> None:
        doc = self.get(doc_id)
        if doc is None:
            raise LookupError(f"{self.model.__tablename__} #{doc_id} not found")
        self.db.delete(doc)
        if commit_now:
            commit(self.db)

    def subscribe(self, callback: Callable[[List[Any]], None], **equals) -> Callable[[], None]:
        """
        Call `callback(rows)` with the full matching list after every commit.
        Returns the unsubscribe function.
        """
        bind = self.db.get_bind()

        def _on_commit(session):
            # The committing session cannot emit SQL here; read through a fresh one.
            with Session(bind=bind) as fresh:
                callback(self._filtered(fresh, equals).all())

        event.listen(self.db, "after_commit", _on_commit)

        def unsubscribe():
            event.remove(self.db, "after_commit", _on_commit)

        return unsubscribe
