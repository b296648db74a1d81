"""
SQL-backed document store.

Documents live in a single `documents` table keyed by (collection, id) with
a JSON body. Filtering and ordering are applied in Python after loading the
collection, which keeps the query semantics identical to the other backends.
"""
import copy
import logging

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.engine import Engine

from core.database import Base, create_session_factory, session_scope
from models import Document
from services.document_store import (
    DEFAULT_BATCH_LIMIT,
    DocumentNotFound,
    DocumentStore,
    StoreUnavailable,
    apply_query,
)

logger = logging.getLogger(__name__)


class SqlDocumentStore(DocumentStore):
    def __init__(self, engine: Engine, batch_limit: int = DEFAULT_BATCH_LIMIT):
        self.engine = engine
        self.session_factory = create_session_factory(engine)
        self.batch_limit = batch_limit

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine, tables=[Document.__table__])

    def _session(self):
        return session_scope(self.session_factory)

    def _run(self, operation: str, fn):
        try:
            return fn()
        except OperationalError as e:
            logger.error(f"Document store unavailable during {operation}: {e}")
            raise StoreUnavailable(f"SQL store unavailable during {operation}") from e
        except DocumentNotFound:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Document store error during {operation}: {e}")
            raise StoreUnavailable(f"SQL store error during {operation}") from e

    def get(self, collection, document_id):
        def op():
            with self._session() as db:
                row = db.get(Document, (collection, document_id))
                if row is None:
                    return None
                return {**copy.deepcopy(row.data), "id": row.id}
        return self._run("get", op)

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        def op():
            with self._session() as db:
                rows = db.query(Document).filter(Document.collection == collection).order_by(Document.created_at).all()
                pairs = [(row.id, copy.deepcopy(row.data)) for row in rows]
            return [{**doc, "id": doc_id} for doc_id, doc in apply_query(pairs, filters, order_by, descending, limit)]
        return self._run("query", op)

    def create(self, collection, document, document_id=None):
        document_id = document_id or self.new_id()
        data = {k: v for k, v in copy.deepcopy(document).items() if k != "id"}

        def op():
            with self._session() as db:
                db.merge(Document(collection=collection, id=document_id, data=data))
            return document_id
        return self._run("create", op)

    def update(self, collection, document_id, patch):
        def op():
            with self._session() as db:
                row = db.get(Document, (collection, document_id))
                if row is None:
                    raise DocumentNotFound(collection, document_id)
                merged = dict(row.data)
                merged.update({k: v for k, v in copy.deepcopy(patch).items() if k != "id"})
                # Reassign so the JSON column registers the change
                row.data = merged
        self._run("update", op)

    def delete(self, collection, document_id):
        def op():
            with self._session() as db:
                count = (
                    db.query(Document)
                    .filter(Document.collection == collection, Document.id == document_id)
                    .delete(synchronize_session=False)
                )
            return count > 0
        return self._run("delete", op)

    def _delete_chunk(self, collection, document_ids):
        def op():
            with self._session() as db:
                return (
                    db.query(Document)
                    .filter(Document.collection == collection, Document.id.in_(document_ids))
                    .delete(synchronize_session=False)
                )
        return self._run("batch_delete", op)
