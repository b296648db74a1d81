"""
Firestore document store.

Wraps the Firestore client from firebase-admin. Transient Google API errors
are retried with exponential backoff and then surfaced as StoreUnavailable.
Batched deletes go through a WriteBatch per chunk.
"""
import logging
from typing import Optional

from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from core.retry import retry_with_backoff
from core.token_validator import ensure_firebase_app
from services.document_store import (
    DEFAULT_BATCH_LIMIT,
    DocumentNotFound,
    DocumentStore,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.TooManyRequests,
    google_exceptions.Aborted,
)


class FirestoreDocumentStore(DocumentStore):
    def __init__(
        self,
        client=None,
        credentials_path: Optional[str] = None,
        project_id: Optional[str] = None,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
    ):
        self._client = client
        self.credentials_path = credentials_path
        self.project_id = project_id
        self.batch_limit = batch_limit
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay

    @property
    def client(self):
        """Firestore client, created on first use."""
        if self._client is None:
            from firebase_admin import firestore

            app = ensure_firebase_app(self.credentials_path, self.project_id)
            self._client = firestore.client(app)
        return self._client

    def _call(self, operation: str, fn):
        try:
            return retry_with_backoff(
                fn,
                attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                retry_on=TRANSIENT_ERRORS,
                label=f"Firestore {operation}",
            )
        except google_exceptions.GoogleAPICallError as e:
            raise StoreUnavailable(f"Firestore {operation} failed: {e}") from e

    def get(self, collection, document_id):
        def op():
            snapshot = self.client.collection(collection).document(document_id).get()
            if not snapshot.exists:
                return None
            return {**(snapshot.to_dict() or {}), "id": snapshot.id}
        return self._call("get", op)

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        from google.cloud import firestore

        def op():
            q = self.client.collection(collection)
            for f in filters:
                q = q.where(filter=FieldFilter(f.field, f.op, f.value))
            if order_by:
                direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
                q = q.order_by(order_by, direction=direction)
            if limit is not None:
                q = q.limit(limit)
            return [{**(snapshot.to_dict() or {}), "id": snapshot.id} for snapshot in q.stream()]
        return self._call("query", op)

    def create(self, collection, document, document_id=None):
        data = {k: v for k, v in document.items() if k != "id"}

        def op():
            ref = self.client.collection(collection)
            doc_ref = ref.document(document_id) if document_id else ref.document()
            doc_ref.set(data)
            return doc_ref.id
        return self._call("create", op)

    def update(self, collection, document_id, patch):
        data = {k: v for k, v in patch.items() if k != "id"}

        def op():
            try:
                self.client.collection(collection).document(document_id).update(data)
            except google_exceptions.NotFound:
                raise DocumentNotFound(collection, document_id)
        self._call("update", op)

    def delete(self, collection, document_id):
        def op():
            doc_ref = self.client.collection(collection).document(document_id)
            if not doc_ref.get().exists:
                return False
            doc_ref.delete()
            return True
        return self._call("delete", op)

    def _delete_chunk(self, collection, document_ids):
        if len(document_ids) > self.batch_limit:
            raise ValueError(f"batch of {len(document_ids)} exceeds limit {self.batch_limit}")

        def op():
            batch = self.client.batch()
            ref = self.client.collection(collection)
            for document_id in document_ids:
                batch.delete(ref.document(document_id))
            batch.commit()
            return len(document_ids)
        return self._call("batch_delete", op)
