"""
Document Store

Collection-scoped document storage used by the form services. Backends:
- InMemoryDocumentStore: tests and local development
- FirestoreDocumentStore (services/firestore_store.py): production
- SqlDocumentStore (services/sql_store.py): SQLAlchemy JSON documents

Batched deletes are split into chunks no larger than the backend's
batch_limit and committed one chunk at a time. There is no atomicity
across chunks, so callers must be safe to re-run.
"""
import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 500

FILTER_OPS = ("==", "!=", "<", "<=", ">", ">=", "in", "array_contains")


class DocumentStoreError(Exception):
    pass


class DocumentNotFound(DocumentStoreError):
    def __init__(self, collection: str, document_id: str):
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"{collection}/{document_id} not found")


class StoreUnavailable(DocumentStoreError):
    """The backing store could not be reached. Safe for the caller to retry."""


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, document: Dict[str, Any]) -> bool:
        if self.field not in document:
            return False
        actual = document[self.field]
        try:
            if self.op == "==":
                return actual == self.value
            if self.op == "!=":
                return actual != self.value
            if self.op == "<":
                return actual is not None and actual < self.value
            if self.op == "<=":
                return actual is not None and actual <= self.value
            if self.op == ">":
                return actual is not None and actual > self.value
            if self.op == ">=":
                return actual is not None and actual >= self.value
            if self.op == "in":
                return actual in self.value
            return isinstance(actual, list) and self.value in actual
        except TypeError:
            # Mismatched types never match, as in Firestore
            return False


def chunked(items: Sequence[Any], size: int) -> Iterator[List[Any]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    items = list(items)
    for start in range(0, len(items), size):
        yield items[start:start + size]


def apply_query(
    documents: Iterable[Tuple[str, Dict[str, Any]]],
    filters: Sequence[Filter] = (),
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
) -> List[Tuple[str, Dict[str, Any]]]:
    """Filter, order and limit (id, document) pairs in memory."""
    selected = [(doc_id, doc) for doc_id, doc in documents if all(f.matches(doc) for f in filters)]
    if order_by:
        # Documents missing the order field are excluded, as in Firestore
        selected = [pair for pair in selected if pair[1].get(order_by) is not None]
        selected.sort(key=lambda pair: pair[1][order_by], reverse=descending)
    if limit is not None:
        selected = selected[:limit]
    return selected


class DocumentStore(ABC):
    """Collection-scoped document operations."""

    batch_limit: int = DEFAULT_BATCH_LIMIT

    @abstractmethod
    def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        """Document data (with "id") or None."""

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Matching documents, each including its "id"."""

    @abstractmethod
    def create(self, collection: str, document: Dict[str, Any], document_id: Optional[str] = None) -> str:
        """Store a new document and return its id."""

    @abstractmethod
    def update(self, collection: str, document_id: str, patch: Dict[str, Any]) -> None:
        """Merge patch into an existing document. Raises DocumentNotFound."""

    @abstractmethod
    def delete(self, collection: str, document_id: str) -> bool:
        """Delete a document; False if it did not exist."""

    @abstractmethod
    def _delete_chunk(self, collection: str, document_ids: List[str]) -> int:
        """Delete up to batch_limit documents in a single commit."""

    def batch_delete(self, collection: str, document_ids: Iterable[str]) -> int:
        """
        Delete many documents, one chunk per commit.

        Returns the number of documents deleted. A failure leaves earlier
        chunks committed; re-running skips what is already gone.
        """
        ids = list(dict.fromkeys(document_ids))
        deleted = 0
        for index, chunk in enumerate(chunked(ids, self.batch_limit)):
            deleted += self._delete_chunk(collection, chunk)
            logger.info(
                f"Committed delete chunk {index + 1} for {collection}",
                extra={"extra_fields": {"collection": collection, "chunk_size": len(chunk), "deleted_total": deleted}},
            )
        return deleted

    def new_id(self) -> str:
        return uuid.uuid4().hex


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe dict-backed store."""

    def __init__(self, batch_limit: int = DEFAULT_BATCH_LIMIT):
        if batch_limit < 1:
            raise ValueError("batch_limit must be positive")
        self.batch_limit = batch_limit
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self.commits = 0

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def get(self, collection, document_id):
        with self._lock:
            document = self._collection(collection).get(document_id)
            if document is None:
                return None
            return {**copy.deepcopy(document), "id": document_id}

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        with self._lock:
            pairs = [(doc_id, copy.deepcopy(doc)) for doc_id, doc in self._collection(collection).items()]
        return [{**doc, "id": doc_id} for doc_id, doc in apply_query(pairs, filters, order_by, descending, limit)]

    def create(self, collection, document, document_id=None):
        document_id = document_id or self.new_id()
        data = {k: v for k, v in copy.deepcopy(document).items() if k != "id"}
        with self._lock:
            self._collection(collection)[document_id] = data
            self.commits += 1
        return document_id

    def update(self, collection, document_id, patch):
        with self._lock:
            documents = self._collection(collection)
            if document_id not in documents:
                raise DocumentNotFound(collection, document_id)
            documents[document_id].update({k: v for k, v in copy.deepcopy(patch).items() if k != "id"})
            self.commits += 1

    def delete(self, collection, document_id):
        with self._lock:
            existed = self._collection(collection).pop(document_id, None) is not None
            self.commits += 1
        return existed

    def _delete_chunk(self, collection, document_ids):
        if len(document_ids) > self.batch_limit:
            raise ValueError(f"batch of {len(document_ids)} exceeds limit {self.batch_limit}")
        with self._lock:
            documents = self._collection(collection)
            deleted = sum(1 for doc_id in document_ids if documents.pop(doc_id, None) is not None)
            self.commits += 1
        return deleted
