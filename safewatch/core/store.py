import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from safewatch.core.errors import ConcurrentUpdateError, DocumentNotFoundError

Document = Dict[str, Any]
Predicate = Callable[[Document], bool]

VERSION_KEY = "_version"


class DocumentStore(ABC):
    """
    Minimal document store the pipeline talks to.

    Documents are plain JSON-compatible dicts. Every stored document carries
    its `id` and a `_version` counter that `put(..., expected_version=...)`
    uses for compare-and-swap; `expected_version=0` means "create only".
    """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Returns the document or None."""
        pass

    @abstractmethod
    def query(self, collection: str, predicate: Optional[Predicate] = None) -> List[Document]:
        """Returns matching documents in no guaranteed order."""
        pass

    @abstractmethod
    def put(self, collection: str, doc_id: str, doc: Document, expected_version: Optional[int] = None) -> Document:
        """Writes the whole document, optionally only if the stored version matches."""
        pass

    @abstractmethod
    def update(self, collection: str, doc_id: str, patch: Document) -> Document:
        """Merges top-level fields into an existing document."""
        pass


class InMemoryDocumentStore(DocumentStore):
    """Process-local store; callers only ever see copies."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._lock = threading.RLock()

    def get(self, collection, doc_id):
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def query(self, collection, predicate=None):
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._collections.get(collection, {}).values()]
        if predicate is None:
            return docs
        return [d for d in docs if predicate(d)]

    def put(self, collection, doc_id, doc, expected_version=None):
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            current = docs.get(doc_id)
            current_version = current[VERSION_KEY] if current else 0
            if expected_version is not None and expected_version != current_version:
                raise ConcurrentUpdateError(
                    f"{collection}/{doc_id} is at version {current_version}, expected {expected_version}",
                    collection,
                )
            stored = copy.deepcopy(doc)
            stored["id"] = doc_id
            stored[VERSION_KEY] = current_version + 1
            docs[doc_id] = stored
            return copy.deepcopy(stored)

    def update(self, collection, doc_id, patch):
        with self._lock:
            current = self._collections.get(collection, {}).get(doc_id)
            if current is None:
                raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist", collection)
            merged = {**current, **copy.deepcopy(patch)}
            merged["id"] = doc_id
            merged[VERSION_KEY] = current[VERSION_KEY] + 1
            self._collections[collection][doc_id] = merged
            return copy.deepcopy(merged)
