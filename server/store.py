import logging
from datetime import datetime, timezone
from functools import wraps

from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    NoSuchTableError,
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from safewatch.core.errors import (
    ConcurrentUpdateError,
    DocumentNotFoundError,
    StoreError,
    StructuralStoreError,
    TransientStoreError,
)
from safewatch.core.store import VERSION_KEY, DocumentStore
from .models import Document

logger = logging.getLogger(__name__)

UPDATE_RETRIES = 5
_STRUCTURAL_MARKERS = ("no such table", "no such column", "does not exist", "undefined table")


def _translate_errors(fn):
    """Tags SQLAlchemy failures as transient (retry later) or structural (misconfigured)."""

    @wraps(fn)
    def wrapper(self, collection, *args, **kwargs):
        try:
            return fn(self, collection, *args, **kwargs)
        except StoreError:
            raise
        except (NoSuchTableError, ProgrammingError) as e:
            logger.error(f"Store misconfigured for collection '{collection}': {e}")
            raise StructuralStoreError(f"Store misconfigured: {e}", collection) from e
        except OperationalError as e:
            if any(marker in str(e).lower() for marker in _STRUCTURAL_MARKERS):
                logger.error(f"Store misconfigured for collection '{collection}': {e}")
                raise StructuralStoreError(f"Store misconfigured: {e}", collection) from e
            logger.error(f"Store unavailable for collection '{collection}': {e}")
            raise TransientStoreError(f"Store unavailable: {e}", collection) from e
        except (PoolTimeoutError, DisconnectionError) as e:
            logger.error(f"Store unavailable for collection '{collection}': {e}")
            raise TransientStoreError(f"Store unavailable: {e}", collection) from e
        except SQLAlchemyError as e:
            logger.error(f"Store query failed for collection '{collection}': {e}")
            raise StoreError(f"Query failed: {e}", collection) from e

    return wrapper


def _as_document(row: Document):
    return {**row.data, "id": row.id, VERSION_KEY: row.version}


class SqlDocumentStore(DocumentStore):
    """
    Document store on a single SQLAlchemy table. Filtering and ordering happen
    in Python, so no composite index is ever required.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @_translate_errors
    def get(self, collection, doc_id):
        with self.session_factory() as db:
            row = db.get(Document, (collection, doc_id))
            return _as_document(row) if row is not None else None

    @_translate_errors
    def query(self, collection, predicate=None):
        with self.session_factory() as db:
            rows = db.query(Document).filter(Document.collection == collection).all()
            docs = [_as_document(row) for row in rows]
        logger.debug(f"Query on '{collection}' returned {len(docs)} documents")
        if predicate is None:
            return docs
        return [d for d in docs if predicate(d)]

    @_translate_errors
    def put(self, collection, doc_id, doc, expected_version=None):
        data = {k: v for k, v in doc.items() if k != VERSION_KEY}
        data["id"] = doc_id

        with self.session_factory() as db:
            row = db.get(Document, (collection, doc_id))
            current_version = row.version if row is not None else 0
            if expected_version is not None and expected_version != current_version:
                raise ConcurrentUpdateError(
                    f"{collection}/{doc_id} is at version {current_version}, expected {expected_version}",
                    collection,
                )

            if row is None:
                db.add(Document(collection=collection, id=doc_id, version=1, data=data))
            else:
                # compare-and-swap on the version column
                changed = (
                    db.query(Document)
                    .filter(
                        Document.collection == collection,
                        Document.id == doc_id,
                        Document.version == current_version,
                    )
                    .update(
                        {
                            "version": current_version + 1,
                            "data": data,
                            "updated_at": datetime.now(timezone.utc),
                        },
                        synchronize_session=False,
                    )
                )
                if changed == 0:
                    db.rollback()
                    raise ConcurrentUpdateError(f"{collection}/{doc_id} changed concurrently", collection)

            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise ConcurrentUpdateError(f"{collection}/{doc_id} was created concurrently", collection) from e

        return {**data, VERSION_KEY: current_version + 1}

    @_translate_errors
    def update(self, collection, doc_id, patch):
        for _ in range(UPDATE_RETRIES):
            current = self.get(collection, doc_id)
            if current is None:
                raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist", collection)
            version = current.pop(VERSION_KEY)
            try:
                return self.put(collection, doc_id, {**current, **patch}, expected_version=version)
            except ConcurrentUpdateError:
                continue
        raise ConcurrentUpdateError(f"{collection}/{doc_id} kept changing during update", collection)
