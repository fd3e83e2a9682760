"""
Document store interface.

Records are plain dicts keyed by collection and document id. Reads return
copies that include the ``id`` key. Multi-document writes go through
``atomic_batch`` which applies every operation or none of them.
"""
import abc
from collections import namedtuple

from django.conf import settings
from django.utils.module_loading import import_string

from redblood.exceptions import NotFound

SET = 'set'
UPDATE = 'update'
DELETE = 'delete'

FILTER_OPS = ('==', 'in', 'array_contains', 'array_contains_any')

# Firestore accepts at most this many writes in one batch or transaction
MAX_BATCH_WRITES = 500


class BatchOp(namedtuple('BatchOp', 'action collection doc_id fields append expect')):
    """
    One write inside an atomic batch.

    ``append`` maps array fields to values added with set-union semantics.
    ``expect`` maps fields to the values they must hold when the batch is
    applied; any mismatch (or a missing document) aborts the whole batch.
    """
    __slots__ = ()

    def __new__(cls, action, collection, doc_id, fields=None, append=None, expect=None):
        return super().__new__(cls, action, collection, doc_id, fields or {}, append or {}, expect or {})


def set_op(collection, doc_id, fields, expect=None):
    return BatchOp(SET, collection, doc_id, fields=fields, expect=expect)


def update_op(collection, doc_id, fields=None, append=None, expect=None):
    return BatchOp(UPDATE, collection, doc_id, fields=fields, append=append, expect=expect)


def delete_op(collection, doc_id, expect=None):
    return BatchOp(DELETE, collection, doc_id, expect=expect)


class PreconditionFailed(Exception):
    """An ``expect`` clause did not hold; nothing was written."""

    def __init__(self, op, field=None, actual=None):
        self.op = op
        self.field = field
        self.actual = actual
        if field is None:
            message = f"{op.collection}/{op.doc_id} does not exist"
        else:
            message = f"{op.collection}/{op.doc_id}: {field} is {actual!r}, expected {op.expect[field]!r}"
        super().__init__(message)


def check_expectations(op, document):
    if not op.expect:
        return
    if document is None:
        raise PreconditionFailed(op)
    for field, expected in op.expect.items():
        if document.get(field) != expected:
            raise PreconditionFailed(op, field, document.get(field))


def strip_id(fields):
    return {key: value for key, value in fields.items() if key != 'id'}


class DocumentStore(abc.ABC):

    @abc.abstractmethod
    def get(self, collection, doc_id):
        """Return the document or None."""

    @abc.abstractmethod
    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        """
        Return documents matching every ``(field, op, value)`` filter.
        ``op`` is one of FILTER_OPS. With ``order_by``, documents that have
        no value for that field are not returned.
        """

    @abc.abstractmethod
    def set(self, collection, doc_id, fields):
        """Create or replace a document."""

    @abc.abstractmethod
    def update(self, collection, doc_id, fields):
        """Merge fields into an existing document; NotFound if missing."""

    @abc.abstractmethod
    def delete(self, collection, doc_id):
        """Delete a document; deleting a missing document is a no-op."""

    @abc.abstractmethod
    def new_id(self, collection):
        """Allocate an id for a document about to be written."""

    @abc.abstractmethod
    def atomic_batch(self, ops):
        """Apply every BatchOp or none; PreconditionFailed on a failed ``expect``."""

    def chunked_batch(self, ops, size=MAX_BATCH_WRITES):
        """
        Apply ops in order as consecutive atomic batches of at most ``size``.

        Each chunk is all or nothing but the whole run is not. Callers put
        the owning document last so a failed run leaves it in place and the
        delete can be retried.
        """
        ops = list(ops)
        for start in range(0, len(ops), size):
            self.atomic_batch(ops[start:start + size])

    def add(self, collection, fields):
        doc_id = self.new_id(collection)
        self.set(collection, doc_id, fields)
        return {'id': doc_id, **strip_id(fields)}

    def get_or_404(self, collection, doc_id, label='Resource'):
        document = self.get(collection, doc_id)
        if document is None:
            raise NotFound(f"{label} not found")
        return document


_store = None


def get_store():
    """The configured store backend, created on first use."""
    global _store
    if _store is None:
        config = getattr(settings, 'DOCUMENT_STORE', {})
        backend = import_string(config.get('BACKEND', 'store.memory.MemoryStore'))
        _store = backend(**config.get('OPTIONS', {}))
    return _store


def reset_store():
    global _store
    _store = None
