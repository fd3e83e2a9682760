"""
Firestore backend for the document store.

Batches without preconditions are written with a WriteBatch. Batches that
carry ``expect`` clauses run inside a transaction so the preconditions are
read and checked in the same atomic unit as the writes.
"""
import logging

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from redblood.exceptions import NotFound
from redblood.firebase import get_firebase_app
from store.base import (
    DELETE,
    MAX_BATCH_WRITES,
    SET,
    UPDATE,
    DocumentStore,
    check_expectations,
    strip_id,
)

logger = logging.getLogger(__name__)

FIRESTORE_OPS = {
    '==': '==',
    'in': 'in',
    'array_contains': 'array_contains',
    'array_contains_any': 'array_contains_any',
}


def _as_document(snapshot):
    return {'id': snapshot.id, **(snapshot.to_dict() or {})}


class FirestoreStore(DocumentStore):

    def __init__(self, prefix=''):
        # prefix lets several deployments share one project
        self.prefix = prefix
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = firestore.client(app=get_firebase_app())
        return self._client

    def _collection(self, collection):
        return self.client.collection(f"{self.prefix}{collection}")

    def _ref(self, collection, doc_id):
        return self._collection(collection).document(doc_id)

    def get(self, collection, doc_id):
        snapshot = self._ref(collection, doc_id).get()
        if not snapshot.exists:
            return None
        return _as_document(snapshot)

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        query = self._collection(collection)
        for field, op, value in filters:
            if op not in FIRESTORE_OPS:
                raise ValueError(f"Unsupported filter operator: {op!r}")
            query = query.where(filter=FieldFilter(field, FIRESTORE_OPS[op], value))
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if limit is not None:
            query = query.limit(limit)
        return [_as_document(snapshot) for snapshot in query.stream()]

    def set(self, collection, doc_id, fields):
        self._ref(collection, doc_id).set(strip_id(fields))

    def update(self, collection, doc_id, fields):
        try:
            self._ref(collection, doc_id).update(strip_id(fields))
        except google_exceptions.NotFound:
            raise NotFound(f"{collection}/{doc_id} not found")

    def delete(self, collection, doc_id):
        self._ref(collection, doc_id).delete()

    def new_id(self, collection):
        return self._collection(collection).document().id

    def _write(self, writer, op):
        ref = self._ref(op.collection, op.doc_id)
        if op.action == SET:
            fields = strip_id(op.fields)
            for field, values in op.append.items():
                fields[field] = list(dict.fromkeys([*fields.get(field, []), *values]))
            writer.set(ref, fields)
        elif op.action == UPDATE:
            fields = strip_id(op.fields)
            for field, values in op.append.items():
                fields[field] = firestore.ArrayUnion(list(values))
            writer.update(ref, fields)
        elif op.action == DELETE:
            writer.delete(ref)
        else:
            raise ValueError(f"Unsupported batch action: {op.action!r}")

    def atomic_batch(self, ops):
        if len(ops) > MAX_BATCH_WRITES:
            raise ValueError(f"A batch holds at most {MAX_BATCH_WRITES} writes, got {len(ops)}")
        if not any(op.expect for op in ops):
            batch = self.client.batch()
            for op in ops:
                self._write(batch, op)
            batch.commit()
            return

        @firestore.transactional
        def run(transaction):
            # All reads must happen before the first write in a transaction
            for op in ops:
                if op.expect:
                    snapshot = self._ref(op.collection, op.doc_id).get(transaction=transaction)
                    check_expectations(op, _as_document(snapshot) if snapshot.exists else None)
            for op in ops:
                self._write(transaction, op)

        run(self.client.transaction())
        logger.debug(f"Committed transactional batch of {len(ops)} writes")
