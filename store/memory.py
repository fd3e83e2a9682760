"""
In-process document store used by the test suite and local development.

A single lock stands in for the atomicity a real document store provides.
"""
import copy
import threading
import uuid
from collections import defaultdict

from redblood.exceptions import NotFound
from store.base import (
    DELETE,
    SET,
    UPDATE,
    DocumentStore,
    check_expectations,
    strip_id,
)


def _matches(document, condition):
    field, op, value = condition
    actual = document.get(field)
    if op == '==':
        return actual == value
    if op == 'in':
        return actual in value
    if op == 'array_contains':
        return value in (actual or [])
    if op == 'array_contains_any':
        return any(item in (actual or []) for item in value)
    raise ValueError(f"Unsupported filter operator: {op!r}")


def _union(existing, values):
    merged = list(existing or [])
    for value in values:
        if value not in merged:
            merged.append(value)
    return merged


class MemoryStore(DocumentStore):

    def __init__(self):
        self._collections = defaultdict(dict)
        self._lock = threading.RLock()

    def get(self, collection, doc_id):
        with self._lock:
            document = self._collections[collection].get(doc_id)
            if document is None:
                return None
            return {'id': doc_id, **copy.deepcopy(document)}

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        with self._lock:
            documents = [
                {'id': doc_id, **copy.deepcopy(document)}
                for doc_id, document in self._collections[collection].items()
                if all(_matches(document, condition) for condition in filters)
            ]

        if order_by:
            # Documents without a value for the field are left out, as in Firestore
            documents = [d for d in documents if d.get(order_by) is not None]
            documents.sort(key=lambda d: d[order_by], reverse=descending)
        if limit is not None:
            documents = documents[:limit]
        return documents

    def set(self, collection, doc_id, fields):
        with self._lock:
            self._collections[collection][doc_id] = copy.deepcopy(strip_id(fields))

    def update(self, collection, doc_id, fields):
        with self._lock:
            document = self._collections[collection].get(doc_id)
            if document is None:
                raise NotFound(f"{collection}/{doc_id} not found")
            document.update(copy.deepcopy(strip_id(fields)))

    def delete(self, collection, doc_id):
        with self._lock:
            self._collections[collection].pop(doc_id, None)

    def new_id(self, collection):
        return uuid.uuid4().hex[:20]

    def atomic_batch(self, ops):
        with self._lock:
            # Stage every touched collection so a failure leaves nothing behind
            staged = {
                name: copy.deepcopy(self._collections[name])
                for name in {op.collection for op in ops}
            }

            for op in ops:
                documents = staged[op.collection]
                check_expectations(op, documents.get(op.doc_id))

                if op.action == SET:
                    document = copy.deepcopy(strip_id(op.fields))
                    for field, values in op.append.items():
                        document[field] = _union(document.get(field), values)
                    documents[op.doc_id] = document
                elif op.action == UPDATE:
                    document = documents.get(op.doc_id)
                    if document is None:
                        raise NotFound(f"{op.collection}/{op.doc_id} not found")
                    document.update(copy.deepcopy(strip_id(op.fields)))
                    for field, values in op.append.items():
                        document[field] = _union(document.get(field), values)
                elif op.action == DELETE:
                    documents.pop(op.doc_id, None)
                else:
                    raise ValueError(f"Unsupported batch action: {op.action!r}")

            self._collections.update(staged)
