from unittest import mock

import pytest
from google.api_core import exceptions as google_exceptions

from redblood.exceptions import NotFound
from store.base import PreconditionFailed, delete_op, set_op, update_op
from store.firestore import FirestoreStore


def snapshot(doc_id, data):
    snap = mock.Mock(id=doc_id, exists=data is not None)
    snap.to_dict.return_value = data
    return snap


@pytest.fixture
def client():
    return mock.MagicMock()


@pytest.fixture
def firestore_store(client):
    store = FirestoreStore(prefix='test_')
    store._client = client
    return store


def test_collections_are_prefixed(firestore_store, client):
    client.collection.return_value.document.return_value.get.return_value = snapshot('r1', {'units': 2})
    assert firestore_store.get('blood_requests', 'r1') == {'id': 'r1', 'units': 2}
    client.collection.assert_called_with('test_blood_requests')


def test_missing_document(firestore_store, client):
    client.collection.return_value.document.return_value.get.return_value = snapshot('r1', None)
    assert firestore_store.get('blood_requests', 'r1') is None


def test_query_chains_filters(firestore_store, client):
    query = client.collection.return_value
    query.where.return_value = query
    query.limit.return_value = query
    query.stream.return_value = [snapshot('a', {'blood_type': 'O-'})]

    found = firestore_store.query('users', [('blood_type', 'in', ['O-']), ('active', '==', True)], limit=5)

    assert found == [{'id': 'a', 'blood_type': 'O-'}]
    assert query.where.call_count == 2
    query.limit.assert_called_once_with(5)


def test_query_rejects_unknown_operator(firestore_store):
    with pytest.raises(ValueError):
        firestore_store.query('users', [('age', '>', 3)])


def test_update_of_missing_document(firestore_store, client):
    client.collection.return_value.document.return_value.update.side_effect = google_exceptions.NotFound('gone')
    with pytest.raises(NotFound):
        firestore_store.update('users', 'ghost', {'active': False})


def test_plain_batch_uses_write_batch(firestore_store, client):
    batch = client.batch.return_value
    firestore_store.atomic_batch([
        set_op('request_responses', 'x1', {'id': 'x1', 'status': 'pending'}),
        update_op('blood_requests', 'r1', fields={'units': 3}),
        delete_op('donations', 'd1'),
    ])

    batch.set.assert_called_once()
    assert batch.set.call_args[0][1] == {'status': 'pending'}
    batch.update.assert_called_once()
    batch.delete.assert_called_once()
    batch.commit.assert_called_once_with()
    client.transaction.assert_not_called()


@pytest.fixture
def run_directly():
    with mock.patch('store.firestore.firestore.transactional', lambda func: func):
        yield


def test_guarded_batch_runs_in_transaction(run_directly, firestore_store, client):
    client.collection.return_value.document.return_value.get.return_value = snapshot('r1', {'status': 'active'})
    transaction = client.transaction.return_value

    firestore_store.atomic_batch([
        set_op('request_responses', 'x1', {'status': 'pending'}),
        update_op('blood_requests', 'r1', append={'responses': ['x1']}, expect={'status': 'active'}),
    ])

    transaction.set.assert_called_once()
    transaction.update.assert_called_once()
    client.batch.assert_not_called()


def test_failed_precondition_writes_nothing(run_directly, firestore_store, client):
    client.collection.return_value.document.return_value.get.return_value = snapshot('r1', {'status': 'fulfilled'})
    transaction = client.transaction.return_value

    with pytest.raises(PreconditionFailed):
        firestore_store.atomic_batch([
            set_op('request_responses', 'x1', {'status': 'pending'}),
            update_op('blood_requests', 'r1', fields={'status': 'fulfilled'}, expect={'status': 'active'}),
        ])

    transaction.set.assert_not_called()
    transaction.update.assert_not_called()


def test_oversized_batch_is_rejected(firestore_store, client):
    ops = [delete_op('donations', f"d{i}") for i in range(501)]
    with pytest.raises(ValueError):
        firestore_store.atomic_batch(ops)
    client.batch.assert_not_called()
