import json
import os
import threading
from unittest import mock

import psycopg2
import pytest

from database import COLLECTIONS, JsonStore, PostgresStore, StoreError, get_store


def test_init_creates_one_file_per_collection(store):
    for collection in COLLECTIONS:
        assert os.path.exists(store._path(collection))
        assert store.all(collection) == []


def test_insert_assigns_id_and_created_at(store):
    doc = store.insert('products', {'name': 'Bread'})
    assert doc['id']
    assert doc['createdAt']
    assert store.get('products', doc['id']) == doc


def test_update_merges_fields_and_keeps_identity(store):
    doc = store.insert('products', {'name': 'Bread', 'stock': 3})
    updated = store.update('products', doc['id'], {'stock': 7, 'id': 'other', 'createdAt': 'x'})
    assert updated['stock'] == 7
    assert updated['name'] == 'Bread'
    assert updated['id'] == doc['id']
    assert updated['createdAt'] == doc['createdAt']


def test_update_and_delete_missing_return_none(store):
    assert store.update('products', 'missing', {'stock': 1}) is None
    assert store.delete('products', 'missing') is None


def test_delete_returns_removed_document(store):
    doc = store.insert('orders', {'totalAmount': 10})
    assert store.delete('orders', doc['id'])['id'] == doc['id']
    assert store.get('orders', doc['id']) is None


def test_find_filters_on_equality(store):
    store.insert('orders', {'paymentStatus': 'paid', 'paymentMethod': 'cash'})
    store.insert('orders', {'paymentStatus': 'pending', 'paymentMethod': 'Mpesa'})
    pending = store.find('orders', paymentStatus='pending', paymentMethod='Mpesa')
    assert len(pending) == 1
    assert store.find_one('orders', paymentStatus='failed') is None


def test_corrupt_file_raises_store_error(store):
    with open(store._path('products'), 'w') as f:
        f.write('{not json')
    with pytest.raises(StoreError):
        store.all('products')


def test_writes_leave_no_temp_file(store):
    store.insert('products', {'name': 'Bread'})
    assert not os.path.exists(store._path('products') + '.tmp')
    with open(store._path('products')) as f:
        assert json.load(f)[0]['name'] == 'Bread'


def test_locked_serializes_read_modify_write(store):
    doc = store.insert('products', {'stock': 0})

    def bump():
        for _ in range(20):
            with store.locked('products'):
                current = store.get('products', doc['id'])
                store.update('products', doc['id'], {'stock': current['stock'] + 1})

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert store.get('products', doc['id'])['stock'] == 80


def test_get_store_selects_backend(tmp_path):
    assert isinstance(get_store({'DATA_DIR': str(tmp_path), 'DATABASE_URL': None}), JsonStore)
    assert isinstance(get_store({'DATA_DIR': str(tmp_path), 'DATABASE_URL': 'postgresql://localhost/pos'}),
                      PostgresStore)


def test_find_none_requires_explicit_key(store):
    explicit = store.insert('orders', {'mpesaCheckoutRequestID': None})
    store.insert('orders', {'totalAmount': 5})
    assert [d['id'] for d in store.find('orders', mpesaCheckoutRequestID=None)] == [explicit['id']]


# PostgresStore against a mocked psycopg2 connection

@pytest.fixture
def pg():
    conn = mock.MagicMock()
    cursor = conn.cursor.return_value.__enter__.return_value
    with mock.patch('database.psycopg2.connect', return_value=conn) as connect:
        yield PostgresStore('postgresql://localhost/pos'), conn, cursor, connect


def _statements(cursor):
    return [c.args[0] for c in cursor.execute.call_args_list]


def test_pg_find_uses_jsonb_containment(pg):
    store, conn, cursor, _ = pg
    cursor.fetchall.return_value = [{'data': {'id': 'o1', 'paymentStatus': 'paid'}}]

    assert store.find('orders', paymentStatus='paid') == [{'id': 'o1', 'paymentStatus': 'paid'}]
    sql, params = cursor.execute.call_args.args
    assert 'data @> %s' in sql
    assert params[0] == 'orders'
    assert params[1].adapted == {'paymentStatus': 'paid'}
    conn.close.assert_called_once()


def test_pg_find_without_filters_lists_collection(pg):
    store, _, cursor, _ = pg
    cursor.fetchall.return_value = []
    assert store.find('orders') == []
    sql, params = cursor.execute.call_args.args
    assert '@>' not in sql
    assert params == ('orders',)


def test_pg_insert_assigns_id(pg):
    store, _, cursor, _ = pg
    cursor.fetchone.side_effect = lambda: {'data': cursor.execute.call_args.args[1][2].adapted}

    doc = store.insert('products', {'name': 'Bread'})
    sql, params = cursor.execute.call_args.args
    assert sql.startswith('INSERT INTO documents')
    assert params[0] == 'products'
    assert params[1] == doc['id']
    assert doc['createdAt']


def test_pg_update_merges_and_drops_identity(pg):
    store, _, cursor, _ = pg
    cursor.fetchone.return_value = {'data': {'id': 'p1', 'stock': 3}}

    assert store.update('products', 'p1', {'stock': 3, 'id': 'x', 'createdAt': 'y'}) == {'id': 'p1', 'stock': 3}
    sql, params = cursor.execute.call_args.args
    assert 'data = data || %s' in sql
    assert params[0].adapted == {'stock': 3}
    assert params[1:] == ('products', 'p1')


def test_pg_update_and_delete_missing_return_none(pg):
    store, _, cursor, _ = pg
    cursor.fetchone.return_value = None
    assert store.update('products', 'missing', {'stock': 1}) is None
    assert store.delete('products', 'missing') is None
    assert 'RETURNING data' in cursor.execute.call_args.args[0]


def test_pg_nested_lock_takes_advisory_lock_once(pg):
    store, conn, cursor, connect = pg
    with store.locked('orders'):
        with store.locked('orders'):
            pass

    statements = _statements(cursor)
    assert statements.count('SELECT pg_advisory_lock(hashtext(%s))') == 1
    assert statements.count('SELECT pg_advisory_unlock(hashtext(%s))') == 1
    assert connect.call_count == 1
    assert conn.autocommit is True
    conn.close.assert_called_once()


def test_pg_lock_released_on_error(pg):
    store, conn, cursor, _ = pg
    with pytest.raises(RuntimeError):
        with store.locked('orders'):
            raise RuntimeError('boom')

    assert _statements(cursor)[-1] == 'SELECT pg_advisory_unlock(hashtext(%s))'
    conn.close.assert_called_once()

    # depth was reset, so the next lock goes back to Postgres
    with store.locked('orders'):
        pass
    assert _statements(cursor).count('SELECT pg_advisory_lock(hashtext(%s))') == 2


def test_pg_connection_failure_raises_store_error():
    with mock.patch('database.psycopg2.connect', side_effect=psycopg2.OperationalError('refused')):
        with pytest.raises(StoreError):
            PostgresStore('postgresql://localhost/pos').get('orders', 'o1')
