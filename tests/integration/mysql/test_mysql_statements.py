import datetime
import decimal

import mysqlstrict as db
import pytest
from mysqlstrict.exceptions import BindError, CloseError, ExecuteError
from mysqlstrict.exceptions import PrepareError, ResultError
from mysqlstrict.statement import StatementState


def test_session_charset(mysql_conn):
    """Test the configured character set is applied"""
    assert mysql_conn.character_set_name() == 'utf8mb4'
    assert db.select_scalar(mysql_conn, 'SELECT @@character_set_client') == 'utf8mb4'


def test_select_with_bound_values(mysql_conn):
    """Test a bound select returns dicts in column order"""
    with mysql_conn.prepare('SELECT id, name FROM customers WHERE id >= ? ORDER BY id') as stmt:
        stmt.bind('i', 2)
        rows = stmt.fetch_all()
        assert rows == [{'id': 2, 'name': 'Bob'}, {'id': 3, 'name': 'Charlie'}]
        assert stmt.fields == ['id', 'name']

        stmt.bind('i', 3)
        assert stmt.fetch_first() == {'id': 3, 'name': 'Charlie'}


def test_fetch_first_drains_remaining_rows(mysql_conn):
    """Test unread rows do not block the next command"""
    with mysql_conn.prepare('SELECT name FROM customers ORDER BY id') as stmt:
        assert stmt.fetch_first() == {'name': 'Alice'}
        assert stmt.fetch_first() == {'name': 'Alice'}
    assert db.select_scalar(mysql_conn, 'SELECT COUNT(*) FROM customers') == 3


def test_empty_result(mysql_conn):
    with mysql_conn.prepare('SELECT id FROM customers WHERE name = ?') as stmt:
        stmt.bind('s', 'nobody')
        assert stmt.fetch_all() == []
        assert stmt.fetch_first() is None


def test_write_reports_affected_rows_and_insert_id(mysql_conn):
    with mysql_conn.prepare('INSERT INTO orders (customer_id, amount, note) VALUES (?, ?, ?)') as stmt:
        stmt.bind('ids', 1, decimal.Decimal('12.50'), None)
        assert stmt.execute() == 1
        assert stmt.insert_id == 42
        assert stmt.get_result() is None

        stmt.bind('ids', 2, 3.25, 'rush')
        stmt.execute()
        assert stmt.insert_id == 43

    row = db.select_row(mysql_conn, 'SELECT amount, note FROM orders WHERE id = ?', 42)
    assert row == {'amount': decimal.Decimal('12.50'), 'note': None}
    assert db.update(mysql_conn, 'UPDATE orders SET note = ? WHERE customer_id = ?', 'late', 1) == 1


def test_date_bound_as_string(mysql_conn):
    value = db.select_scalar(mysql_conn, 'SELECT DATE_ADD(?, INTERVAL 1 DAY)',
                             datetime.date(2024, 2, 28), types='s')
    assert str(value) == '2024-02-29'


def test_result_object(mysql_conn):
    with mysql_conn.prepare('SELECT id, name FROM customers ORDER BY id') as stmt:
        stmt.execute()
        with stmt.get_result() as result:
            assert result.field_count == 2
            assert result.fetch_row() == {'id': 1, 'name': 'Alice'}
        assert stmt.state == StatementState.EXECUTED
        with pytest.raises(ResultError) as exc_info:
            stmt.get_result()
        assert exc_info.value.code == 2014


def test_duplicate_column_names_rejected(mysql_conn):
    with mysql_conn.prepare('SELECT 1 AS a, 2 AS a') as stmt:
        stmt.execute()
        with pytest.raises(ResultError, match='Duplicate column names'):
            stmt.get_result()
    assert db.select_scalar(mysql_conn, 'SELECT 1') == 1


def test_syntax_error_at_prepare(mysql_conn):
    with pytest.raises(PrepareError) as exc_info:
        mysql_conn.prepare('SELEC id FROM customers')
    assert exc_info.value.code == 1064
    assert not mysql_conn.statements


def test_unknown_column_at_prepare(mysql_conn):
    with pytest.raises(PrepareError) as exc_info:
        mysql_conn.prepare('SELECT nope FROM customers')
    assert exc_info.value.code == 1054


def test_unbound_markers(mysql_conn):
    with mysql_conn.prepare('SELECT id FROM customers WHERE id = ?') as stmt:
        with pytest.raises(ExecuteError) as exc_info:
            stmt.execute()
        assert exc_info.value.code == 2031
        with pytest.raises(BindError):
            stmt.bind('ii', 1, 2)


def test_duplicate_key(mysql_conn):
    with pytest.raises(ExecuteError) as exc_info:
        db.insert(mysql_conn, 'INSERT INTO customers (id, name) VALUES (?, ?)', 1, 'Again')
    assert exc_info.value.code == 1062
    assert 'Duplicate entry' in exc_info.value.message


def test_close_twice(mysql_conn):
    stmt = mysql_conn.prepare('SELECT 1')
    stmt.close()
    with pytest.raises(CloseError) as exc_info:
        stmt.close()
    assert exc_info.value.code == 1243


def test_transaction_rollback(mysql_conn):
    with pytest.raises(ExecuteError):
        with db.transaction(mysql_conn) as tx:
            tx.execute('INSERT INTO plain (name) VALUES (?)', 'kept?')
            tx.execute('INSERT INTO customers (id, name) VALUES (?, ?)', 1, 'Again')
    assert db.select_scalar(mysql_conn, 'SELECT COUNT(*) FROM plain') == 0


def test_transaction_commit(mysql_conn):
    with db.transaction(mysql_conn) as tx:
        tx.execute('INSERT INTO plain (name) VALUES (?)', 'kept')
    assert db.select(mysql_conn, 'SELECT name FROM plain') == [{'name': 'kept'}]


def test_store_result_frees_session(mysql_conn):
    with mysql_conn.prepare('SELECT id, name FROM customers ORDER BY id') as stmt:
        stmt.execute()
        assert stmt.result_metadata() == ['id', 'name']
        assert stmt.store_result() == 3
        assert db.select_scalar(mysql_conn, 'SELECT 1') == 1
        assert stmt.fetch() == (1, 'Alice')
        assert stmt.fetch() == (2, 'Bob')


def test_send_long_data(mysql_conn):
    with mysql_conn.prepare('SELECT LENGTH(?) AS n, ? AS tag') as stmt:
        stmt.bind('bs', b'', 'blob')
        for _ in range(4):
            stmt.send_long_data(0, b'x' * 1000)
        assert stmt.fetch_first() == {'n': 4000, 'tag': 'blob'}
        stmt.reset()
        assert stmt.fetch_first() == {'n': 0, 'tag': 'blob'}


if __name__ == '__main__':
    __import__('pytest').main([__file__])
