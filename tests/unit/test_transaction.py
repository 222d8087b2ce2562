"""
Explicit transactions.
"""
import mysqlstrict as db
import pytest
from mysqlstrict.exceptions import ExecuteError


def test_commit_on_success(fake_session, fake_conn):
    with db.transaction(fake_conn) as tx:
        assert fake_conn.in_transaction
        tx.execute('INSERT INTO t (a) VALUES (?)', 1)
    assert fake_session.transactions == ['begin', 'commit']
    assert fake_session.executions == [('INSERT INTO t (a) VALUES (?)', (1,))]
    assert not fake_conn.in_transaction


def test_rollback_on_error(fake_session, fake_conn):
    fake_session.respond('INSERT INTO t (a) VALUES (?)', error=(1062, "Duplicate entry '1'"))
    with pytest.raises(ExecuteError):
        with db.transaction(fake_conn) as tx:
            tx.execute('INSERT INTO t (a) VALUES (?)', 1)
    assert fake_session.transactions == ['begin', 'rollback']
    assert not fake_conn.in_transaction


def test_nested_transaction_rejected(fake_session, fake_conn):
    with db.transaction(fake_conn):
        with pytest.raises(RuntimeError, match='already in progress'):
            with db.transaction(fake_conn):
                pass
    assert fake_session.transactions == ['begin', 'commit']


def test_failed_commit_resets_state(fake_session, fake_conn):
    fake_session.fail_next('COMMIT', 1213, 'Deadlock found when trying to get lock')
    with pytest.raises(ExecuteError) as exc_info:
        with db.transaction(fake_conn):
            pass
    assert exc_info.value.code == 1213
    assert not fake_conn.in_transaction


def test_query_helpers(fake_session, fake_conn):
    fake_session.respond('SELECT a FROM t', columns=['a'], rows=[(1,), (2,)])
    with db.transaction(fake_conn) as tx:
        assert tx.select('SELECT a FROM t') == [{'a': 1}, {'a': 2}]
        assert tx.select_row('SELECT a FROM t') == {'a': 1}
        assert tx.select_scalar('SELECT a FROM t') == 1


def test_failed_rollback_keeps_block_error(fake_session, fake_conn):
    fake_session.fail_next('ROLLBACK', 2013, 'Lost connection to MySQL server during query')
    with pytest.raises(ValueError, match='bad input') as exc_info:
        with db.transaction(fake_conn):
            raise ValueError('bad input')
    assert any('Rolling back also failed' in note for note in exc_info.value.__notes__)
    assert not fake_conn.in_transaction


if __name__ == '__main__':
    __import__('pytest').main([__file__])
