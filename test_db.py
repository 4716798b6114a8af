import psycopg2
import pytest

import db
from conftest import FakeCursor


def test_placeholders_are_adapted_for_psycopg2():
    cursor = FakeCursor()
    db.db_execute(cursor, "SELECT * FROM classes WHERE id = ? AND form = ?", (1, 2))
    assert cursor.executed == [("SELECT * FROM classes WHERE id = %s AND form = %s", (1, 2))]


def test_driver_errors_become_database_errors():
    def responder(query, params):
        raise psycopg2.IntegrityError("duplicate key")

    with pytest.raises(db.DatabaseError, match="duplicate key"):
        db.db_execute(FakeCursor(responder), "INSERT INTO courses (code) VALUES (?)", ("GS",))


def test_statements_without_result_set_fetch_nothing():
    cursor = FakeCursor()
    db.db_execute(cursor, "UPDATE classes SET is_active = FALSE")
    assert db.fetch_rows(cursor) == []
    assert db.fetch_one(cursor) is None


def test_postgres_is_the_default_backend_and_needs_a_url():
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        db.load_database_config({})


def test_unknown_backend_is_rejected():
    with pytest.raises(RuntimeError, match="Unknown DATABASE_BACKEND"):
        db.load_database_config({"DATABASE_BACKEND": "sqlite"})


def test_null_backend_answers_every_query_with_nothing():
    client = db.create_client(db.load_database_config({"DATABASE_BACKEND": "null"}))
    assert isinstance(client, db.NullClient)
    assert client.query("SELECT * FROM classes") == []
    with client.transaction() as c:
        db.db_execute(c, "SELECT * FROM classes")
        assert db.fetch_rows(c) == []


def test_postgres_client_requires_postgres_url():
    with pytest.raises(RuntimeError):
        db.PostgresClient("mysql://localhost/school")


class FakeConn:
    def __init__(self, fail=False):
        self.fail = fail
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def cursor(self):
        conn = self

        class _Cursor(FakeCursor):
            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

            def execute(self, query, params=None):
                if conn.fail:
                    raise psycopg2.OperationalError("server closed the connection")
                super().execute(query, params)

        return _Cursor(lambda query, params: [{"id": 1}])

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


def test_transaction_commits_and_closes(monkeypatch):
    conn = FakeConn()
    monkeypatch.setattr(db.psycopg2, "connect", lambda *args, **kwargs: conn)

    rows = db.PostgresClient("postgresql://u:p@localhost/school").query("SELECT id FROM classes")

    assert rows == [{"id": 1}]
    assert conn.committed and conn.closed and not conn.rolled_back


def test_transaction_rolls_back_on_error(monkeypatch):
    conn = FakeConn(fail=True)
    monkeypatch.setattr(db.psycopg2, "connect", lambda *args, **kwargs: conn)

    with pytest.raises(db.DatabaseError):
        db.PostgresClient("postgresql://u:p@localhost/school").query("SELECT id FROM classes")

    assert conn.rolled_back and conn.closed and not conn.committed
