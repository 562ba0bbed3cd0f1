import pytest

import db
from app import create_app
from config import TestingConfig


def normalize(sql):
    return " ".join(sql.split())


class FakeCursor:
    """Cursor that answers statements from a script of ``(sql_substring, result)`` pairs.

    The first unused entry whose substring appears in the statement is consumed.
    ``result`` is a list of row dicts, an int (rowcount only) or an exception
    to raise. Statements that match nothing return no rows.
    """

    def __init__(self, script=None):
        self.script = script if script is not None else []
        self.executed = []
        self.rows = []
        self.rowcount = -1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def on(self, pattern, result):
        self.script.append((pattern, result))
        return self

    def execute(self, sql, params=None):
        sql = normalize(sql)
        self.executed.append((sql, params))
        result = []
        for i, (pattern, answer) in enumerate(self.script):
            if pattern in sql:
                result = answer
                del self.script[i]
                break
        if isinstance(result, Exception):
            raise result
        if isinstance(result, int):
            self.rows, self.rowcount = [], result
        else:
            self.rows = [dict(r) if isinstance(r, dict) else r for r in result]
            self.rowcount = len(self.rows)

    def fetchone(self):
        return self.rows.pop(0) if self.rows else None

    def fetchall(self):
        rows, self.rows = self.rows, []
        return rows

    def statements(self, pattern=""):
        return [(sql, params) for sql, params in self.executed if pattern in sql]


class FakeConnection:
    def __init__(self, fake_db):
        self.fake_db = fake_db
        self.autocommit = False

    def cursor(self, cursor_factory=None):
        return self.fake_db.cursor

    def commit(self):
        self.fake_db.commits += 1

    def rollback(self):
        self.fake_db.rollbacks += 1

    def close(self):
        self.fake_db.closed += 1


class FakeDB:
    def __init__(self):
        self.cursor = FakeCursor()
        self.commits = 0
        self.rollbacks = 0
        self.closed = 0

    def on(self, pattern, result):
        self.cursor.on(pattern, result)
        return self

    def statements(self, pattern=""):
        return self.cursor.statements(pattern)

    def connect(self):
        return FakeConnection(self)


@pytest.fixture
def cur():
    return FakeCursor()


@pytest.fixture
def fake_db(monkeypatch):
    fake = FakeDB()
    monkeypatch.setattr(db, "get_db_connection", fake.connect)
    return fake


@pytest.fixture
def app(fake_db):
    return create_app(TestingConfig)


@pytest.fixture
def client(app):
    return app.test_client()


def login_as(client, role):
    with client.session_transaction() as sess:
        sess["username"] = role
        sess["role"] = role
    return client


@pytest.fixture
def admin_client(client):
    return login_as(client, "admin")


@pytest.fixture
def comercial_client(client):
    return login_as(client, "comercial")
