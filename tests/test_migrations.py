import pytest

from gamefleet.migrations import (
    MAX_MIGRATIONS,
    MigrationError,
    list_migrations,
    run_migrations,
)
from gamefleet.pool import ConnectionPool


class RecordingLog:
    def __init__(self):
        self.lines = []

    def info(self, message, *args):
        self.lines.append(("INFO", message % args if args else message))

    def error(self, message, *args):
        self.lines.append(("ERROR", message % args if args else message))


class FakeCursor:
    def __init__(self, db):
        self.db = db
        self.row = None

    def execute(self, sql, params=None):
        if sql.startswith("CREATE TABLE IF NOT EXISTS _migrations"):
            if self.db.fail_create:
                raise RuntimeError("create refused")
            self.db.table_created = True
        elif sql.startswith("SELECT 1 FROM _migrations"):
            self.row = (1,) if params[0] in self.db.applied else None
        elif sql.startswith("INSERT INTO _migrations"):
            self.db.applied.append(params[0])
        elif "BROKEN" in sql:
            raise RuntimeError("syntax error")
        else:
            self.db.scripts.append(sql)

    def fetchone(self):
        return self.row

    def close(self):
        pass


class FakeDb:
    def __init__(self, applied=(), fail_create=False):
        self.applied = list(applied)
        self.scripts = []
        self.table_created = False
        self.fail_create = fail_create
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def make_pool(db):
    return ConnectionPool(lambda: db, 1, closer=lambda conn: None)


def write(directory, name, text):
    (directory / name).write_text(text)


def test_list_migrations_sorts_and_filters(tmp_path):
    write(tmp_path, "002_b.sql", "b")
    write(tmp_path, "001_a.sql", "a")
    write(tmp_path, "notes.txt", "x")
    write(tmp_path, "sql", "x")
    assert list_migrations(str(tmp_path)) == ["001_a.sql", "002_b.sql"]


def test_list_migrations_missing_directory(tmp_path):
    with pytest.raises(MigrationError):
        list_migrations(str(tmp_path / "absent"))


def test_list_migrations_caps_count(tmp_path):
    for index in range(MAX_MIGRATIONS + 5):
        write(tmp_path, f"{index:05d}.sql", "")
    assert len(list_migrations(str(tmp_path))) == MAX_MIGRATIONS


def test_run_applies_in_name_order(tmp_path):
    write(tmp_path, "002_b.sql", "CREATE TABLE b();")
    write(tmp_path, "001_a.sql", "CREATE TABLE a();")
    db = FakeDb()
    log = RecordingLog()
    count = run_migrations(make_pool(db), str(tmp_path), log)
    assert count == 2
    assert db.table_created
    assert db.scripts == ["CREATE TABLE a();", "CREATE TABLE b();"]
    assert db.applied == ["001_a.sql", "002_b.sql"]
    assert ("INFO", "migrations: applied 2 migration(s)") in log.lines


def test_run_skips_applied(tmp_path):
    write(tmp_path, "001_a.sql", "CREATE TABLE a();")
    write(tmp_path, "002_b.sql", "CREATE TABLE b();")
    db = FakeDb(applied=["001_a.sql"])
    count = run_migrations(make_pool(db), str(tmp_path), RecordingLog())
    assert count == 1
    assert db.scripts == ["CREATE TABLE b();"]


def test_run_twice_is_idempotent(tmp_path):
    write(tmp_path, "001_a.sql", "CREATE TABLE a();")
    db = FakeDb()
    pool = make_pool(db)
    run_migrations(pool, str(tmp_path), RecordingLog())
    log = RecordingLog()
    assert run_migrations(pool, str(tmp_path), log) == 0
    assert ("INFO", "migrations: nothing to apply") in log.lines
    assert db.applied == ["001_a.sql"]


def test_run_stops_at_failure(tmp_path):
    write(tmp_path, "001_a.sql", "CREATE TABLE a();")
    write(tmp_path, "002_b.sql", "BROKEN")
    write(tmp_path, "003_c.sql", "CREATE TABLE c();")
    db = FakeDb()
    with pytest.raises(MigrationError):
        run_migrations(make_pool(db), str(tmp_path), RecordingLog())
    assert db.applied == ["001_a.sql"]
    assert db.scripts == ["CREATE TABLE a();"]
    assert db.rollbacks == 1


def test_run_missing_directory(tmp_path):
    db = FakeDb()
    with pytest.raises(MigrationError):
        run_migrations(make_pool(db), str(tmp_path / "absent"), RecordingLog())
    assert db.table_created


def test_run_table_failure(tmp_path):
    db = FakeDb(fail_create=True)
    with pytest.raises(MigrationError):
        run_migrations(make_pool(db), str(tmp_path), RecordingLog())
    assert db.applied == []


def test_connection_returned_after_failure(tmp_path):
    write(tmp_path, "001_a.sql", "BROKEN")
    db = FakeDb()
    pool = make_pool(db)
    with pytest.raises(MigrationError):
        run_migrations(pool, str(tmp_path), RecordingLog())
    assert pool.acquire() is db