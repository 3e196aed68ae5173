import pytest
import redis

from gamefleet.models import OnlinePlayer
from gamefleet.online_players import (
    OnlinePlayerRepository,
    RepositoryError,
    server_players_key,
    session_key,
)
from gamefleet.pool import ConnectionPool


class RecordingLog:
    def __init__(self):
        self.lines = []

    def info(self, message, *args):
        self.lines.append(("INFO", message % args if args else message))

    def error(self, message, *args):
        self.lines.append(("ERROR", message % args if args else message))


def _b(value):
    return value if isinstance(value, bytes) else str(value).encode()


class FakeRedis:
    def __init__(self):
        self.hashes = {}
        self.sets = {}
        self.failing = set()

    def _check(self, name):
        if name in self.failing:
            raise redis.ResponseError(f"{name} refused")

    def hset(self, key, mapping):
        self._check("hset")
        self.hashes.setdefault(key, {}).update({_b(k): _b(v) for k, v in mapping.items()})
        return len(mapping)

    def hgetall(self, key):
        self._check("hgetall")
        return dict(self.hashes.get(key, {}))

    def sadd(self, key, *values):
        self._check("sadd")
        self.sets.setdefault(key, set()).update(_b(v) for v in values)

    def srem(self, key, *values):
        self._check("srem")
        self.sets.get(key, set()).difference_update(_b(v) for v in values)

    def smembers(self, key):
        self._check("smembers")
        return set(self.sets.get(key, set()))

    def delete(self, *keys):
        self._check("delete")
        removed = 0
        for key in keys:
            removed += (self.hashes.pop(key, None) is not None) + (
                self.sets.pop(key, None) is not None
            )
        return removed

    def exists(self, key):
        self._check("exists")
        return int(key in self.hashes or key in self.sets)


class FakeCursor:
    def __init__(self, db):
        self.db = db

    def execute(self, sql, params):
        if self.db.fail:
            raise RuntimeError("update refused")
        assert sql.startswith("UPDATE players SET is_online")
        online, player_id = params
        self.db.online[int(player_id)] = online

    def close(self):
        pass


class FakeDb:
    def __init__(self):
        self.online = {}
        self.fail = False
        self.rollbacks = 0

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        pass

    def rollback(self):
        self.rollbacks += 1


@pytest.fixture
def store():
    return FakeRedis()


@pytest.fixture
def db():
    return FakeDb()


@pytest.fixture
def log():
    return RecordingLog()


@pytest.fixture
def repo(store, db, log):
    redis_pool = ConnectionPool(lambda: store, 1, closer=lambda c: None)
    pg_pool = ConnectionPool(lambda: db, 1, closer=lambda c: None)
    return OnlinePlayerRepository(redis_pool, pg_pool, log)


def test_key_formats():
    assert session_key(42) == "player:42:session"
    assert server_players_key("abc") == "server:abc:players"


def test_add_then_find_round_trip(repo, store, db):
    player = OnlinePlayer(player_id=7, server_id="srv-1", joined_at=1700000000)
    repo.add(player)
    assert repo.find(7) == player
    assert store.sets[server_players_key("srv-1")] == {b"7"}
    assert db.online[7] is True
    assert repo.exists(7)


def test_add_logs_join(repo, log):
    player = OnlinePlayer(player_id=3, server_id="s", joined_at=1)
    repo.add(player)
    assert repo.find(3) == player
    assert log.lines[-1] == ("INFO", "player 3 joined server s")


def test_find_missing_returns_none(repo):
    assert repo.find(99) is None
    assert not repo.exists(99)


def test_remove_clears_session(repo, store, db):
    repo.add(OnlinePlayer(player_id=5, server_id="srv", joined_at=10))
    repo.remove(5)
    assert repo.find(5) is None
    assert store.sets[server_players_key("srv")] == set()
    assert db.online[5] is False


def test_remove_missing_raises(repo, log):
    with pytest.raises(RepositoryError):
        repo.remove(123)
    assert log.lines[-1][0] == "ERROR"


def test_remove_by_server(repo, store, db):
    repo.add(OnlinePlayer(player_id=1, server_id="srv", joined_at=1))
    repo.add(OnlinePlayer(player_id=2, server_id="srv", joined_at=2))
    repo.add(OnlinePlayer(player_id=3, server_id="other", joined_at=3))
    assert repo.remove_by_server("srv") == 2
    assert repo.find(1) is None and repo.find(2) is None
    assert repo.find(3) is not None
    assert db.online == {1: False, 2: False, 3: True}


def test_remove_by_server_empty(repo):
    assert repo.remove_by_server("nobody") == 0


def test_remove_by_server_reports_failures(repo, store, db):
    repo.add(OnlinePlayer(player_id=1, server_id="srv", joined_at=1))
    repo.add(OnlinePlayer(player_id=2, server_id="srv", joined_at=2))
    db.fail = True
    with pytest.raises(RepositoryError):
        repo.remove_by_server("srv")
    assert repo.find(1) is None and repo.find(2) is None


def test_add_cache_failure_raises(repo, store, db):
    store.failing.add("hset")
    with pytest.raises(RepositoryError):
        repo.add(OnlinePlayer(player_id=4, server_id="s", joined_at=0))
    assert 4 not in db.online


def test_add_database_failure_raises(repo, db):
    db.fail = True
    with pytest.raises(RepositoryError):
        repo.add(OnlinePlayer(player_id=4, server_id="s", joined_at=0))
    assert db.rollbacks == 1


def test_exists_failure_raises(repo, store):
    store.failing.add("exists")
    with pytest.raises(RepositoryError):
        repo.exists(1)


def test_find_cache_failure_returns_none(repo, store):
    repo.add(OnlinePlayer(player_id=8, server_id="s", joined_at=0))
    store.failing.add("hgetall")
    assert repo.find(8) is None