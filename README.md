# gamefleet

Building blocks for a backend that keeps track of running game servers
and the players connected to them.

Servers register themselves in Redis with a 90-second time to live and
renew it with heartbeats. When a server's key expires, a background
listener removes the server's player set and every player session
attached to it. Player sessions live in Redis; the durable `is_online`
flag lives in a PostgreSQL `players` table whose schema is managed by
plain SQL migration files.

## Installation

```
pip install .
pip install ".[test]"   # with pytest, to run the tests
```

## Modules

### `gamefleet.env`

`Environment.load(environ=None)` reads these variables (from `os.environ`
unless a mapping is given), all of them required:

`DATABASE_CONNECTION`, `REDIS_CONNECTION`, `ROBLOX_SERVER_SECRET`,
`ADMIN_PORTAL_SECRET`, `ROBLOX_API_KEY`, `LOG_LEVEL`, `LOG_FILE`.

Each becomes the lower-case attribute of a frozen `Environment`. If any
are absent, `MissingEnvironmentError` is raised; its `names` attribute
lists every missing variable.

### `gamefleet.log`

`HourlyLog(level, path_format, clock=None, stream=None)` writes lines of
the form `[LEVEL] 2024-01-01T12:00:00Z message` to a stream (stdout by
default) and appends them to a file. The file name is `path_format`
passed through `strftime`, and a new file is opened whenever the hour of
the clock (UTC by default) changes. Messages take `%`-style arguments and
are cut to 2047 characters.

- `debug`, `info`, `error` write at their level; lines below the log's
  `level` are dropped (`error` is always written).
- `rotate()` reopens the file if the hour has changed; `close()` closes
  the file while later lines still go to the stream. `HourlyLog` is also
  a context manager that closes on exit.
- `LogLevel.from_string(text)` maps `"debug"` and `"error"` to their
  levels; anything else gives `LogLevel.INFO`.

### `gamefleet.pool`

`ConnectionPool(factory, size, closer=None)` opens `size` connections up
front. If one fails, those already opened are closed and `PoolError` is
raised.

- `acquire()` hands out the lowest free connection, blocking until one is
  released; `release(conn)` returns it (connections from elsewhere are
  ignored). Prefer `with pool.connection() as conn:`.
- `shutdown()` closes every connection and wakes waiting callers, who
  then get `PoolError`.

Helpers:

- `parse_redis_address("host:port")` returns `(host, port)`; the port
  defaults to 6379.
- `redis_pool(conn_str, size=25)` builds a pool of `redis.Redis` clients,
  each checked with `PING`.
- `postgres_pool(connect, dsn, size=25)` builds a pool from any
  `connect(dsn)` function you supply.

### `gamefleet.migrations`

- `list_migrations(directory="./migrations")` returns the `.sql` file
  names sorted by name (at most 1024 are taken).
- `run_migrations(pool, directory="./migrations", log=None)` creates the
  `_migrations` table if needed, applies every file not yet recorded
  there, records each one, and returns how many it applied. It stops at
  the first failure with `MigrationError`. Each file is read up to
  65535 bytes.

### `gamefleet.models`

Dataclasses `Server(server_id, started_at)`,
`OnlinePlayer(player_id, server_id, joined_at)` and
`Player(id, is_online, created_at, updated_at)`. `Server` and
`OnlinePlayer` have `to_hash()` and `from_hash(fields)` for their Redis
hash form; `from_hash` accepts `str` or `bytes` keys and values and
ignores unknown fields.

### `gamefleet.online_players`

`OnlinePlayerRepository(redis_pool, pg_pool, log=None)`:

- `add(player)` stores the session hash under `player:<id>:session`,
  adds the id to the set `server:<server_id>:players`, and sets
  `is_online = true` in `players`.
- `remove(player_id)` deletes the session, removes the id from its
  server's set and sets `is_online = false`; it raises `RepositoryError`
  if there is no session.
- `remove_by_server(server_id)` ends every session in the server's set,
  returning the number of members; it tries them all and raises
  `RepositoryError` afterwards if any failed.
- `find(player_id)` returns an `OnlinePlayer` or `None`;
  `exists(player_id)` returns a bool.

`session_key(player_id)` and `server_players_key(server_id)` give the
cache keys. Redis and database failures raise `RepositoryError`.

### `gamefleet.servers`

`ServerRepository(redis_pool, players, log=None)`, where `players` is an
`OnlinePlayerRepository`:

- `register(server)` stores the hash under `server:<id>` with a 90-second
  time to live.
- `heartbeat(server_id)` renews the time to live and returns `False` if
  the server had already expired.
- `unregister(server_id)` ends the server's player sessions and deletes
  the server and its player set.
- `find(server_id)` returns a `Server` or `None`; `exists(server_id)`
  returns a bool.
- `start_expiry_listener()` / `stop_expiry_listener()` run a thread
  subscribed to `__keyevent@0__:expired`; for each expired
  `server:<id>` key it calls `on_server_expired(id)`. `listening` tells
  whether the thread is running.

`server_key(server_id)` builds the key and `parse_server_key(key)`
returns the id, or `None` for keys that are not server hashes.

### `gamefleet.jsonutil`

- `get_string(obj, key, max_len=None)` – the string under `key`,
  optionally cut, or `None`.
- `get_int64(obj, key)` – the number under `key` truncated towards zero,
  or `None` (booleans and non-finite numbers are rejected).
- `error_body(message)` – `{"error": message}`.
- `to_json(obj)` – compact JSON without whitespace.

## Requirements on the database connection

`postgres_pool` does not depend on any PostgreSQL driver: pass a
`connect` function returning a DB-API style connection with `cursor()`,
`commit()` and `rollback()`, whose cursors take `%s` parameters.

The `log` argument of the repositories and of `run_migrations` may be an
`HourlyLog` or any object with `info` and `error` methods; by default a
standard `logging` logger is used.

## Example

```python
import time

from gamefleet.env import Environment
from gamefleet.log import HourlyLog, LogLevel
from gamefleet.migrations import run_migrations
from gamefleet.models import OnlinePlayer, Server
from gamefleet.online_players import OnlinePlayerRepository
from gamefleet.pool import postgres_pool, redis_pool
from gamefleet.servers import ServerRepository

env = Environment.load()

with HourlyLog(LogLevel.from_string(env.log_level), env.log_file) as log:
    pg = postgres_pool(my_connect, env.database_connection)
    cache = redis_pool(env.redis_connection)
    run_migrations(pg, "./migrations", log)

    players = OnlinePlayerRepository(cache, pg, log)
    servers = ServerRepository(cache, players, log)
    servers.start_expiry_listener()
    try:
        servers.register(Server(server_id="srv-1", started_at=int(time.time())))
        players.add(OnlinePlayer(player_id=42, server_id="srv-1",
                                 joined_at=int(time.time())))
        servers.heartbeat("srv-1")
        print(players.find(42))
    finally:
        servers.stop_expiry_listener()
        cache.shutdown()
        pg.shutdown()
```

`my_connect` is your own function that opens a PostgreSQL connection.

The expiry listener relies on Redis key-space notifications for expired
keys (`notify-keyspace-events` including `Ex`) on database 0.

## What this package does not do

It is a library only. It has no HTTP server, no request routing or
secret checking for game servers or an admin portal, and no command to
start a service; `Environment` reads the secrets and API key but nothing
in the package uses them. The `players` table itself must be created by
your own migration files.