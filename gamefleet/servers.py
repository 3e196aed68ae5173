"""Registered game servers kept in the cache, with expiry clean-up."""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Union

import redis

from gamefleet.models import SERVER_ID_MAX_LEN, Server
from gamefleet.online_players import RepositoryError, server_players_key

SERVER_TTL = 90
SERVER_KEY_PREFIX = "server:"
EXPIRED_CHANNEL = "__keyevent@0__:expired"
KEY_MAX_LEN = 255
POLL_TIMEOUT = 1.0

_logger = logging.getLogger(__name__)


def server_key(server_id: str) -> str:
    """Cache key of a server's hash."""
    return f"{SERVER_KEY_PREFIX}{server_id}"[:KEY_MAX_LEN]


def parse_server_key(expired_key: Union[str, bytes]) -> Optional[str]:
    """Return the server id named by a server hash key, or None for any other key."""
    if isinstance(expired_key, bytes):
        expired_key = expired_key.decode("utf-8", "replace")
    if not expired_key.startswith(SERVER_KEY_PREFIX):
        return None
    server_id = expired_key[len(SERVER_KEY_PREFIX):]
    if ":" in server_id:
        return None
    return server_id[:SERVER_ID_MAX_LEN]


class ServerRepository:
    """Registers servers with a time-to-live and cleans up after expired ones."""

    def __init__(self, redis_pool: Any, players: Any, log: Any = None) -> None:
        self._redis = redis_pool
        self._players = players
        self._log = log if log is not None else _logger
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def listening(self) -> bool:
        """Whether the expiry listener thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def register(self, server: Server) -> None:
        """Store a server and give it SERVER_TTL seconds to live."""
        key = server_key(server.server_id)
        with self._redis.connection() as client:
            try:
                client.hset(key, mapping=server.to_hash())
            except redis.RedisError as exc:
                self._log.error("server_repository_register: HSET failed %s", exc)
                raise RepositoryError(f"HSET failed: {exc}") from exc
            try:
                client.expire(key, SERVER_TTL)
            except redis.RedisError as exc:
                self._log.error("server_repository_register: EXPIRE failed %s", exc)
                raise RepositoryError(f"EXPIRE failed: {exc}") from exc
        self._log.info("server registered: %s", server.server_id)

    def unregister(self, server_id: str) -> None:
        """Drop a server, its player set and its players' sessions."""
        try:
            self._players.remove_by_server(server_id)
        except RepositoryError:
            pass
        with self._redis.connection() as client:
            try:
                client.delete(server_key(server_id), server_players_key(server_id))
            except redis.RedisError as exc:
                self._log.error("server_repository_unregister: DEL failed: %s", exc)
                raise RepositoryError(f"DEL failed: {exc}") from exc
        self._log.info("server unregistered: %s", server_id)

    def heartbeat(self, server_id: str) -> bool:
        """Renew a server's time to live; False if it had already expired."""
        with self._redis.connection() as client:
            try:
                renewed = client.expire(server_key(server_id), SERVER_TTL)
            except redis.RedisError as exc:
                self._log.error("server_repository_heartbeat: EXPIRE failed: %s", exc)
                raise RepositoryError(f"EXPIRE failed: {exc}") from exc
        alive = bool(renewed)
        if not alive:
            self._log.error(
                "server_repository_heartbeat: server expired before heartbeat: %s",
                server_id,
            )
        return alive

    def exists(self, server_id: str) -> bool:
        """Whether the server is registered."""
        with self._redis.connection() as client:
            try:
                count = client.exists(server_key(server_id))
            except redis.RedisError as exc:
                self._log.error("server_repository_exists: EXISTS failed: %s", exc)
                raise RepositoryError(f"EXISTS failed: {exc}") from exc
        return count == 1

    def find(self, server_id: str) -> Optional[Server]:
        """Return the registered server, or None."""
        with self._redis.connection() as client:
            try:
                fields = client.hgetall(server_key(server_id))
            except redis.RedisError:
                return None
        if not fields:
            return None
        return Server.from_hash(fields)

    def on_server_expired(self, server_id: str) -> None:
        """Clean up after a server whose key has expired."""
        self._log.info("server expired, cleaning up: %s", server_id)
        with self._redis.connection() as client:
            try:
                client.delete(server_players_key(server_id))
            except redis.RedisError as exc:
                self._log.error("on_server_expired: DEL players key failed: %s", exc)
        try:
            self._players.remove_by_server(server_id)
        except RepositoryError:
            pass

    def start_expiry_listener(self) -> None:
        """Start a thread that reacts to expired server keys."""
        self._log.info("starting server expiry listener...")
        self._stop.clear()
        thread = threading.Thread(
            target=self._listen, name="server-expiry-listener", daemon=True
        )
        try:
            thread.start()
        except RuntimeError:
            self._log.error(
                "server_repository_start_expiry_listener: thread start failed"
            )
            self._stop.set()
            raise
        self._thread = thread
        self._log.info("server expiry listener started")

    def stop_expiry_listener(self) -> None:
        """Stop the expiry listener and wait for its thread to end."""
        self._log.info("stopping server expiry listener...")
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._log.info("server expiry listener stopped")

    def _listen(self) -> None:
        with self._redis.connection() as client:
            pubsub = client.pubsub()
            try:
                try:
                    pubsub.subscribe(EXPIRED_CHANNEL)
                except redis.RedisError as exc:
                    self._log.error("expiry_listener: SUBSCRIBE failed: %s", exc)
                    return
                self._log.info("expiry listener subscribed")
                self._poll(pubsub)
            finally:
                pubsub.close()

    def _poll(self, pubsub: Any) -> None:
        while not self._stop.is_set():
            try:
                message = pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=POLL_TIMEOUT
                )
            except redis.RedisError as exc:
                self._log.error("expiry_listener: get message failed: %s", exc)
                break
            if not message or message.get("type") != "message":
                continue
            server_id = parse_server_key(message.get("data", b""))
            if server_id is None:
                continue
            try:
                self.on_server_expired(server_id)
            except Exception as exc:
                self._log.error("expiry_listener: clean-up failed: %s", exc)