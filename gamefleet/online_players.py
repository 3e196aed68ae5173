"""Live player sessions kept in the cache, mirrored to the players table."""

from __future__ import annotations

import logging
import re
from contextlib import closing
from typing import Any, Optional

import redis

from gamefleet.models import OnlinePlayer

KEY_MAX_LEN = 255
SET_ONLINE_SQL = "UPDATE players SET is_online = %s, updated_at = NOW() WHERE id = %s"

_logger = logging.getLogger(__name__)
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class RepositoryError(Exception):
    """Raised when the cache or the database refuses an operation."""


def session_key(player_id: int) -> str:
    """Cache key of a player's session hash."""
    return f"player:{player_id}:session"[:KEY_MAX_LEN]


def server_players_key(server_id: str) -> str:
    """Cache key of the set of players on a server."""
    return f"server:{server_id}:players"[:KEY_MAX_LEN]


def _parse_id(value: Any) -> int:
    text = value.decode("utf-8", "replace") if isinstance(value, bytes) else str(value)
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def _text(value: Any) -> str:
    return value.decode("utf-8", "replace") if isinstance(value, bytes) else str(value)


class OnlinePlayerRepository:
    """Adds, removes and looks up player sessions."""

    def __init__(self, redis_pool: Any, pg_pool: Any, log: Any = None) -> None:
        self._redis = redis_pool
        self._pg = pg_pool
        self._log = log if log is not None else _logger

    def _set_online(self, player_id: int, online: bool) -> None:
        with self._pg.connection() as conn:
            try:
                with closing(conn.cursor()) as cursor:
                    cursor.execute(SET_ONLINE_SQL, (online, str(player_id)))
                conn.commit()
            except Exception as exc:
                conn.rollback()
                self._log.error("set_player_online: UPDATE failed: %s", exc)
                raise RepositoryError(f"UPDATE failed: {exc}") from exc

    def add(self, player: OnlinePlayer) -> None:
        """Record a session and mark the player online."""
        with self._redis.connection() as client:
            try:
                client.hset(session_key(player.player_id), mapping=player.to_hash())
            except redis.RedisError as exc:
                self._log.error("online_player_repository_add: HSET failed: %s", exc)
                raise RepositoryError(f"HSET failed: {exc}") from exc
            try:
                client.sadd(server_players_key(player.server_id), str(player.player_id))
            except redis.RedisError as exc:
                self._log.error("online_player_repository_add: SADD failed: %s", exc)
                raise RepositoryError(f"SADD failed: {exc}") from exc

        try:
            self._set_online(player.player_id, True)
        except RepositoryError:
            self._log.error(
                "online_player_repository_add: failed to set is_online for player %d",
                player.player_id,
            )
            raise
        self._log.info("player %d joined server %s", player.player_id, player.server_id)

    def remove(self, player_id: int) -> None:
        """End a player's session and mark the player offline."""
        player = self.find(player_id)
        if player is None:
            self._log.error(
                "online_player_repository_remove: session not found for player %d",
                player_id,
            )
            raise RepositoryError(f"session not found for player {player_id}")

        with self._redis.connection() as client:
            try:
                client.delete(session_key(player_id))
            except redis.RedisError as exc:
                self._log.error(
                    "online_player_repository_remove: DEL session failed: %s", exc
                )
                raise RepositoryError(f"DEL session failed: {exc}") from exc
            try:
                client.srem(server_players_key(player.server_id), str(player_id))
            except redis.RedisError as exc:
                self._log.error("online_player_repository_remove: SREM failed: %s", exc)
                raise RepositoryError(f"SREM failed: {exc}") from exc

        try:
            self._set_online(player_id, False)
        except RepositoryError:
            self._log.error(
                "online_player_repository_remove: failed to clear is_online for player %d",
                player_id,
            )
            raise
        self._log.info("player %d left their server", player_id)

    def remove_by_server(self, server_id: str) -> int:
        """End every session on a server; return how many members were found.

        Every member is attempted; RepositoryError is raised afterwards if any failed.
        """
        failures = []
        with self._redis.connection() as client:
            try:
                members = client.smembers(server_players_key(server_id))
            except redis.RedisError as exc:
                self._log.error(
                    "online_player_repository_remove_by_server: SMEMBERS failed: %s", exc
                )
                raise RepositoryError(f"SMEMBERS failed: {exc}") from exc

            for member in sorted(members):
                id_text = _text(member)
                player_id = _parse_id(member)
                try:
                    client.delete(session_key(player_id))
                except redis.RedisError:
                    self._log.error(
                        "online_player_repository_remove_by_server: DEL failed for player %s",
                        id_text,
                    )
                    failures.append(id_text)
                try:
                    self._set_online(player_id, False)
                except RepositoryError:
                    self._log.error(
                        "online_player_repository_remove_by_server: "
                        "failed to clear is_online for player %s",
                        id_text,
                    )
                    failures.append(id_text)

        self._log.info(
            "cleaned up %d player sessions for expired server %s", len(members), server_id
        )
        if failures:
            raise RepositoryError(
                "failed to clean up players: " + ", ".join(dict.fromkeys(failures))
            )
        return len(members)

    def find(self, player_id: int) -> Optional[OnlinePlayer]:
        """Return the player's session, or None if there is none."""
        with self._redis.connection() as client:
            try:
                fields = client.hgetall(session_key(player_id))
            except redis.RedisError:
                return None
        if not fields:
            return None
        return OnlinePlayer.from_hash(fields)

    def exists(self, player_id: int) -> bool:
        """Whether the player has a session."""
        with self._redis.connection() as client:
            try:
                count = client.exists(session_key(player_id))
            except redis.RedisError as exc:
                self._log.error(
                    "online_player_repository_exists: EXISTS failed: %s", exc
                )
                raise RepositoryError(f"EXISTS failed: {exc}") from exc
        return count == 1