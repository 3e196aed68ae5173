"""Records kept in the cache and the database."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Union

SERVER_ID_MAX_LEN = 127

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

Text = Union[str, bytes]


def _text(value: Text) -> str:
    return value.decode("utf-8", "replace") if isinstance(value, bytes) else value


def _leading_int(value: Text) -> int:
    match = _LEADING_INT.match(_text(value))
    return int(match.group(1)) if match else 0


def _decoded(fields: Mapping[Text, Text]) -> dict:
    return {_text(key): _text(value) for key, value in fields.items()}


@dataclass
class OnlinePlayer:
    """A player's live session on a game server."""

    player_id: int
    server_id: str = ""
    joined_at: int = 0

    @classmethod
    def from_hash(cls, fields: Mapping[Text, Text]) -> "OnlinePlayer":
        """Build from a cache hash; unknown fields are ignored."""
        data = _decoded(fields)
        return cls(
            player_id=_leading_int(data.get("player_id", "")),
            server_id=data.get("server_id", "")[:SERVER_ID_MAX_LEN],
            joined_at=_leading_int(data.get("joined_at", "")),
        )

    def to_hash(self) -> dict:
        return {
            "player_id": str(self.player_id),
            "server_id": self.server_id,
            "joined_at": str(self.joined_at),
        }


@dataclass
class Player:
    """A player row in the database."""

    id: int
    is_online: bool = False
    created_at: int = 0
    updated_at: int = 0


@dataclass
class Server:
    """A running game server."""

    server_id: str
    started_at: int = 0

    @classmethod
    def from_hash(cls, fields: Mapping[Text, Text]) -> "Server":
        """Build from a cache hash; unknown fields are ignored."""
        data = _decoded(fields)
        return cls(
            server_id=data.get("server_id", "")[:SERVER_ID_MAX_LEN],
            started_at=_leading_int(data.get("started_at", "")),
        )

    def to_hash(self) -> dict:
        return {"server_id": self.server_id, "started_at": str(self.started_at)}