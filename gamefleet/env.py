"""Configuration read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional


class MissingEnvironmentError(Exception):
    """Raised when required environment variables are absent."""

    def __init__(self, names):
        self.names = tuple(names)
        super().__init__(
            "missing required environment variable(s): " + ", ".join(self.names)
        )


@dataclass(frozen=True)
class Environment:
    """Settings the service needs at start-up."""

    database_connection: str
    redis_connection: str
    roblox_server_secret: str
    admin_portal_secret: str
    roblox_api_key: str
    log_level: str
    log_file: str

    @classmethod
    def load(cls, environ: Optional[Mapping[str, str]] = None) -> "Environment":
        """Read every setting from its upper-case variable; all are required."""
        source = os.environ if environ is None else environ
        variables = {field.name: field.name.upper() for field in fields(cls)}
        missing = [name for name in variables.values() if name not in source]
        if missing:
            raise MissingEnvironmentError(missing)
        return cls(**{attr: source[name] for attr, name in variables.items()})