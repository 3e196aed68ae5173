"""Game server registry and online player tracking backed by Redis and PostgreSQL."""

__version__ = "0.1.0"

__all__ = [
    "env",
    "jsonutil",
    "log",
    "migrations",
    "models",
    "online_players",
    "pool",
    "servers",
]