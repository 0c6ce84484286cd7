"""Once-per-server rare drop rule for a multiplayer game server."""

__version__ = "1.0.0"
