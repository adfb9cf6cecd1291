"""Client for the live danmaku feed: connection, heartbeat, reconnection and event routing."""

from .core import FeedClient, NetworkError, Session

__all__ = ["FeedClient", "NetworkError", "Session"]
