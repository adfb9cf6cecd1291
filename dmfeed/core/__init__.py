from .connection import ConnectionContext
from .dispatcher import FeedEvent, FrameDispatcher, classify
from .heartbeat import HeartbeatMonitor
from .network import FeedClient, NetworkError
from .session import Session

__all__ = [
    "ConnectionContext",
    "FeedClient",
    "FeedEvent",
    "FrameDispatcher",
    "HeartbeatMonitor",
    "NetworkError",
    "Session",
    "classify",
]
