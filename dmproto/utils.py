from __future__ import annotations

import random
import time

UID_BASE = 100_000_000_000_000
UID_SPAN = 200_000_000_000_000


def generate_client_uid() -> int:
    """Random client id in [1e14, 3e14), wide enough to avoid collisions between sessions."""
    return UID_BASE + random.randrange(UID_SPAN)


def utc_timestamp() -> float:
    """Current UTC timestamp in seconds."""
    return time.time()


__all__ = ["generate_client_uid", "utc_timestamp"]
