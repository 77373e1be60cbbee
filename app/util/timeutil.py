from __future__ import annotations

import time


def now_ts() -> int:
    """Wall-clock seconds since the epoch."""
    return int(time.time())
