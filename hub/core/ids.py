from __future__ import annotations

import threading
import time


_lock = threading.Lock()
_last_ms = 0


def monotonic_epoch_ms() -> int:
    """Wall-clock epoch milliseconds that never repeat or go backwards in this process."""

    global _last_ms
    with _lock:
        now = int(time.time() * 1000)
        if now <= _last_ms:
            now = _last_ms + 1
        _last_ms = now
        return now


def new_event_id(destination: str) -> str:
    return f"{destination}_{monotonic_epoch_ms()}"


def new_response_event_id(prefix: str = "payment") -> str:
    return f"{prefix}_{monotonic_epoch_ms()}"
