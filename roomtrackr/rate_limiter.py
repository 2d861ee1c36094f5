import os
import threading
import time
from typing import Dict, List

from fastapi import HTTPException, Request, status

WINDOW_SECONDS = int(os.getenv("BOOKING_RATE_WINDOW_SECONDS", "60"))
MAX_BOOKINGS_PER_WINDOW = int(os.getenv("BOOKING_RATE_LIMIT", "20"))

_client_request_log: Dict[str, List[float]] = {}
_log_lock = threading.Lock()


def _drop_idle_clients(window_start: float) -> None:
    idle = [
        key
        for key, stamps in _client_request_log.items()
        if not stamps or stamps[-1] < window_start
    ]
    for key in idle:
        del _client_request_log[key]


def booking_rate_limiter(request: Request) -> None:
    """
    Sliding-window limit on booking writes per client host.

    Clients with no request inside the current window are forgotten.
    """
    client_key = request.client.host if request.client else "unknown"
    now = time.time()
    window_start = now - WINDOW_SECONDS

    with _log_lock:
        timestamps = [ts for ts in _client_request_log.get(client_key, []) if ts >= window_start]
        _drop_idle_clients(window_start)

        if len(timestamps) >= MAX_BOOKINGS_PER_WINDOW:
            _client_request_log[client_key] = timestamps
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many booking operations in a short time",
            )

        timestamps.append(now)
        _client_request_log[client_key] = timestamps


def reset_rate_limits() -> None:
    with _log_lock:
        _client_request_log.clear()
