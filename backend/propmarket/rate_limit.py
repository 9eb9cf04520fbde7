from __future__ import annotations

import time
from collections import deque
from threading import Lock

from propmarket.errors import RateLimited


class RateLimiter:
    """
    Sliding-window counter keyed by arbitrary strings (per-process).

    Not shared between workers; a multi-instance deployment needs a shared store.
    Keys whose events have all aged out are swept every `sweep_every` hits.
    """

    def __init__(self, *, sweep_every: int = 1000) -> None:
        self._lock = Lock()
        self._events: dict[str, deque[float]] = {}
        self._longest_window = 0.0
        self._sweep_every = int(sweep_every)
        self._hits = 0

    def hit(self, *, key: str, limit: int, window_seconds: int, detail: str = "") -> None:
        now = time.monotonic()
        win_start = now - float(window_seconds)
        with self._lock:
            self._longest_window = max(self._longest_window, float(window_seconds))
            self._hits += 1
            if self._hits % self._sweep_every == 0:
                self._sweep(now)
            q = self._events.setdefault(key, deque())
            while q and q[0] < win_start:
                q.popleft()
            if len(q) >= int(limit):
                raise RateLimited(detail)
            q.append(now)

    def _sweep(self, now: float) -> None:
        cutoff = now - self._longest_window
        for key in [k for k, q in self._events.items() if not q or q[-1] < cutoff]:
            del self._events[key]

    def key_count(self) -> int:
        return len(self._events)

    def reset(self) -> None:
        with self._lock:
            self._events.clear()
            self._hits = 0


limiter = RateLimiter()

# Requests per email inside a ten minute window.
OTP_REQUEST_LIMIT = 5
OTP_VERIFY_LIMIT = 12
OTP_WINDOW_SECONDS = 10 * 60


def check_otp_request(email: str) -> None:
    limiter.hit(
        key=f"otp:req:{email}",
        limit=OTP_REQUEST_LIMIT,
        window_seconds=OTP_WINDOW_SECONDS,
        detail="Too many code requests. Please wait a few minutes.",
    )


def check_otp_verify(email: str) -> None:
    limiter.hit(
        key=f"otp:verify:{email}",
        limit=OTP_VERIFY_LIMIT,
        window_seconds=OTP_WINDOW_SECONDS,
        detail="Too many attempts. Please wait a few minutes.",
    )
