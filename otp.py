"""
In-process helpers for the mock Aadhaar OTP flow. State lives in memory, so
it is per worker process and lost on restart.
"""
import hashlib
import secrets
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Tuple


def mask_aadhaar(aadhaar: str) -> str:
    return f"XXXX-XXXX-{aadhaar[-4:]}"


def hash_aadhaar(aadhaar: str) -> str:
    return hashlib.sha256(aadhaar.encode("utf-8")).hexdigest()


def generate_otp() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


@dataclass
class _PendingOtp:
    code: str
    expires_at: float
    attempts: int = 0


class OtpStore:
    def __init__(
        self,
        ttl_seconds: int,
        max_attempts: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self._clock = clock
        self._pending: Dict[str, _PendingOtp] = {}
        self._lock = threading.Lock()

    def issue(self, key: str) -> str:
        code = generate_otp()
        with self._lock:
            self._pending[key] = _PendingOtp(code, self._clock() + self.ttl_seconds)
        return code

    def verify(self, key: str, code: str) -> Tuple[bool, str]:
        """
        Returns (True, message) and forgets the OTP on a match,
        (False, reason) otherwise.
        """
        with self._lock:
            pending = self._pending.get(key)
            if pending is None:
                return False, "OTP not found. Please request a new one."
            if self._clock() > pending.expires_at:
                del self._pending[key]
                return False, "OTP expired. Please request a new one."
            if pending.attempts >= self.max_attempts:
                del self._pending[key]
                return False, "Too many failed attempts. Please request a new OTP."
            if not secrets.compare_digest(pending.code, code):
                pending.attempts += 1
                remaining = self.max_attempts - pending.attempts
                return False, f"Invalid OTP. {remaining} attempt(s) remaining."
            del self._pending[key]
            return True, "OTP verified"

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()


class RateLimiter:
    """Sliding-window counter: at most `limit` hits per key per `window_seconds`."""

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()
