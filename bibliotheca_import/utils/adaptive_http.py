"""Adaptive HTTP helpers (rate limiting + retry with backoff).

A small threadsafe, per-provider rate limiter used by the metadata fetchers. It is
Flask-agnostic so it can run inside a streaming import generator.

Behavior:
- On HTTP 429 (or Google Books 403 quota-style responses), it backs off quickly.
- 5xx responses and connection errors are retried with a modest backoff.
- After a few successful responses it gradually speeds back up.

Tuning via env vars:
- HTTP_MIN_DELAY_SECONDS (default 0)
- HTTP_MAX_DELAY_SECONDS (default 10)
- HTTP_BACKOFF_MULTIPLIER (default 1.5)
- HTTP_RECOVERY_MULTIPLIER (default 0.9)
- HTTP_JITTER_MAX_SECONDS (default 0)
- HTTP_MAX_RETRIES (default 3)
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import random
import threading
import time
from typing import Dict, Optional, Mapping

import requests

logger = logging.getLogger(__name__)


def _read_float_env(name: str, default: float) -> float:
    try:
        raw = os.getenv(name)
        if raw in (None, ''):
            return default
        return float(raw)
    except ValueError:
        return default


def _read_int_env(name: str, default: int) -> int:
    try:
        raw = os.getenv(name)
        if raw in (None, ''):
            return default
        return int(raw)
    except ValueError:
        return default


def _parse_retry_after_seconds(headers: Mapping[str, str]) -> Optional[float]:
    ra = (headers or {}).get('Retry-After')
    if not ra:
        return None
    # Retry-After can be seconds or HTTP date; handle seconds only.
    try:
        return float(ra)
    except ValueError:
        return None


@dataclass
class _LimiterState:
    delay: float
    next_allowed: float
    success_streak: int


class AdaptiveRateLimiter:
    def __init__(self, key: str):
        self.key = key
        self._lock = threading.RLock()
        self._min_delay = max(0.0, _read_float_env('HTTP_MIN_DELAY_SECONDS', 0.0))
        self._max_delay = max(self._min_delay, _read_float_env('HTTP_MAX_DELAY_SECONDS', 10.0))
        self._backoff_mult = max(1.1, _read_float_env('HTTP_BACKOFF_MULTIPLIER', 1.5))
        self._recovery_mult = min(0.999, max(0.5, _read_float_env('HTTP_RECOVERY_MULTIPLIER', 0.9)))
        self._jitter_max = max(0.0, _read_float_env('HTTP_JITTER_MAX_SECONDS', 0.0))
        self._state = _LimiterState(delay=self._min_delay, next_allowed=time.monotonic(), success_streak=0)

    @property
    def delay(self) -> float:
        with self._lock:
            return self._state.delay

    def wait(self) -> None:
        with self._lock:
            wait_for = max(0.0, self._state.next_allowed - time.monotonic())
            if self._jitter_max > 0:
                wait_for += random.uniform(0.0, self._jitter_max)
            if wait_for > 0:
                time.sleep(wait_for)
            # Reserve the next slot.
            self._state.next_allowed = time.monotonic() + self._state.delay

    def on_success(self) -> None:
        with self._lock:
            self._state.success_streak += 1
            # Recover slowly (only after a few successes to avoid flapping).
            if self._state.success_streak >= 3 and self._state.delay > self._min_delay:
                self._state.delay = max(self._min_delay, self._state.delay * self._recovery_mult)
                self._state.success_streak = 0

    def on_rate_limited(self, retry_after_seconds: Optional[float] = None) -> None:
        with self._lock:
            self._state.success_streak = 0
            new_delay = self._state.delay * self._backoff_mult
            if new_delay <= 0:
                new_delay = 0.5
            if retry_after_seconds is not None:
                new_delay = max(new_delay, float(retry_after_seconds))
            new_delay = min(self._max_delay, new_delay)
            self._state.delay = new_delay
            self._state.next_allowed = time.monotonic() + new_delay

    def on_transient_error(self) -> None:
        # For 5xx/timeouts: modest backoff to reduce pressure.
        with self._lock:
            self._state.success_streak = 0
            bumped = self._state.delay * self._backoff_mult if self._state.delay > 0 else 0.2
            self._state.delay = min(self._max_delay, max(self._min_delay, bumped))


_limiters: Dict[str, AdaptiveRateLimiter] = {}
_limiters_lock = threading.RLock()


def get_limiter(key: str) -> AdaptiveRateLimiter:
    with _limiters_lock:
        limiter = _limiters.get(key)
        if limiter is None:
            limiter = AdaptiveRateLimiter(key)
            _limiters[key] = limiter
        return limiter


def reset_limiters() -> None:
    with _limiters_lock:
        _limiters.clear()


def _looks_like_google_quota(resp) -> bool:
    if resp.status_code != 403:
        return False
    text = (getattr(resp, 'text', '') or '')[:4000]
    return (
        'rateLimitExceeded' in text
        or 'userRateLimitExceeded' in text
        or 'quotaExceeded' in text
        or 'Daily Limit Exceeded' in text
    )


def adaptive_get(
    limiter_key: str,
    url: str,
    *,
    session=None,
    timeout: float | tuple[float, float] | None = None,
    max_retries: Optional[int] = None,
    **kwargs,
) -> requests.Response:
    """GET with adaptive pacing and retry on rate limits, 5xx and connection errors.

    `session` may be a requests.Session (or anything with a compatible .get);
    the requests module itself is used when omitted. `max_retries` counts total
    attempts, so 1 means a single request. Returns the final response, even if
    unsuccessful. The last network exception is re-raised.
    """
    limiter = get_limiter(limiter_key)
    client = session if session is not None else requests
    attempts = max_retries if max_retries is not None else _read_int_env('HTTP_MAX_RETRIES', 3)
    attempts = max(1, int(attempts))

    last_resp = None
    for attempt in range(attempts):
        limiter.wait()
        try:
            resp = client.get(url, timeout=timeout, **kwargs)
        except requests.exceptions.RequestException as exc:
            limiter.on_transient_error()
            logger.warning(f"[HTTP][ERROR] key={limiter_key} url={url} attempt={attempt + 1} err={exc}")
            if attempt < attempts - 1:
                continue
            raise
        last_resp = resp

        if resp.status_code == 429 or _looks_like_google_quota(resp):
            ra = _parse_retry_after_seconds(getattr(resp, 'headers', None) or {})
            limiter.on_rate_limited(ra)
            logger.warning(f"[HTTP][RATE_LIMIT] key={limiter_key} url={url} status={resp.status_code} retry_after={ra}")
            if attempt < attempts - 1:
                continue
            return resp

        if 500 <= resp.status_code <= 599:
            limiter.on_transient_error()
            if attempt < attempts - 1:
                continue
            return resp

        limiter.on_success()
        return resp

    return last_resp
