"""In-memory rate limiting for file operations.

Counters live in process memory keyed by identity and reset on restart.
They are a best-effort first line; the durable storage quota in
``quota_operations`` is authoritative. Limiter instances are built once
at process start and injected into the file service.

Each key has its own lock, and the clock is read once per check so a
window rollover is never compared against two different times.
"""

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Final, final

from django.conf import settings
from django.utils import timezone

from server.apps.files.exceptions import QuotaExceededError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Idle keys older than this are dropped by cleanup_expired_entries()
_DEFAULT_ENTRY_MAX_AGE: Final = timedelta(hours=24)


@final
@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    """Outcome of a rate limit check."""

    allowed: bool
    remaining_in_window: int
    reset_at: datetime | None
    error: str | None = None


@dataclass(slots=True)
class _WindowState:
    window_start: datetime
    last_request: datetime
    requests: int = 0
    total_bytes: int = 0


class _WindowedLimiter:
    """Fixed-length windows per key with per-key exclusive access."""

    def __init__(self, *, max_requests: int, window: timedelta, clock: Clock):
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._states: dict[str, _WindowState] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def cleanup_expired_entries(
        self,
        max_age: timedelta = _DEFAULT_ENTRY_MAX_AGE,
    ) -> int:
        """Drop keys with no request for longer than max_age.

        A key's lock goes with its state. Locks of keys that never
        stored a state (every check denied) are dropped too. Locks
        currently held are kept.

        Args:
            max_age: Idle time after which a key is forgotten.

        Returns:
            Number of keys removed.
        """
        now = self._clock()
        with self._guard:
            expired = [
                key for key, state in self._states.items()
                if now - state.last_request > max_age
            ]
            for key in expired:
                del self._states[key]
            idle_locks = [
                key for key, lock in self._locks.items()
                if key not in self._states and not lock.locked()
            ]
            for key in idle_locks:
                del self._locks[key]
        logger.debug(
            'Cleaned up %d expired rate limit entries, %d remaining',
            len(expired),
            len(self._states),
        )
        return len(expired)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def _holding(self, key: str) -> Iterator[None]:
        """Hold the key's lock, retrying if cleanup replaced it meanwhile."""
        while True:
            lock = self._lock_for(key)
            lock.acquire()
            with self._guard:
                current = self._locks.get(key) is lock
            if current:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def _current_state(self, key: str, now: datetime) -> _WindowState:
        """Return the key's window, or a fresh unsaved one if expired."""
        state = self._states.get(key)
        if state is None or now - state.window_start >= self.window:
            return _WindowState(window_start=now, last_request=now)
        return state

    def _store(self, key: str, state: _WindowState) -> None:
        with self._guard:
            self._states[key] = state


@final
class UploadRateLimiter(_WindowedLimiter):
    """Caps upload count and byte volume per owner and window."""

    def __init__(
        self,
        *,
        max_requests: int,
        max_bytes: int,
        window: timedelta,
        clock: Clock = timezone.now,
    ) -> None:
        """Initialize the limiter.

        Args:
            max_requests: Uploads allowed per window.
            max_bytes: Bytes allowed per window.
            window: Window length.
            clock: Source of the current time.
        """
        super().__init__(max_requests=max_requests, window=window, clock=clock)
        self.max_bytes = max_bytes

    @classmethod
    def from_settings(cls) -> 'UploadRateLimiter':
        """Build the limiter from FILES_UPLOAD_WINDOW_* settings."""
        return cls(
            max_requests=getattr(
                settings,
                'FILES_UPLOAD_WINDOW_MAX_REQUESTS',
                20,
            ),
            max_bytes=getattr(
                settings,
                'FILES_UPLOAD_WINDOW_MAX_BYTES',
                100 * 1024 * 1024,
            ),
            window=timedelta(
                seconds=getattr(settings, 'FILES_UPLOAD_WINDOW_SECONDS', 3600),
            ),
        )

    def check_and_reserve(
        self,
        owner_id: str,
        requested_bytes: int,
        durable_check: Callable[[], None] | None = None,
    ) -> RateLimitDecision:
        """Check the owner's window and reserve one upload if allowed.

        The durable check runs under the owner's lock after the window
        checks pass; it signals rejection by raising QuotaExceededError.
        Counters change only when every check passes.

        Args:
            owner_id: Owner identity.
            requested_bytes: Size of the upload.
            durable_check: Optional persistent quota check.

        Returns:
            RateLimitDecision for this upload.
        """
        with self._holding(owner_id):
            now = self._clock()
            state = self._current_state(owner_id, now)
            reset_at = state.window_start + self.window
            remaining = self.max_requests - state.requests

            if state.requests >= self.max_requests:
                logger.warning(
                    'Upload limit exceeded for %s: %d/%d',
                    owner_id,
                    state.requests,
                    self.max_requests,
                )
                return RateLimitDecision(
                    allowed=False,
                    remaining_in_window=0,
                    reset_at=reset_at,
                    error=(
                        'Upload limit exceeded. Maximum '
                        f'{self.max_requests} uploads per window. '
                        f'Try again after {reset_at.isoformat()}'
                    ),
                )

            if state.total_bytes + requested_bytes > self.max_bytes:
                logger.warning(
                    'Upload volume exceeded for %s: %d + %d > %d bytes',
                    owner_id,
                    state.total_bytes,
                    requested_bytes,
                    self.max_bytes,
                )
                return RateLimitDecision(
                    allowed=False,
                    remaining_in_window=remaining,
                    reset_at=reset_at,
                    error=(
                        'Upload volume exceeded. Maximum '
                        f'{self.max_bytes // (1024 * 1024)}MB per window. '
                        f'Try again after {reset_at.isoformat()}'
                    ),
                )

            if durable_check is not None:
                try:
                    durable_check()
                except QuotaExceededError as error:
                    return RateLimitDecision(
                        allowed=False,
                        remaining_in_window=remaining,
                        reset_at=error.reset_at,
                        error=error.message,
                    )

            state.requests += 1
            state.total_bytes += requested_bytes
            state.last_request = now
            self._store(owner_id, state)

        return RateLimitDecision(
            allowed=True,
            remaining_in_window=self.max_requests - state.requests,
            reset_at=reset_at,
        )


@final
class RequestRateLimiter(_WindowedLimiter):
    """Caps request count per window for non-upload operations.

    Keyed by owner identity, or by network address for callers without
    one, so polling list/download/metadata/delete stays bounded.
    """

    def __init__(
        self,
        *,
        max_requests: int,
        window: timedelta,
        clock: Clock = timezone.now,
    ) -> None:
        """Initialize the limiter.

        Args:
            max_requests: Requests allowed per window.
            window: Window length.
            clock: Source of the current time.
        """
        super().__init__(max_requests=max_requests, window=window, clock=clock)

    @classmethod
    def from_settings(cls) -> 'RequestRateLimiter':
        """Build the limiter from FILES_REQUEST_WINDOW_* settings."""
        return cls(
            max_requests=getattr(
                settings,
                'FILES_REQUEST_WINDOW_MAX_REQUESTS',
                100,
            ),
            window=timedelta(
                seconds=getattr(settings, 'FILES_REQUEST_WINDOW_SECONDS', 60),
            ),
        )

    @staticmethod
    def identifier_for(
        owner_id: str | None,
        remote_addr: str | None = None,
    ) -> str:
        """Build the limiter key for a caller.

        Example: ('user_1', None) -> 'user:user_1'; (None, None) -> 'ip:unknown'

        Args:
            owner_id: Authenticated identity, if any.
            remote_addr: Caller network address.

        Returns:
            Limiter key.
        """
        if owner_id:
            return f'user:{owner_id}'
        return f'ip:{remote_addr or "unknown"}'

    def hit(
        self,
        owner_id: str | None,
        remote_addr: str | None = None,
    ) -> RateLimitDecision:
        """Count one request against the caller's window.

        Args:
            owner_id: Authenticated identity, if any.
            remote_addr: Caller network address, used without identity.

        Returns:
            RateLimitDecision; denied requests are not counted.
        """
        key = self.identifier_for(owner_id, remote_addr)
        with self._holding(key):
            now = self._clock()
            state = self._current_state(key, now)
            reset_at = state.window_start + self.window

            if state.requests >= self.max_requests:
                logger.warning(
                    'Rate limit exceeded for %s. Limit: %d/%s. Reset at: %s',
                    key,
                    self.max_requests,
                    self.window,
                    reset_at.isoformat(),
                )
                return RateLimitDecision(
                    allowed=False,
                    remaining_in_window=0,
                    reset_at=reset_at,
                    error='Too many requests. Please try again later.',
                )

            state.requests += 1
            state.last_request = now
            self._store(key, state)

        logger.debug(
            'Rate limit check passed for %s: %d/%d',
            key,
            state.requests,
            self.max_requests,
        )
        return RateLimitDecision(
            allowed=True,
            remaining_in_window=self.max_requests - state.requests,
            reset_at=reset_at,
        )
