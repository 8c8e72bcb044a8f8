"""Tests for in-memory rate limiters."""

import threading
from datetime import timedelta

import pytest

from server.apps.files.exceptions import QuotaExceededError
from server.apps.files.logic.rate_limiting import (
    RequestRateLimiter,
    UploadRateLimiter,
)

_MB = 1024 * 1024


def test_upload_limiter_allows_within_window(upload_limiter, fake_clock):
    """Test allowed uploads count down the remaining budget."""
    first = upload_limiter.check_and_reserve('user_1', _MB)
    second = upload_limiter.check_and_reserve('user_1', _MB)

    assert first.allowed is True
    assert first.remaining_in_window == 19
    assert second.remaining_in_window == 18
    assert second.reset_at == fake_clock.now + timedelta(hours=1)


def test_upload_limiter_request_ceiling(upload_limiter, fake_clock):
    """Test the 21st upload in a window is denied until it resets."""
    for _ in range(20):
        assert upload_limiter.check_and_reserve('user_1', 10).allowed

    denied = upload_limiter.check_and_reserve('user_1', 10)

    assert denied.allowed is False
    assert denied.remaining_in_window == 0
    assert denied.reset_at > fake_clock.now
    assert 'Upload limit exceeded' in denied.error

    fake_clock.advance(hours=1)
    assert upload_limiter.check_and_reserve('user_1', 10).allowed is True


def test_upload_limiter_byte_ceiling(upload_limiter):
    """Test the byte volume ceiling per window."""
    assert upload_limiter.check_and_reserve('user_1', 60 * _MB).allowed

    denied = upload_limiter.check_and_reserve('user_1', 41 * _MB)

    assert denied.allowed is False
    assert 'Upload volume exceeded' in denied.error
    # Exactly at the ceiling is still allowed
    assert upload_limiter.check_and_reserve('user_1', 40 * _MB).allowed


def test_upload_limiter_rejection_does_not_mutate(upload_limiter):
    """Test a denied request leaves counters untouched."""
    upload_limiter.check_and_reserve('user_1', 90 * _MB)
    upload_limiter.check_and_reserve('user_1', 20 * _MB)

    decision = upload_limiter.check_and_reserve('user_1', 10 * _MB)

    assert decision.allowed is True
    assert decision.remaining_in_window == 18


def test_upload_limiter_durable_check(upload_limiter):
    """Test a failing durable check denies without reserving."""
    def over_quota():
        raise QuotaExceededError('Storage quota exceeded')

    denied = upload_limiter.check_and_reserve(
        'user_1',
        _MB,
        durable_check=over_quota,
    )

    assert denied.allowed is False
    assert denied.error == 'Storage quota exceeded'
    assert denied.reset_at is None
    assert upload_limiter.check_and_reserve('user_1', _MB).remaining_in_window == 19


def test_upload_limiter_is_per_owner(upload_limiter):
    """Test owners have independent windows."""
    for _ in range(20):
        upload_limiter.check_and_reserve('user_1', 10)

    assert upload_limiter.check_and_reserve('user_1', 10).allowed is False
    assert upload_limiter.check_and_reserve('user_2', 10).allowed is True


def test_upload_limiter_window_resets_at_boundary(upload_limiter, fake_clock):
    """Test the window resets exactly one window length after start."""
    for _ in range(20):
        upload_limiter.check_and_reserve('user_1', 10)

    fake_clock.advance(minutes=59, seconds=59)
    assert upload_limiter.check_and_reserve('user_1', 10).allowed is False

    fake_clock.advance(seconds=1)
    decision = upload_limiter.check_and_reserve('user_1', 10)
    assert decision.allowed is True
    assert decision.reset_at == fake_clock.now + timedelta(hours=1)


def test_upload_limiter_concurrent_reservations():
    """Test parallel reservations never exceed the ceiling."""
    limiter = UploadRateLimiter(
        max_requests=20,
        max_bytes=100 * _MB,
        window=timedelta(hours=1),
    )
    results = []
    results_lock = threading.Lock()

    def reserve():
        decision = limiter.check_and_reserve('user_1', 1)
        with results_lock:
            results.append(decision.allowed)

    threads = [threading.Thread(target=reserve) for _ in range(50)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 20


def test_upload_limiter_from_settings(settings):
    """Test limits are read from settings."""
    settings.FILES_UPLOAD_WINDOW_MAX_REQUESTS = 3
    settings.FILES_UPLOAD_WINDOW_MAX_BYTES = 1000
    settings.FILES_UPLOAD_WINDOW_SECONDS = 60

    limiter = UploadRateLimiter.from_settings()

    assert limiter.max_requests == 3
    assert limiter.max_bytes == 1000
    assert limiter.window == timedelta(seconds=60)


def test_request_limiter_ceiling(request_limiter, fake_clock):
    """Test the request ceiling and reset."""
    for _ in range(100):
        assert request_limiter.hit('user_1').allowed

    denied = request_limiter.hit('user_1')

    assert denied.allowed is False
    assert denied.error == 'Too many requests. Please try again later.'

    fake_clock.advance(minutes=1)
    assert request_limiter.hit('user_1').allowed is True


@pytest.mark.parametrize(('owner_id', 'remote_addr', 'expected'), [
    ('user_1', '10.0.0.1', 'user:user_1'),
    (None, '10.0.0.1', 'ip:10.0.0.1'),
    (None, None, 'ip:unknown'),
    ('', None, 'ip:unknown'),
])
def test_request_limiter_identifier(owner_id, remote_addr, expected):
    """Test identity takes precedence over network address."""
    assert RequestRateLimiter.identifier_for(owner_id, remote_addr) == expected


def test_request_limiter_keys_are_independent(request_limiter):
    """Test anonymous callers share a bucket per address only."""
    for _ in range(100):
        request_limiter.hit(None, '10.0.0.1')

    assert request_limiter.hit(None, '10.0.0.1').allowed is False
    assert request_limiter.hit(None, '10.0.0.2').allowed is True
    assert request_limiter.hit('user_1', '10.0.0.1').allowed is True


def test_cleanup_expired_entries(request_limiter, fake_clock):
    """Test idle keys are dropped after max age."""
    request_limiter.hit('user_1')
    fake_clock.advance(hours=12)
    request_limiter.hit('user_2')
    fake_clock.advance(hours=13)

    removed = request_limiter.cleanup_expired_entries()

    assert removed == 1
    assert set(request_limiter._locks) == {'user:user_2'}
    # user_1 starts a fresh window
    assert request_limiter.hit('user_1').remaining_in_window == 99


def test_cleanup_drops_locks_of_anonymous_callers(request_limiter, fake_clock):
    """Test per-address locks do not accumulate after cleanup."""
    for index in range(1000):
        request_limiter.hit(None, f'10.0.{index // 256}.{index % 256}')
    fake_clock.advance(days=2)

    assert request_limiter.cleanup_expired_entries() == 1000
    assert request_limiter._states == {}
    assert request_limiter._locks == {}


def test_cleanup_keeps_held_locks(request_limiter, fake_clock):
    """Test a lock in use survives cleanup and still guards its key."""
    request_limiter.hit('user_1')
    fake_clock.advance(days=2)
    lock = request_limiter._locks['user:user_1']

    with lock:
        request_limiter.cleanup_expired_entries()

    assert request_limiter._locks['user:user_1'] is lock
    assert request_limiter.hit('user_1').remaining_in_window == 99


def test_cleanup_drops_locks_of_denied_owners(upload_limiter, fake_clock):
    """Test owners rejected before any reservation leave no lock behind."""
    denied = upload_limiter.check_and_reserve('user_1', 200 * _MB)

    assert denied.allowed is False
    assert 'user_1' in upload_limiter._locks

    upload_limiter.cleanup_expired_entries()

    assert upload_limiter._locks == {}


def test_upload_cleanup_expired_entries(upload_limiter, fake_clock):
    """Test upload limiter drops idle owners with a custom max age."""
    upload_limiter.check_and_reserve('user_1', 10)
    fake_clock.advance(hours=2)

    assert upload_limiter.cleanup_expired_entries(timedelta(hours=1)) == 1
    assert upload_limiter.cleanup_expired_entries(timedelta(hours=1)) == 0
