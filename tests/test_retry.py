from datetime import datetime, timedelta, timezone

from translation_sync.domain.retry import (
    MAX_BACKOFF_SECONDS,
    backoff_seconds,
    calculate_next_run,
    normalize_max_attempts,
    truncate_error,
)


def test_backoff_doubles_per_attempt():
    assert backoff_seconds(0) == 2
    assert backoff_seconds(1) == 2
    assert backoff_seconds(2) == 4
    assert backoff_seconds(3) == 8
    assert backoff_seconds(5) == 32


def test_backoff_is_capped_at_one_hour():
    assert backoff_seconds(11) == 2048
    assert backoff_seconds(12) == MAX_BACKOFF_SECONDS
    assert backoff_seconds(500) == MAX_BACKOFF_SECONDS


def test_calculate_next_run_adds_backoff():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert calculate_next_run(3, now) == now + timedelta(seconds=8)


def test_invalid_max_attempts_fall_back_to_default():
    assert normalize_max_attempts(3) == 3
    assert normalize_max_attempts(0) == 5
    assert normalize_max_attempts(-2) == 5
    assert normalize_max_attempts(None) == 5
    assert normalize_max_attempts(True) == 5


def test_truncate_error():
    assert truncate_error("x" * 1500) == "x" * 1000
    assert truncate_error("short") == "short"
