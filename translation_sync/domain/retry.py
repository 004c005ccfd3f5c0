from datetime import datetime, timedelta

MAX_BACKOFF_SECONDS = 3600
DEFAULT_MAX_ATTEMPTS = 5
MAX_ERROR_LENGTH = 1000

def backoff_seconds(attempts: int, max_delay_seconds: int = MAX_BACKOFF_SECONDS) -> int:
    """
    Delay before a failed job becomes eligible again.

    Formula:
        delay = min(max_delay, 2 ^ max(1, attempts))

    attempts is the attempt count *after* the failure was recorded, so the
    first retry waits 2s, then 4s, 8s... capped at one hour.
    """
    # 2^12 already exceeds the cap; avoids building huge ints.
    exponent = min(max(1, attempts), 12)
    return min(max_delay_seconds, 2 ** exponent)

def calculate_next_run(attempts: int, now: datetime) -> datetime:
    return now + timedelta(seconds=backoff_seconds(attempts))

def normalize_max_attempts(value) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return DEFAULT_MAX_ATTEMPTS

def truncate_error(message: str, limit: int = MAX_ERROR_LENGTH) -> str:
    return message[:limit]
