# authguard/services/progressive_delay.py
"""
Progressive delay (exponential backoff) for repeated login failures.

2 fails = 2s, 3 fails = 4s, 4 fails = 8s ... capped at the configured max.
"""

from authguard.core.config import settings


def calculate_progressive_delay(
    attempts: int,
    base_seconds: float | None = None,
    max_seconds: float | None = None,
) -> float:
    """
    Seconds to pause before answering a request for a subject with `attempts`
    prior failures.

    Args:
        attempts: Failure count currently recorded for the account
        base_seconds: Base delay, defaults to PROGRESSIVE_DELAY_BASE_SECONDS
        max_seconds: Upper bound, defaults to PROGRESSIVE_DELAY_MAX_SECONDS

    Returns:
        0 for 0 or 1 prior failures, otherwise base * 2^(attempts - 1) capped at max
    """
    base = settings.PROGRESSIVE_DELAY_BASE_SECONDS if base_seconds is None else base_seconds
    cap = settings.PROGRESSIVE_DELAY_MAX_SECONDS if max_seconds is None else max_seconds

    if attempts <= 1:
        return 0.0

    # Past this exponent the cap always wins; avoids huge floats for absurd counts
    exponent = min(attempts - 1, 64)
    return float(min(base * (2**exponent), cap))
