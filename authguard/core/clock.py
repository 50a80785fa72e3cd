# authguard/core/clock.py
"""Wall-clock access for every lockout and expiry comparison.

All services read the time through ``utcnow()`` so tests can move the clock by
patching ``authguard.core.clock.utcnow``.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)

