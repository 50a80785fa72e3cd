# authguard/services/brute_force_guard.py
"""
Brute-force guard run in front of every credential check.

Order of checks:
1. IP abuse (rolling window over the attempt ledger) -> IpBlockedError
2. Account lock (with lazy expiry) -> AccountLockedError
3. Progressive delay for the account's current failure count

The guard hands back a SecurityContext that records exactly one outcome per
request. Store failures during the checks fail open: the request proceeds
with zeroed risk state and a critical protection_degraded event is written.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authguard.core.config import settings
from authguard.core.request_context import ClientInfo
from authguard.core.security_logger import security_log
from authguard.db.models.login_attempt import ATTEMPT_TYPES
from authguard.db.session import get_session_factory
from authguard.exceptions import (
    AccountLockedError,
    InfrastructureError,
    IpBlockedError,
    MissingIdentifierError,
)
from authguard.services import security_events
from authguard.services.account_lockout import (
    FailureOutcome,
    is_account_locked,
    record_failed_login,
    record_password_verified,
    record_successful_login,
)
from authguard.services.attempt_ledger import record_attempt
from authguard.services.device_fingerprint import DeviceInfo, extract_device_fingerprint
from authguard.services.ip_abuse import check_ip_rate_limit
from authguard.services.progressive_delay import calculate_progressive_delay

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionFactory = async_sessionmaker[AsyncSession] | Callable[[], AsyncSession]

# Strong references to shielded writes so they are not collected mid-flight
_pending_writes: set[asyncio.Task[Any]] = set()


async def run_shielded(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run a write so that cancelling the caller does not cancel the write.

    The caller still sees the CancelledError; the write runs to completion.
    """
    task = asyncio.ensure_future(coro)
    _pending_writes.add(task)
    task.add_done_callback(_pending_writes.discard)
    return await asyncio.shield(task)


class SecurityContext:
    """
    Outcome recorder bound to one guarded request.

    Use as an async context manager: if the handler leaves the block without
    recording an outcome, a failure is recorded for it (``unhandled_error``
    when an exception escaped, ``not_recorded`` otherwise). A second record
    call is ignored with a warning.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        email: str,
        client: ClientInfo,
        device: DeviceInfo,
        attempt_type: str,
        current_attempts: int = 0,
        degraded: bool = False,
    ) -> None:
        self._session_factory = session_factory
        self.email = email
        self.ip = client.ip
        self.user_agent = client.user_agent
        self.device = device
        self.device_fingerprint = device.fingerprint
        self.attempt_type = attempt_type
        self.current_attempts = current_attempts
        self.degraded = degraded
        self.outcome: str | None = None

    @property
    def recorded(self) -> bool:
        return self.outcome is not None

    def _claim(self, outcome: str) -> bool:
        if self.outcome is not None:
            logger.warning(
                f"Outcome already recorded ({self.outcome}) for {self.email}; ignoring {outcome}"
            )
            return False
        self.outcome = outcome
        return True

    async def _write(self, operation: Callable[[AsyncSession], Awaitable[T]]) -> T | None:
        async def _in_own_session() -> T:
            async with self._session_factory() as session:
                return await operation(session)

        if not self.degraded:
            return await run_shielded(_in_own_session())

        try:
            return await run_shielded(_in_own_session())
        except Exception as e:
            logger.error(f"Degraded guard could not record outcome for {self.email}: {e}")
            return None

    async def record_failure(self, reason: str) -> FailureOutcome | None:
        if not self._claim(f"failure:{reason}"):
            return None
        return await self._write(
            lambda session: record_failed_login(
                session,
                email=self.email,
                ip_address=self.ip,
                attempt_type=self.attempt_type,
                failure_reason=reason,
                user_agent=self.user_agent,
                device_fingerprint=self.device_fingerprint,
            )
        )

    async def record_success(self) -> None:
        if not self._claim("success"):
            return
        await self._write(
            lambda session: record_successful_login(
                session,
                email=self.email,
                ip_address=self.ip,
                attempt_type=self.attempt_type,
                user_agent=self.user_agent,
                device_fingerprint=self.device_fingerprint,
            )
        )

    async def record_password_verified(self) -> None:
        """Correct password, login continues to an OTP step; no success is recorded yet."""
        if not self._claim("password_verified"):
            return
        await self._write(
            lambda session: record_password_verified(
                session,
                email=self.email,
                ip_address=self.ip,
                attempt_type=self.attempt_type,
                user_agent=self.user_agent,
                device_fingerprint=self.device_fingerprint,
            )
        )

    async def log_event(
        self, event_type: str, severity: str | None = None, payload: dict[str, Any] | None = None
    ) -> bool:
        """Write an extra event bound to this request's client."""
        return await security_events.log_security_event_safe(
            self._session_factory,
            event_type,
            severity,
            email=self.email,
            ip_address=self.ip,
            user_agent=self.user_agent,
            device_fingerprint=self.device_fingerprint,
            payload=payload,
        )

    async def __aenter__(self) -> "SecurityContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if not self.recorded:
            reason = "unhandled_error" if exc_type is not None else "not_recorded"
            try:
                await self.record_failure(reason)
            except Exception as e:
                # Never mask the handler's own exception
                logger.error(f"Could not record fallback outcome for {self.email}: {e}")
        return False


class BruteForceGuard:
    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._sleep = sleep

    @property
    def session_factory(self) -> SessionFactory:
        return self._session_factory or get_session_factory()

    def _factory_or_unavailable(self) -> SessionFactory:
        try:
            return self.session_factory
        except RuntimeError:
            return _UnavailableSessionFactory()

    async def record_rate_limited(
        self, ip: str, path: str, user_agent: str | None = None, limit: str | None = None
    ) -> bool:
        """SecurityEvent for a request the endpoint rate limiter turned away."""
        return await security_events.log_security_event_safe(
            self._factory_or_unavailable(),
            security_events.RATE_LIMITED,
            ip_address=ip,
            user_agent=user_agent,
            payload={"request_path": path, "limit": limit},
        )

    async def _record_rejection(
        self, email: str, client: ClientInfo, device: DeviceInfo, attempt_type: str, reason: str
    ) -> None:
        """Ledger-only record for requests stopped before the credential check."""

        async def _write() -> None:
            async with self.session_factory() as session:
                await record_attempt(
                    session,
                    email=email,
                    ip_address=client.ip,
                    attempt_type=attempt_type,
                    success=False,
                    user_agent=client.user_agent,
                    device_fingerprint=device.fingerprint,
                    failure_reason=reason,
                )
                await session.commit()

        try:
            await run_shielded(_write())
        except Exception as e:
            logger.error(f"Failed to record {reason} attempt for {email}: {e}")

    async def protect(
        self,
        email: str | None,
        client: ClientInfo,
        attempt_type: str = "customer",
    ) -> SecurityContext:
        """
        Run the pre-credential checks for one request.

        Raises:
            MissingIdentifierError: no email/username supplied
            IpBlockedError: the client IP is over the failure threshold
            AccountLockedError: the account is inside its lockout window
        """
        if attempt_type not in ATTEMPT_TYPES:
            raise ValueError(f"Unknown attempt type '{attempt_type}'")
        if not email or not email.strip():
            raise MissingIdentifierError()

        email = email.strip().lower()
        device = extract_device_fingerprint(
            client.user_agent, client.accept_language, client.accept_encoding
        )
        event_fields = {
            "email": email,
            "ip_address": client.ip,
            "user_agent": client.user_agent,
            "device_fingerprint": device.fingerprint,
        }

        stage = "session"
        try:
            session_factory = self.session_factory
            async with session_factory() as session:
                stage = "ip_check"
                ip_status = await check_ip_rate_limit(session, client.ip, attempt_type)
                lock_status = None
                if not ip_status.blocked:
                    stage = "lock_check"
                    lock_status = await is_account_locked(session, email)
        except Exception as e:
            logger.critical(
                f"Brute-force protection degraded at {stage} for {client.ip}: {e}", exc_info=True
            )
            security_log.protection_degraded(client.ip, stage, e.__class__.__name__)
            fallback_factory = self._factory_or_unavailable()
            await security_events.log_security_event_safe(
                fallback_factory,
                security_events.PROTECTION_DEGRADED,
                payload={"stage": stage, "error": e.__class__.__name__},
                **event_fields,
            )
            return SecurityContext(
                fallback_factory,
                email,
                client,
                device,
                attempt_type,
                current_attempts=0,
                degraded=True,
            )

        if ip_status.blocked:
            await security_events.log_security_event_safe(
                session_factory,
                security_events.BLOCKED_ATTEMPT,
                payload={
                    "reason": "IP blocked due to excessive failures",
                    "attempts": ip_status.attempts,
                    "browser": device.browser,
                    "os": device.os,
                    "device_type": device.device_type,
                },
                **event_fields,
            )
            await self._record_rejection(email, client, device, attempt_type, "IP_BLOCKED")
            raise IpBlockedError(settings.IP_BLOCK_RETRY_AFTER_SECONDS)

        if lock_status.locked:
            await security_events.log_security_event_safe(
                session_factory,
                security_events.LOCKED_ACCOUNT_ATTEMPT,
                payload={
                    "minutes_remaining": lock_status.minutes_remaining,
                    "attempts": lock_status.attempts,
                },
                **event_fields,
            )
            security_log.failed_login(client.ip, email, "ACCOUNT_LOCKED")
            await self._record_rejection(email, client, device, attempt_type, "ACCOUNT_LOCKED")
            raise AccountLockedError(lock_status.minutes_remaining or 1)

        # The check session is closed here; nothing is held across the pause
        delay = calculate_progressive_delay(lock_status.attempts)
        if delay > 0:
            logger.info(f"Applying {delay}s delay for {email} ({lock_status.attempts} failures)")
            try:
                await self._sleep(delay)
            except asyncio.CancelledError:
                await self._record_rejection(email, client, device, attempt_type, "abandoned")
                raise

        return SecurityContext(
            session_factory,
            email,
            client,
            device,
            attempt_type,
            current_attempts=lock_status.attempts,
        )


class _UnavailableSessionFactory:
    """Stand-in when no session factory exists at all; every write fails and is logged."""

    def __call__(self) -> AsyncSession:
        raise InfrastructureError("Database session factory is not initialized")


guard = BruteForceGuard()


def get_brute_force_guard() -> BruteForceGuard:
    """FastAPI dependency; overridable in tests."""
    return guard
