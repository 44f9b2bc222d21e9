"""
Session validation for the AuctionZ session client.

A validation run checks the local credential, renews the access token when
it is about to expire, and reconciles the stored session id against the
server's session records. Runs never overlap and never raise; every outcome
is reported as a ValidationResult.
"""

import time
import logging
from datetime import datetime, timezone
from typing import Optional, Callable, Awaitable

from jose import jwt, JWTError

from auctionz_shared.exceptions import AuctionzError, ErrorCode, NetworkError, TokenRefreshFailed
from auctionz_shared.interfaces import IAuthGateway
from auctionz_shared.logging_config import AuditLogger
from auctionz_shared.models import LifecycleConfig, ValidationPhase, ValidationResult
from auctionz_client.api_client import ServerError
from auctionz_client.auth.refresh_coordinator import RefreshCoordinator
from auctionz_client.auth.token_storage import TokenStore

logger = logging.getLogger(__name__)

InvalidationHandler = Callable[[ValidationResult], Awaitable[None]]


class SessionValidator:
    """
    Single-flight session validation.

    Failing runs call the invalidation handler at most once, gated by the
    auto-logout flag of the failure class.
    """

    def __init__(
        self,
        token_store: TokenStore,
        refresh_coordinator: RefreshCoordinator,
        gateway: IAuthGateway,
        config: Optional[LifecycleConfig] = None,
        is_authenticated: Optional[Callable[[], bool]] = None,
        on_invalid: Optional[InvalidationHandler] = None
    ):
        self.token_store = token_store
        self.refresh_coordinator = refresh_coordinator
        self.gateway = gateway
        self.config = config or LifecycleConfig()
        self.is_authenticated = is_authenticated or token_store.is_present
        self.on_invalid = on_invalid
        self.audit = AuditLogger()

        self.phase = ValidationPhase.IDLE
        self._in_progress = False

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def token_needs_refresh(self, access_token: str) -> bool:
        """
        Check whether the access token expires within the lookahead window.

        A token that cannot be decoded is treated as expired. A token without
        an exp claim never needs a refresh.
        """
        try:
            claims = jwt.get_unverified_claims(access_token)
        except (JWTError, ValueError) as e:
            logger.warning(f"Failed to parse access token: {e}")
            return True

        exp = claims.get('exp')
        if exp is None:
            return False
        try:
            exp = float(exp)
        except (TypeError, ValueError):
            logger.warning(f"Access token has a malformed exp claim: {exp!r}")
            return True

        return time.time() >= exp - self.config.token_refresh_lookahead

    def _should_invalidate(self, result: ValidationResult) -> bool:
        if result.error_code == ErrorCode.NETWORK_ERROR:
            return self.config.auto_logout_on_network_error
        if result.is_expired:
            return self.config.auto_logout_on_expiry
        return self.config.auto_logout_on_invalid_session

    async def _fail(
        self,
        result: ValidationResult,
        on_invalid: Optional[InvalidationHandler],
        session_id: Optional[str] = None
    ) -> ValidationResult:
        self.phase = ValidationPhase.INVALID
        logger.info(f"Session validation failed: {result.reason}")
        self.audit.log_session_validation(
            session_id, "expired" if result.is_expired else "invalid", result.reason
        )

        if on_invalid is None or not self._should_invalidate(result):
            return result

        try:
            await on_invalid(result)
        except Exception as e:
            logger.error(f"Error handling invalid session: {e}")
        return result

    async def validate(self, on_invalid: Optional[InvalidationHandler] = None) -> ValidationResult:
        """
        Run one validation.

        Args:
            on_invalid: Invalidation handler for this run, overriding the
                one given at construction

        Returns:
            The classification of the session
        """
        if self._in_progress:
            logger.debug("Session validation already in progress")
            return ValidationResult.invalid("Validation in progress", ErrorCode.VALIDATION_BUSY)

        self._in_progress = True
        handler = on_invalid or self.on_invalid
        try:
            return await self._run(handler)
        except Exception as e:
            logger.error(f"Session validation error: {e}")
            self.phase = ValidationPhase.INVALID
            return ValidationResult.invalid("Validation error", ErrorCode.INTERNAL_UNEXPECTED_ERROR)
        finally:
            self._in_progress = False

    async def _run(self, on_invalid: Optional[InvalidationHandler]) -> ValidationResult:
        self.phase = ValidationPhase.CHECKING
        logger.debug("Starting session validation")

        if not self.is_authenticated():
            logger.debug("User not authenticated")
            self.phase = ValidationPhase.INVALID
            return ValidationResult.invalid("Not authenticated", ErrorCode.NOT_AUTHENTICATED)

        credential = self.token_store.get()
        if credential is None:
            return await self._fail(
                ValidationResult.invalid("Missing tokens", ErrorCode.MISSING_CREDENTIAL), on_invalid
            )
        session_id = credential.session_id

        if self.token_needs_refresh(credential.access_token):
            self.phase = ValidationPhase.REFRESHING
            logger.info("Access token expiring, attempting refresh")
            try:
                await self.refresh_coordinator.refresh()
            except TokenRefreshFailed as e:
                logger.warning(f"Token refresh failed: {e.message}")
                return await self._fail(
                    ValidationResult.expired("Token refresh failed", ErrorCode.TOKEN_REFRESH_FAILED),
                    on_invalid, session_id
                )

        self.phase = ValidationPhase.RECONCILING
        try:
            sessions = await self.gateway.get_sessions()
        except Exception as e:
            # Only transport failures and 5xx count as network errors
            if isinstance(e, AuctionzError) and not isinstance(e, (NetworkError, ServerError)):
                logger.warning(f"Server rejected session lookup: {e.message}")
                return await self._fail(
                    ValidationResult.invalid("Session rejected", e.error_code), on_invalid, session_id
                )
            logger.warning(f"Server validation failed: {e}")
            return await self._fail(
                ValidationResult.invalid("Network error", ErrorCode.NETWORK_ERROR), on_invalid, session_id
            )

        current = next((session for session in sessions if session.id == session_id), None)
        if current is None:
            return await self._fail(
                ValidationResult.invalid("Session not found", ErrorCode.SESSION_NOT_FOUND), on_invalid, session_id
            )

        if not current.is_active:
            return await self._fail(
                ValidationResult.invalid("Session inactive", ErrorCode.SESSION_INACTIVE), on_invalid, session_id
            )

        time_until_expiry = (current.expires_at - datetime.now(timezone.utc)).total_seconds()
        if time_until_expiry <= 0:
            return await self._fail(
                ValidationResult.expired("Session expired", ErrorCode.SESSION_EXPIRED, session=current),
                on_invalid, session_id
            )

        expiring_soon = time_until_expiry <= self.config.warning_time_before_expiry
        if expiring_soon:
            logger.info(f"Session {session_id} expires in {int(time_until_expiry)} seconds")

        self.phase = ValidationPhase.DONE
        self.audit.log_session_validation(session_id, "valid")
        logger.debug("Session validation successful")
        return ValidationResult.valid(current, expiring_soon=expiring_soon)
