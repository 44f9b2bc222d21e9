"""
Logout operations for the AuctionZ session client.

Every operation returns a LogoutResult and never raises. Local state is
cleared even when the API cannot be reached.
"""

import logging
from typing import Optional

from auctionz_shared.interfaces import IAuthGateway, IRouter, IPlatformAccess
from auctionz_shared.logging_config import AuditLogger
from auctionz_shared.models import LogoutOptions, LogoutResult
from auctionz_client.auth.token_storage import TokenStore
from auctionz_client.session.navigation import LOGIN_PATH, navigate

logger = logging.getLogger(__name__)

CONFIRM_LOGOUT = "Are you sure you want to logout?"
CONFIRM_LOGOUT_ALL = (
    "Are you sure you want to logout from all devices? "
    "This will end your session on all devices including mobile apps."
)
CONFIRM_END_SESSION = "Are you sure you want to end this session?"


class LogoutService:
    """Current-session, all-device, named-session and forced logout."""

    def __init__(
        self,
        token_store: TokenStore,
        gateway: IAuthGateway,
        platform: IPlatformAccess,
        router: Optional[IRouter] = None,
        auth_context=None,
        lifecycle=None
    ):
        self.token_store = token_store
        self.gateway = gateway
        self.platform = platform
        self.router = router
        self.auth_context = auth_context
        self.lifecycle = lifecycle
        self.audit = AuditLogger()

    async def _confirm(self, message: str) -> bool:
        try:
            return bool(await self.platform.confirm(message))
        except Exception as e:
            logger.warning(f"Confirmation prompt failed: {e}")
            return False

    def _clear_local_session(self) -> None:
        try:
            if not self.token_store.clear():
                logger.warning("Stored credential could not be cleared")
            if self.auth_context is not None:
                self.auth_context.clear_user()
            if self.lifecycle is not None:
                self.lifecycle.mark_logged_out()
        except Exception as e:
            logger.error(f"Failed to clear local session: {e}")

    async def clear_all_application_data(self) -> None:
        """Wipe local storage, session storage, caches and worker registrations."""
        try:
            self.platform.local_storage.clear()
        except Exception as e:
            logger.warning(f"Failed to clear local storage: {e}")

        try:
            self.platform.session_storage.clear()
        except Exception as e:
            logger.warning(f"Failed to clear session storage: {e}")

        caches = self.platform.caches
        if caches is not None:
            try:
                for name in await caches.keys():
                    await caches.delete(name)
            except Exception as e:
                logger.warning(f"Failed to clear caches: {e}")

        workers = self.platform.workers
        if workers is not None:
            try:
                for registration in await workers.get_registrations():
                    await registration.unregister()
            except Exception as e:
                logger.warning(f"Failed to unregister workers: {e}")

    async def logout_current_session(self, options: Optional[LogoutOptions] = None) -> LogoutResult:
        """
        End the current session.

        Args:
            options: Confirmation defaults off; redirect defaults to /login

        Returns:
            success reports whether the API accepted the logout
        """
        options = options or LogoutOptions()
        return await self._logout_current(options, bool(options.show_confirmation))

    async def _logout_current(self, options: LogoutOptions, ask: bool) -> LogoutResult:
        if ask and not await self._confirm(CONFIRM_LOGOUT):
            return LogoutResult(False, "Logout cancelled", False)

        if options.reason:
            logger.info(f"Logout reason: {options.reason}")

        session_id = self.token_store.get_session_id()
        remote_ok = True
        try:
            if session_id:
                await self.gateway.logout(session_id)
        except Exception as e:
            logger.error(f"Logout error: {e}")
            remote_ok = False

        if options.clear_all_data:
            await self.clear_all_application_data()
        self._clear_local_session()

        await navigate(self.router, self.platform, options.redirect_to or LOGIN_PATH)
        self.audit.log_logout("current", session_id, success=remote_ok, reason=options.reason)

        if remote_ok:
            return LogoutResult(True, "Logged out successfully", True)
        return LogoutResult(False, "Logout completed with errors", True)

    async def logout_all_devices(self, options: Optional[LogoutOptions] = None) -> LogoutResult:
        """End every session of the user; confirmation defaults on."""
        options = options or LogoutOptions()

        if options.show_confirmation is not False and not await self._confirm(CONFIRM_LOGOUT_ALL):
            return LogoutResult(False, "Logout cancelled", False)

        if options.reason:
            logger.info(f"Logout all reason: {options.reason}")

        session_id = self.token_store.get_session_id()
        remote_ok = True
        try:
            await self.gateway.logout_all()
        except Exception as e:
            logger.error(f"Logout all error: {e}")
            remote_ok = False

        await self.clear_all_application_data()
        self._clear_local_session()

        await navigate(self.router, self.platform, options.redirect_to or LOGIN_PATH)
        self.audit.log_logout("all_devices", session_id, success=remote_ok, reason=options.reason)

        if remote_ok:
            return LogoutResult(True, "Logged out from all devices successfully", True)
        return LogoutResult(False, "Logout from all devices completed with errors", True)

    async def logout_session(self, session_id: str, options: Optional[LogoutOptions] = None) -> LogoutResult:
        """
        End one named session.

        Revoking another device's session leaves the local session intact.
        Naming the current session performs a current-session logout.
        """
        options = options or LogoutOptions()

        if options.show_confirmation is not False and not await self._confirm(CONFIRM_END_SESSION):
            return LogoutResult(False, "Session logout cancelled", False)

        if session_id == self.token_store.get_session_id():
            return await self._logout_current(options, ask=False)

        try:
            await self.gateway.revoke_session(session_id)
        except Exception as e:
            logger.error(f"Session logout error: {e}")
            self.audit.log_logout("session", session_id, success=False, reason=options.reason)
            return LogoutResult(False, "Failed to revoke session", False)

        self.audit.log_logout("session", session_id, success=True, reason=options.reason)
        return LogoutResult(True, "Session revoked successfully", False)

    async def force_logout(self, reason: Optional[str] = None) -> LogoutResult:
        """Clear everything locally without contacting the API."""
        logger.warning(f"Force logout triggered: {reason or 'No reason provided'}")
        session_id = self.token_store.get_session_id()

        await self.clear_all_application_data()
        self._clear_local_session()

        await navigate(self.router, self.platform, LOGIN_PATH)
        self.audit.log_logout("force", session_id, reason=reason)
        return LogoutResult(True, "Force logout completed", True)

    def is_logged_in(self) -> bool:
        if self.auth_context is not None:
            return self.auth_context.is_authenticated
        return self.token_store.is_present()
