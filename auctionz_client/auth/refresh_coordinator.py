"""
Access token refresh coordination for the AuctionZ session client.

At most one refresh request is in flight at any moment. Every caller that
arrives while a refresh is running awaits the same task and observes the
same new token or the same failure.
"""

import asyncio
import logging
from typing import Optional, Callable, List

from auctionz_shared.exceptions import TokenRefreshFailed, TokenStorageError, AuctionzError
from auctionz_shared.interfaces import IAuthGateway
from auctionz_shared.logging_config import AuditLogger
from auctionz_client.auth.token_storage import TokenStore

logger = logging.getLogger(__name__)


class RefreshCoordinator:
    """
    Single-flight wrapper around the gateway refresh call.

    On failure the credential is cleared before the error reaches any
    caller, so nobody keeps using a token that can no longer be renewed.
    """

    def __init__(self, token_store: TokenStore, gateway: IAuthGateway):
        self.token_store = token_store
        self.gateway = gateway
        self.audit = AuditLogger()

        self._task: Optional[asyncio.Task] = None
        self._refresh_callbacks: List[Callable[[str], None]] = []

    @property
    def is_refreshing(self) -> bool:
        return self._task is not None

    def add_refresh_callback(self, callback: Callable[[str], None]) -> None:
        """
        Add callback for token refresh events.

        Args:
            callback: Function called with the new access token
        """
        self._refresh_callbacks.append(callback)

    def _notify_token_refresh(self, new_token: str) -> None:
        for callback in self._refresh_callbacks:
            try:
                callback(new_token)
            except Exception as e:
                logger.error(f"Error in token refresh callback: {e}")

    async def refresh(self) -> str:
        """
        Obtain a new access token, joining an in-flight refresh if present.

        Returns:
            The new access token

        Raises:
            TokenRefreshFailed: When the refresh cannot be completed
        """
        task = self._task
        if task is None:
            task = asyncio.ensure_future(self._do_refresh())
            task.add_done_callback(self._consume_result)
            self._task = task
        else:
            logger.debug("Joining in-flight token refresh")

        # A cancelled caller must not cancel the refresh shared by the others
        return await asyncio.shield(task)

    @staticmethod
    def _consume_result(task: asyncio.Task) -> None:
        if not task.cancelled():
            task.exception()

    async def _do_refresh(self) -> str:
        session_id = None
        try:
            credential = self.token_store.get()
            if credential is None:
                raise TokenRefreshFailed("No refresh token available")

            session_id = credential.session_id
            logger.info(f"Refreshing access token for session {session_id}")

            try:
                new_token = await self.gateway.refresh(credential.refresh_token)
            except AuctionzError as e:
                raise TokenRefreshFailed(f"Token refresh rejected: {e.message}", session_id=session_id, cause=e)
            except Exception as e:
                raise TokenRefreshFailed(f"Token refresh failed: {e}", session_id=session_id, cause=e)

            if not new_token:
                raise TokenRefreshFailed("Refresh response did not contain an access token", session_id=session_id)

            try:
                stored = self.token_store.update_access_token(new_token)
            except TokenStorageError as e:
                raise TokenRefreshFailed(
                    f"Failed to store refreshed token: {e.message}", session_id=session_id, cause=e
                )
            if not stored:
                raise TokenRefreshFailed("Credential was cleared during refresh", session_id=session_id)

            self.audit.log_token_refresh(session_id, success=True)
            self._notify_token_refresh(new_token)
            logger.info("Token refresh successful")
            return new_token

        except TokenRefreshFailed as e:
            logger.error(f"Token refresh failed: {e.message}")
            self.token_store.clear()
            self.audit.log_token_refresh(session_id, success=False, error_message=e.message)
            raise
        finally:
            self._task = None
