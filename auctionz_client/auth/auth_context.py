"""
Authentication context for the AuctionZ session client.

Holds the signed-in user and the current access token, and performs login,
registration, profile loading and logout against the gateway.
"""

import logging
from typing import Optional, Dict, Any, Callable, List

from auctionz_shared.exceptions import AuctionzError, AuthenticationError, ErrorCode
from auctionz_shared.interfaces import IAuthGateway
from auctionz_shared.logging_config import AuditLogger
from auctionz_shared.models import Credential, User
from auctionz_client.auth.token_storage import TokenStore

logger = logging.getLogger(__name__)


class AuthContext:
    """
    Current authentication state.

    The context counts as authenticated only while both a user profile and
    an access token are held.
    """

    def __init__(self, token_store: TokenStore, gateway: IAuthGateway):
        self.token_store = token_store
        self.gateway = gateway
        self.audit = AuditLogger()

        self.user: Optional[User] = None
        self.token: Optional[str] = None
        self.loading = False
        self.last_error: Optional[str] = None

        self._auth_callbacks: List[Callable[[bool], None]] = []

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token) and self.user is not None

    def add_auth_callback(self, callback: Callable[[bool], None]) -> None:
        """
        Add callback for authentication state changes.

        Args:
            callback: Function called with authentication status (bool)
        """
        self._auth_callbacks.append(callback)

    def _notify_auth_change(self, is_authenticated: bool) -> None:
        for callback in self._auth_callbacks:
            try:
                callback(is_authenticated)
            except Exception as e:
                logger.error(f"Error in auth callback: {e}")

    def restore(self) -> bool:
        """Pick up the access token of a stored credential."""
        self.token = self.token_store.get_access_token()
        return self.token is not None

    def on_token_refreshed(self, new_token: str) -> None:
        self.token = new_token

    async def _authenticate(self, request, email: str, failure_message: str) -> User:
        self.loading = True
        self.last_error = None
        try:
            payload = await request
            credential = Credential.from_mapping(payload)
            if credential is None:
                raise AuthenticationError(
                    "Authentication response did not contain a complete credential",
                    error_code=ErrorCode.AUTH_INVALID_CREDENTIALS
                )

            user = User.from_dict(payload.get('user') or {})
            self.token_store.set(credential)
            self.user = user
            self.token = credential.access_token

            self.audit.log_authentication(email, user_id=user.id, session_id=credential.session_id)
            self._notify_auth_change(True)
            logger.info(f"Authenticated as {email}")
            return user

        except AuctionzError as e:
            response_data = getattr(e, 'response_data', None) or {}
            self.last_error = response_data.get('error') or failure_message
            logger.error(f"Authentication failed for {email}: {e.message}")
            self.audit.log_authentication(email, success=False, failure_reason=e.message)
            raise
        finally:
            self.loading = False

    async def login(self, email: str, password: str) -> User:
        """
        Log in with email and password and store the issued credential.

        Raises:
            AuthenticationError: When the credentials are rejected
            NetworkError: When the API cannot be reached
        """
        return await self._authenticate(
            self.gateway.login(email, password),
            email,
            "Login failed. Please check your credentials."
        )

    async def register(self, data: Dict[str, Any]) -> User:
        return await self._authenticate(
            self.gateway.register(data),
            data.get('email', ''),
            "Registration failed. Please try again."
        )

    async def fetch_user(self) -> Optional[User]:
        """
        Load the profile of the stored session.

        Local state is cleared when the profile cannot be loaded.
        """
        if not self.token_store.is_present():
            return None

        try:
            payload = await self.gateway.get_profile()
            self.user = User.from_dict(payload.get('user') or {})
            self.token = self.token_store.get_access_token()
            self._notify_auth_change(self.is_authenticated)
            return self.user
        except Exception as e:
            logger.error(f"Failed to fetch user profile: {e}")
            await self.logout()
            raise

    async def logout(self, session_id: Optional[str] = None) -> None:
        """End the session remotely when possible; local state is always cleared."""
        try:
            current_session_id = session_id or self.token_store.get_session_id()
            if current_session_id:
                await self.gateway.logout(current_session_id)
        except Exception as e:
            logger.error(f"Logout error: {e}")
        finally:
            self.token_store.clear()
            self.clear_user()

    async def logout_all(self) -> None:
        try:
            await self.gateway.logout_all()
        except Exception as e:
            logger.error(f"Logout all error: {e}")
        finally:
            self.token_store.clear()
            self.clear_user()

    def clear_user(self) -> None:
        was_authenticated = self.is_authenticated
        self.user = None
        self.token = None
        if was_authenticated:
            self._notify_auth_change(False)
