"""
HTTP API client for the AuctionZ session client.

This module provides the authentication gateway used by the session
lifecycle: login and registration, token refresh, logout, session listing
and revocation, with transport-level retry on network failures.
"""

import asyncio
import json
import logging
import random
from typing import Optional, Dict, Any, List

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from auctionz_shared.exceptions import (
    AuctionzError, AuthenticationError, NetworkError, ErrorCode, ErrorSeverity, RecoveryAction
)
from auctionz_shared.interfaces import IAuthGateway
from auctionz_shared.models import Session

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://localhost:5000/api"
DEFAULT_TIMEOUT = 10.0


class APIClientError(AuctionzError):
    """Request rejected by the API with a client error status."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.API_REQUEST_FAILED,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        context = kwargs.pop('context', None) or {}
        if status_code is not None:
            context['status_code'] = status_code
        kwargs.setdefault('recovery_actions', [RecoveryAction.USER_INTERVENTION])

        super().__init__(message=message, error_code=error_code, context=context, **kwargs)
        self.status_code = status_code
        self.response_data = response_data or {}


class ServerError(APIClientError):
    """Server-side errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('recovery_actions', [RecoveryAction.RETRY_WITH_BACKOFF])
        super().__init__(message, ErrorCode.API_SERVER_ERROR, status_code=status_code, **kwargs)


_STATUS_ERROR_CODES = {
    400: ErrorCode.API_VALIDATION_FAILED,
    403: ErrorCode.AUTH_ACCESS_DENIED,
    404: ErrorCode.API_NOT_FOUND,
    422: ErrorCode.API_VALIDATION_FAILED,
    429: ErrorCode.API_RATE_LIMITED,
}


class RetryConfig:
    """Configuration for retry logic."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


class AuthGatewayClient(IAuthGateway):
    """
    HTTP client for the AuctionZ authentication endpoints.

    The bearer token for ordinary calls is read from the token store on
    every request, so a refreshed or cleared credential takes effect
    immediately.
    """

    def __init__(
        self,
        server_url: str = DEFAULT_SERVER_URL,
        timeout: float = DEFAULT_TIMEOUT,
        retry_config: Optional[RetryConfig] = None,
        token_store=None
    ):
        self.server_url = server_url.rstrip('/')
        self.timeout = ClientTimeout(total=timeout)
        self.retry_config = retry_config or RetryConfig()
        self.token_store = token_store

        self._session: Optional[ClientSession] = None
        self._is_offline = False

        logger.info(f"Gateway client initialized for server: {self.server_url}")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
                enable_cleanup_closed=True
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={
                    'User-Agent': 'AuctionzSessionClient/1.0',
                    'Content-Type': 'application/json'
                }
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_auth_headers(self) -> Dict[str, str]:
        headers = {}
        token = self.token_store.get_access_token() if self.token_store else None
        if token:
            headers['Authorization'] = f'Bearer {token}'
        return headers

    def _url(self, endpoint: str) -> str:
        return f"{self.server_url}/{endpoint.lstrip('/')}"

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
        headers: Optional[Dict[str, str]] = None,
        retry: bool = True
    ) -> Dict[str, Any]:
        """
        Make HTTP request with retry logic and error handling.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint path relative to the server URL
            data: Request body data
            authenticated: Whether to include the stored bearer token
            headers: Extra request headers
            retry: Whether to retry on network failure

        Returns:
            Response data as dictionary

        Raises:
            AuthenticationError: On HTTP 401
            ServerError: On HTTP 5xx
            APIClientError: On other error statuses
            NetworkError: When the retry budget is exhausted
        """
        await self._ensure_session()

        url = self._url(endpoint)
        request_headers = self._get_auth_headers() if authenticated else {}
        if headers:
            request_headers.update(headers)

        max_attempts = (self.retry_config.max_retries if retry else 0) + 1
        attempt = 0
        last_exception = None

        while attempt < max_attempts:
            try:
                logger.debug(f"Making {method} request to {url} (attempt {attempt + 1})")

                async with self._session.request(
                    method=method,
                    url=url,
                    json=data,
                    headers=request_headers
                ) as response:
                    self._is_offline = False

                    if 200 <= response.status < 300:
                        if response.status == 204:
                            return {}
                        try:
                            return await response.json(content_type=None) or {}
                        except json.JSONDecodeError:
                            return {}

                    error_data = await self._get_error_response(response)
                    raise self._error_for_status(response.status, error_data)

            except (ClientError, asyncio.TimeoutError, OSError) as e:
                last_exception = e
                logger.warning(f"Network error on attempt {attempt + 1}: {e}")

                self._is_offline = True

                attempt += 1
                if attempt >= max_attempts:
                    break

                delay = min(
                    self.retry_config.base_delay * (self.retry_config.exponential_base ** (attempt - 1)),
                    self.retry_config.max_delay
                )
                if self.retry_config.jitter:
                    delay *= (0.5 + random.random() * 0.5)

                logger.info(f"Retrying in {delay:.1f} seconds...")
                await asyncio.sleep(delay)

        error_code = ErrorCode.NETWORK_TIMEOUT if isinstance(last_exception, asyncio.TimeoutError) \
            else ErrorCode.NETWORK_ERROR
        raise NetworkError(
            f"Network request failed after {max_attempts} attempts: {last_exception}",
            error_code=error_code,
            context={'url': url, 'method': method},
            cause=last_exception
        )

    async def _get_error_response(self, response) -> Dict[str, Any]:
        """Extract error information from response."""
        try:
            data = await response.json(content_type=None)
            if isinstance(data, dict):
                return data
            return {"error": str(data)}
        except (json.JSONDecodeError, ClientError, ValueError):
            return {"error": await response.text() or "Unknown error"}

    @staticmethod
    def _error_detail(error_data: Dict[str, Any], default: str) -> str:
        return error_data.get('error') or error_data.get('message') or error_data.get('detail') or default

    def _error_for_status(self, status: int, error_data: Dict[str, Any]) -> AuctionzError:
        if status == 401:
            return AuthenticationError(
                f"Authentication failed: {self._error_detail(error_data, 'Unauthorized')}",
                context={'status_code': status}
            )
        if status >= 500:
            return ServerError(
                f"Server error ({status}): {self._error_detail(error_data, 'Internal server error')}",
                status_code=status,
                response_data=error_data
            )
        return APIClientError(
            f"Request failed ({status}): {self._error_detail(error_data, 'Unknown error')}",
            _STATUS_ERROR_CODES.get(status, ErrorCode.API_REQUEST_FAILED),
            status_code=status,
            response_data=error_data
        )

    def is_offline(self) -> bool:
        """Check if the last request failed at the network level."""
        return self._is_offline

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """
        Authenticate with email and password.

        Returns:
            Payload with user, access_token, refresh_token and session_id

        Raises:
            AuthenticationError: When the credentials are rejected
        """
        logger.info(f"Logging in as {email}")
        try:
            return await self._make_request(
                'POST', '/auth/login',
                data={'email': email, 'password': password},
                authenticated=False
            )
        except AuthenticationError as e:
            raise AuthenticationError(
                e.message,
                error_code=ErrorCode.AUTH_INVALID_CREDENTIALS,
                user_message="Login failed. Please check your credentials.",
                cause=e
            )

    async def register(self, data: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"Registering account {data.get('email')}")
        return await self._make_request('POST', '/auth/register', data=data, authenticated=False)

    async def refresh(self, refresh_token: str) -> str:
        """
        Exchange the refresh token for a new access token.

        Args:
            refresh_token: The stored refresh token, sent as bearer

        Returns:
            The new access token
        """
        response = await self._make_request(
            'POST', '/auth/refresh',
            authenticated=False,
            headers={'Authorization': f'Bearer {refresh_token}'}
        )
        access_token = response.get('access_token')
        if not access_token:
            raise APIClientError("Refresh response did not contain an access token", response_data=response)
        return access_token

    async def logout(self, session_id: str) -> None:
        await self._make_request('POST', '/auth/logout', data={'session_id': session_id}, retry=False)

    async def logout_all(self) -> None:
        await self._make_request('POST', '/auth/logout-all', retry=False)

    async def get_sessions(self) -> List[Session]:
        """Fetch the server-side session records of the current user."""
        response = await self._make_request('GET', '/auth/sessions')
        sessions = []
        for entry in response.get('sessions') or []:
            try:
                sessions.append(Session.from_dict(entry))
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed session record: {e}")
        return sessions

    async def revoke_session(self, session_id: str) -> None:
        await self._make_request('DELETE', f'/auth/sessions/{session_id}', retry=False)

    async def get_profile(self) -> Dict[str, Any]:
        return await self._make_request('GET', '/auth/profile')
