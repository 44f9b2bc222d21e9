"""
Shared fixtures and fakes for the session client tests.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any

import pytest
from jose import jwt

from auctionz_shared.exceptions import NetworkError
from auctionz_shared.interfaces import (
    IAuthGateway, IRouter, IPlatformAccess, ICacheStorage, IWorkerRegistry, IWorkerRegistration
)
from auctionz_shared.models import Credential, Session, User, RouteLocation
from auctionz_client.auth.auth_context import AuthContext
from auctionz_client.auth.refresh_coordinator import RefreshCoordinator
from auctionz_client.auth.token_storage import MemoryStorage, TokenStore

SESSION_ID = "sess-42"


def make_token(expires_in: Optional[float] = 3600, **claims) -> str:
    """Create a signed access token expiring expires_in seconds from now."""
    payload = {"sub": "7", **claims}
    if expires_in is not None:
        payload["exp"] = int(time.time() + expires_in)
    return jwt.encode(payload, "test-secret", algorithm="HS256")


def make_session(
    session_id: str = SESSION_ID,
    is_active: bool = True,
    expires_in: float = 7 * 24 * 3600
) -> Session:
    now = datetime.now(timezone.utc)
    return Session(
        id=session_id,
        user_id=7,
        device_info="pytest",
        ip_address="127.0.0.1",
        is_active=is_active,
        expires_at=now + timedelta(seconds=expires_in),
        created_at=now - timedelta(hours=1),
        last_used_at=now
    )


def make_credential(access_token: Optional[str] = None, session_id: str = SESSION_ID) -> Credential:
    return Credential(access_token or make_token(), "refresh-token-1", session_id)


class FakeGateway(IAuthGateway):
    """In-memory gateway that records calls."""

    def __init__(self, sessions: Optional[List[Session]] = None):
        self.sessions = sessions if sessions is not None else [make_session()]
        self.new_access_token = make_token(3600)
        self.refresh_error: Optional[Exception] = None
        self.sessions_error: Optional[Exception] = None
        self.logout_error: Optional[Exception] = None
        self.logout_all_error: Optional[Exception] = None
        self.revoke_error: Optional[Exception] = None
        self.profile: Dict[str, Any] = {"user": {"id": 7, "email": "buyer@example.com", "first_name": "Ada"}}
        self.login_payload: Optional[Dict[str, Any]] = None
        self.refresh_gate: Optional[asyncio.Event] = None

        self.calls: List[tuple] = []

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        self.calls.append(("login", email))
        return self.login_payload

    async def register(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("register", data.get("email")))
        return self.login_payload

    async def refresh(self, refresh_token: str) -> str:
        self.calls.append(("refresh", refresh_token))
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.new_access_token

    async def logout(self, session_id: str) -> None:
        self.calls.append(("logout", session_id))
        if self.logout_error is not None:
            raise self.logout_error

    async def logout_all(self) -> None:
        self.calls.append(("logout_all",))
        if self.logout_all_error is not None:
            raise self.logout_all_error

    async def get_sessions(self) -> List[Session]:
        self.calls.append(("get_sessions",))
        if self.sessions_error is not None:
            raise self.sessions_error
        return list(self.sessions)

    async def revoke_session(self, session_id: str) -> None:
        self.calls.append(("revoke_session", session_id))
        if self.revoke_error is not None:
            raise self.revoke_error

    async def get_profile(self) -> Dict[str, Any]:
        self.calls.append(("get_profile",))
        return self.profile


class FakeRouter(IRouter):
    def __init__(self, path: str = "/", full_path: Optional[str] = None, fail: bool = False):
        self._route = RouteLocation(path=path, full_path=full_path or path)
        self.fail = fail
        self.pushed: List[str] = []

    @property
    def current_route(self) -> RouteLocation:
        return self._route

    async def push(self, path: str) -> None:
        self.pushed.append(path)
        if self.fail:
            raise RuntimeError("navigation rejected")


class FakeCaches(ICacheStorage):
    def __init__(self, names: Optional[List[str]] = None):
        self.names = list(names or [])

    async def keys(self) -> List[str]:
        return list(self.names)

    async def delete(self, name: str) -> bool:
        self.names.remove(name)
        return True


class FakeRegistration(IWorkerRegistration):
    def __init__(self):
        self.unregistered = False

    async def unregister(self) -> bool:
        self.unregistered = True
        return True


class FakeWorkers(IWorkerRegistry):
    def __init__(self, count: int = 0):
        self.registrations = [FakeRegistration() for _ in range(count)]

    async def get_registrations(self) -> List[IWorkerRegistration]:
        return list(self.registrations)


class FakePlatform(IPlatformAccess):
    def __init__(self, local_storage=None, confirm_answer: bool = True):
        self._local = local_storage if local_storage is not None else MemoryStorage()
        self._session = MemoryStorage({"draft": "1"})
        self._caches = FakeCaches(["api-v1", "images"])
        self._workers = FakeWorkers(2)
        self.confirm_answer = confirm_answer
        self.confirm_messages: List[str] = []
        self.hard_navigations: List[str] = []

    @property
    def local_storage(self):
        return self._local

    @property
    def session_storage(self):
        return self._session

    @property
    def caches(self):
        return self._caches

    @property
    def workers(self):
        return self._workers

    def hard_navigate(self, path: str) -> None:
        self.hard_navigations.append(path)

    async def confirm(self, message: str) -> bool:
        self.confirm_messages.append(message)
        return self.confirm_answer


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def token_store(storage):
    store = TokenStore(storage)
    store.set(make_credential())
    return store


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def coordinator(token_store, gateway):
    return RefreshCoordinator(token_store, gateway)


@pytest.fixture
def auth_context(token_store, gateway):
    context = AuthContext(token_store, gateway)
    context.restore()
    context.user = User.from_dict({"id": 7, "email": "buyer@example.com"})
    return context


@pytest.fixture
def platform(storage):
    return FakePlatform(local_storage=storage)


@pytest.fixture
def network_error():
    return NetworkError("connection refused")
