"""
Core interfaces for the AuctionZ session client.

This module defines the abstract interfaces for the external collaborators
of the session lifecycle: key/value storage, the authentication gateway,
the router and the platform facilities touched during logout.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any, Iterable

from .models import Session, RouteLocation


class IKeyValueStorage(ABC):
    """Interface for a string key/value store."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    def set_items(self, items: Dict[str, str]) -> None:
        """Write several keys as one operation."""
        pass

    @abstractmethod
    def remove_items(self, keys: Iterable[str]) -> None:
        """Remove several keys as one operation."""
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        """List stored keys."""
        pass

    def set_item(self, key: str, value: str) -> None:
        self.set_items({key: value})

    def remove_item(self, key: str) -> None:
        self.remove_items([key])

    def clear(self) -> None:
        """Remove every stored key."""
        self.remove_items(self.keys())


class IAuthGateway(ABC):
    """Interface for the authentication HTTP boundary."""

    @abstractmethod
    async def login(self, email: str, password: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def register(self, data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def refresh(self, refresh_token: str) -> str:
        """Exchange the refresh token for a new access token."""
        pass

    @abstractmethod
    async def logout(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def logout_all(self) -> None:
        pass

    @abstractmethod
    async def get_sessions(self) -> List[Session]:
        pass

    @abstractmethod
    async def revoke_session(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def get_profile(self) -> Dict[str, Any]:
        pass


class IRouter(ABC):
    """Interface for the in-app router handle."""

    @property
    @abstractmethod
    def current_route(self) -> RouteLocation:
        pass

    @abstractmethod
    async def push(self, path: str) -> None:
        """Navigate to path; may raise when navigation is rejected."""
        pass


class IWorkerRegistration(ABC):
    """A registered background worker."""

    @abstractmethod
    async def unregister(self) -> bool:
        pass


class ICacheStorage(ABC):
    """Interface for named cache entries."""

    @abstractmethod
    async def keys(self) -> List[str]:
        pass

    @abstractmethod
    async def delete(self, name: str) -> bool:
        pass


class IWorkerRegistry(ABC):
    """Interface for background worker registrations."""

    @abstractmethod
    async def get_registrations(self) -> List[IWorkerRegistration]:
        pass


class IPlatformAccess(ABC):
    """Platform facilities used by the lifecycle and logout logic."""

    @property
    @abstractmethod
    def local_storage(self) -> IKeyValueStorage:
        pass

    @property
    @abstractmethod
    def session_storage(self) -> IKeyValueStorage:
        pass

    @property
    @abstractmethod
    def caches(self) -> Optional[ICacheStorage]:
        pass

    @property
    @abstractmethod
    def workers(self) -> Optional[IWorkerRegistry]:
        pass

    @abstractmethod
    def hard_navigate(self, path: str) -> None:
        """Navigate without the router; must not raise."""
        pass

    @abstractmethod
    async def confirm(self, message: str) -> bool:
        """Ask the user a yes/no question."""
        pass
