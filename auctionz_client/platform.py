"""
Platform access for the AuctionZ session client.

This module provides the environment event registry (focus, visibility,
unload) and the desktop implementation of the platform facilities touched
by the session lifecycle: local and session storage, on-disk caches,
background worker registrations, hard navigation and user confirmation.
"""

import os
import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional, Dict, List, Callable, Any

from auctionz_shared.interfaces import (
    IPlatformAccess, IKeyValueStorage, ICacheStorage, IWorkerRegistry, IWorkerRegistration
)
from auctionz_client.auth.token_storage import MemoryStorage, create_default_storage

logger = logging.getLogger(__name__)


class EnvironmentEvents:
    """Listener registry for application environment events."""

    FOCUS = "focus"
    VISIBILITY_CHANGE = "visibilitychange"
    BEFORE_UNLOAD = "beforeunload"

    def __init__(self):
        self._listeners: Dict[str, List[Callable[[], Any]]] = {}
        self.hidden = False

    def add_listener(self, event: str, callback: Callable[[], Any]) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def remove_listener(self, event: str, callback: Callable[[], Any]) -> None:
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(listeners) for listeners in self._listeners.values())

    def emit(self, event: str) -> None:
        """Call every listener registered for event."""
        for callback in list(self._listeners.get(event, [])):
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in {event} listener: {e}")

    def set_hidden(self, hidden: bool) -> None:
        """Update visibility and emit a visibility change."""
        self.hidden = hidden
        self.emit(self.VISIBILITY_CHANGE)


class DirectoryCacheStorage(ICacheStorage):
    """Named caches stored as entries of one directory."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)

    async def keys(self) -> List[str]:
        if not self.cache_dir.is_dir():
            return []
        return sorted(entry.name for entry in self.cache_dir.iterdir())

    async def delete(self, name: str) -> bool:
        target = self.cache_dir / name
        if not target.exists():
            return False
        if target.is_dir():
            shutil.rmtree(target)
        else:
            target.unlink()
        logger.debug(f"Deleted cache {name}")
        return True


class WorkerRegistration(IWorkerRegistration):
    """A background worker registered with the in-process registry."""

    def __init__(self, registry: "InProcessWorkerRegistry", name: str,
                 on_unregister: Optional[Callable[[], Any]] = None):
        self.registry = registry
        self.name = name
        self._on_unregister = on_unregister

    async def unregister(self) -> bool:
        if not self.registry.remove(self):
            return False
        if self._on_unregister:
            result = self._on_unregister()
            if asyncio.iscoroutine(result):
                await result
        logger.debug(f"Unregistered worker {self.name}")
        return True


class InProcessWorkerRegistry(IWorkerRegistry):
    """Registry of background workers running in this process."""

    def __init__(self):
        self._registrations: List[WorkerRegistration] = []

    def register(self, name: str, on_unregister: Optional[Callable[[], Any]] = None) -> WorkerRegistration:
        registration = WorkerRegistration(self, name, on_unregister)
        self._registrations.append(registration)
        return registration

    def remove(self, registration: WorkerRegistration) -> bool:
        if registration in self._registrations:
            self._registrations.remove(registration)
            return True
        return False

    async def get_registrations(self) -> List[IWorkerRegistration]:
        return list(self._registrations)


def _default_cache_dir() -> Path:
    xdg_cache = os.environ.get('XDG_CACHE_HOME')
    base = Path(xdg_cache) if xdg_cache else Path.home() / '.cache'
    return base / 'auctionz'


class DesktopPlatform(IPlatformAccess):
    """
    Platform facilities for a desktop or terminal process.

    Hard navigation has no browser to drive; the target is recorded as
    the current location and reported to navigation listeners.
    """

    def __init__(
        self,
        local_storage: Optional[IKeyValueStorage] = None,
        session_storage: Optional[IKeyValueStorage] = None,
        cache_dir: Optional[Path] = None,
        worker_registry: Optional[InProcessWorkerRegistry] = None,
        confirm_callback: Optional[Callable[[str], bool]] = None
    ):
        self._local_storage = local_storage if local_storage is not None else create_default_storage()
        self._session_storage = session_storage if session_storage is not None else MemoryStorage()
        self._caches = DirectoryCacheStorage(cache_dir or _default_cache_dir())
        self._workers = worker_registry or InProcessWorkerRegistry()
        self._confirm_callback = confirm_callback or self._prompt

        self.location = "/"
        self._navigation_callbacks: List[Callable[[str], None]] = []

    @property
    def local_storage(self) -> IKeyValueStorage:
        return self._local_storage

    @property
    def session_storage(self) -> IKeyValueStorage:
        return self._session_storage

    @property
    def caches(self) -> Optional[ICacheStorage]:
        return self._caches

    @property
    def workers(self) -> Optional[IWorkerRegistry]:
        return self._workers

    def add_navigation_callback(self, callback: Callable[[str], None]) -> None:
        self._navigation_callbacks.append(callback)

    def hard_navigate(self, path: str) -> None:
        logger.info(f"Navigating to {path}")
        self.location = path
        for callback in self._navigation_callbacks:
            try:
                callback(path)
            except Exception as e:
                logger.error(f"Error in navigation callback: {e}")

    @staticmethod
    def _prompt(message: str) -> bool:
        try:
            answer = input(f"{message} [y/N] ")
        except EOFError:
            return False
        return answer.strip().lower() in ('y', 'yes')

    async def confirm(self, message: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._confirm_callback, message)
