"""
Session lifecycle orchestration for the AuctionZ session client.

The orchestrator decides when the session is validated (start-up, route
changes, focus, visibility, a fixed interval) and what happens when a run
finds the session unusable: the credential and user are cleared and the
user is redirected to the login page.
"""

import asyncio
import dataclasses
import logging
from datetime import datetime, timezone
from typing import Optional, Callable, List, Set, Tuple, Any

from auctionz_shared.exceptions import ConfigurationError, ErrorCode
from auctionz_shared.interfaces import IAuthGateway, IRouter, IPlatformAccess
from auctionz_shared.logging_config import AuditLogger, AuditEventType
from auctionz_shared.models import LifecycleConfig, LifecycleState, ValidationResult
from auctionz_client.auth.refresh_coordinator import RefreshCoordinator
from auctionz_client.auth.token_storage import TokenStore
from auctionz_client.platform import EnvironmentEvents
from auctionz_client.session.navigation import LOGIN_PATH, login_redirect_path, navigate
from auctionz_client.session.validator import SessionValidator

logger = logging.getLogger(__name__)

# Auth pages never trigger validation on navigation
_AUTH_PATHS = frozenset([LOGIN_PATH, "/register"])


class LifecycleOrchestrator:
    """
    Owns the session lifecycle of one running application.

    Create one instance at start-up and hand it to the parts of the
    application that need it.
    """

    def __init__(
        self,
        token_store: TokenStore,
        refresh_coordinator: RefreshCoordinator,
        gateway: IAuthGateway,
        platform: Optional[IPlatformAccess] = None,
        events: Optional[EnvironmentEvents] = None,
        config: Optional[LifecycleConfig] = None
    ):
        self.token_store = token_store
        self.platform = platform
        self.events = events or EnvironmentEvents()
        self.config = config or LifecycleConfig()
        self.audit = AuditLogger()

        self.router: Optional[IRouter] = None
        self.auth_context = None

        self.validator = SessionValidator(
            token_store,
            refresh_coordinator,
            gateway,
            self.config,
            is_authenticated=self._is_authenticated
        )

        self._state = LifecycleState()
        self._epoch = 0
        self._interval_task: Optional[asyncio.Task] = None
        self._trigger_tasks: Set[asyncio.Task] = set()
        self._registered_listeners: List[Tuple[str, Callable[[], Any]]] = []
        self._subscribers: List[Callable[[LifecycleState], None]] = []

        self._apply_debug_logging()

    def _apply_debug_logging(self) -> None:
        if self.config.enable_debug_logging:
            logging.getLogger('auctionz_client.session').setLevel(logging.DEBUG)

    def _is_authenticated(self) -> bool:
        return self.auth_context is not None and self.auth_context.is_authenticated

    # State

    def get_state(self) -> LifecycleState:
        """Return an immutable snapshot of the lifecycle state."""
        return self._state

    def subscribe(self, callback: Callable[[LifecycleState], None]) -> Callable[[], None]:
        """
        Register a state observer.

        Args:
            callback: Called with the new state after every change

        Returns:
            Function that removes the observer
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _update_state(self, **changes) -> None:
        self._state = dataclasses.replace(self._state, **changes)
        for callback in list(self._subscribers):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in lifecycle state subscriber: {e}")

    # Initialization and teardown

    async def initialize(self, router: Optional[IRouter] = None, auth_context=None) -> None:
        """
        Start listening for validation triggers and validate once.

        Calling it again while initialized does nothing.
        """
        if self._state.is_initialized:
            logger.debug("Session lifecycle already initialized")
            return

        logger.info("Initializing session lifecycle")
        if router is not None:
            self.router = router
        if auth_context is not None:
            self.auth_context = auth_context

        self._setup_event_listeners()
        if self.config.validate_on_interval:
            self._start_validation_interval()

        self._update_state(is_initialized=True)
        await self.validate_session()
        logger.info("Session lifecycle initialized")

    def destroy(self) -> None:
        """Stop all triggers and reset state; a second call does nothing."""
        if not self._state.is_initialized and self._interval_task is None \
                and not self._registered_listeners and not self._trigger_tasks:
            return

        logger.info("Destroying session lifecycle")
        self._epoch += 1

        self._stop_validation_interval()
        self._remove_event_listeners()

        for task in list(self._trigger_tasks):
            task.cancel()
        self._trigger_tasks.clear()

        self._update_state(
            is_initialized=False,
            is_validation_in_progress=False,
            current_session=None,
            session_expiry_time=None,
            is_session_expiring=False,
            is_session_expired=False
        )

    # Triggers

    def _setup_event_listeners(self) -> None:
        if self.config.validate_on_page_focus:
            self._add_listener(EnvironmentEvents.FOCUS, self._on_focus)
        self._add_listener(EnvironmentEvents.VISIBILITY_CHANGE, self._on_visibility_change)
        self._add_listener(EnvironmentEvents.BEFORE_UNLOAD, self._on_before_unload)

    def _add_listener(self, event: str, callback: Callable[[], Any]) -> None:
        self.events.add_listener(event, callback)
        self._registered_listeners.append((event, callback))

    def _remove_event_listeners(self) -> None:
        for event, callback in self._registered_listeners:
            self.events.remove_listener(event, callback)
        self._registered_listeners.clear()

    def _on_focus(self) -> None:
        logger.debug("Page focused, validating session")
        self._schedule_validation()

    def _on_visibility_change(self) -> None:
        if not self.events.hidden:
            logger.debug("Page became visible, validating session")
            self._schedule_validation()

    def _on_before_unload(self) -> None:
        logger.debug("Page unloading, cleaning up session lifecycle")
        self.destroy()

    def _schedule_validation(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, validation trigger ignored")
            return

        task = loop.create_task(self.validate_session())
        self._trigger_tasks.add(task)
        task.add_done_callback(self._trigger_tasks.discard)

    def _start_validation_interval(self) -> None:
        self._stop_validation_interval()
        self._interval_task = asyncio.ensure_future(self._validation_loop())
        logger.debug(f"Started validation interval: {self.config.validation_interval}s")

    def _stop_validation_interval(self) -> None:
        if self._interval_task is not None:
            if not self._interval_task.done():
                self._interval_task.cancel()
            self._interval_task = None
            logger.debug("Stopped validation interval")

    async def _validation_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.config.validation_interval)
                logger.debug("Validation interval triggered")
                await self.validate_session()
        except asyncio.CancelledError:
            logger.debug("Validation interval task cancelled")

    async def handle_route_change(self, path: str) -> Optional[ValidationResult]:
        """
        Validate after navigation to path.

        Returns:
            The validation result, or None when no validation was due
        """
        if not self._state.is_initialized or not self.config.validate_on_route_change:
            return None
        if path.split('?', 1)[0] in _AUTH_PATHS or not self._is_authenticated():
            return None

        logger.debug(f"Route changed to {path}, validating session")
        return await self.validate_session()

    # Validation and remediation

    async def validate_session(self) -> ValidationResult:
        """Run one validation and apply its outcome to the lifecycle state."""
        if self.validator.in_progress:
            return await self.validator.validate()

        epoch = self._epoch

        async def remediate(result: ValidationResult) -> None:
            if epoch != self._epoch:
                logger.info(f"Skipping remediation of superseded validation run: {result.reason}")
                return
            await self._handle_invalid_session(result.reason)

        self._update_state(
            is_validation_in_progress=True,
            last_validation_time=datetime.now(timezone.utc)
        )
        try:
            result = await self.validator.validate(on_invalid=remediate)
        finally:
            self._update_state(is_validation_in_progress=False)

        if epoch != self._epoch:
            return result

        if result.is_valid and result.session is not None:
            self._update_state(
                current_session=result.session,
                session_expiry_time=result.session.expires_at,
                is_session_expiring=result.is_expiring_soon,
                is_session_expired=False
            )
        elif result.is_expired:
            snapshot = {}
            if result.session is not None:
                snapshot = dict(current_session=result.session, session_expiry_time=result.session.expires_at)
            self._update_state(is_session_expiring=False, is_session_expired=True, **snapshot)

        return result

    async def _handle_invalid_session(self, reason: Optional[str]) -> None:
        logger.info(f"Handling invalid session: {reason}")
        self._epoch += 1
        try:
            self.token_store.clear()
            if self.auth_context is not None:
                self.auth_context.clear_user()

            self._update_state(
                current_session=None,
                session_expiry_time=None,
                is_session_expiring=False,
                is_session_expired=True
            )

            await self._redirect_after_logout()
        except Exception as e:
            logger.error(f"Error handling invalid session: {e}")

    async def _redirect_after_logout(self) -> None:
        if self.router is None:
            await navigate(None, self.platform, LOGIN_PATH)
            return

        redirect_path = login_redirect_path(self.config, self.router)
        logger.info(f"Redirecting after logout to: {redirect_path}")
        await navigate(self.router, self.platform, redirect_path)

    def mark_logged_out(self) -> None:
        """Record a logout made elsewhere so in-flight runs do not remediate again."""
        self._epoch += 1
        self._update_state(
            current_session=None,
            session_expiry_time=None,
            is_session_expiring=False
        )

    async def force_logout(self, reason: str = "Manual logout") -> None:
        logger.info(f"Force logout triggered: {reason}")
        await self._handle_invalid_session(reason)

    async def refresh_session(self) -> bool:
        """Validate on demand; True when the session is valid."""
        logger.debug("Manual session refresh requested")
        result = await self.validate_session()
        return result.is_valid

    # Configuration

    def update_config(self, **changes) -> LifecycleConfig:
        """
        Replace the lifecycle policy with a copy carrying changes.

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        unknown = set(changes) - set(LifecycleConfig.field_names())
        if unknown:
            raise ConfigurationError(
                f"Unknown lifecycle configuration keys: {', '.join(sorted(unknown))}",
                ErrorCode.CONFIG_UNKNOWN_KEY
            )

        previous = self.config
        try:
            self.config = dataclasses.replace(previous, **changes)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(str(e), cause=e)

        self.validator.config = self.config
        self._apply_debug_logging()
        logger.debug(f"Configuration updated: {changes}")
        self.audit.log_event(
            AuditEventType.CONFIGURATION_CHANGE,
            "Session lifecycle configuration updated",
            additional_context=changes
        )

        interval_changed = (
            previous.validate_on_interval != self.config.validate_on_interval
            or previous.validation_interval != self.config.validation_interval
        )
        if self._state.is_initialized and interval_changed:
            if self.config.validate_on_interval:
                self._start_validation_interval()
            else:
                self._stop_validation_interval()

        return self.config
