"""
Main entry point for the AuctionZ session client.

This module provides the command-line interface: logging in, inspecting and
validating the stored session, listing and revoking sessions, logging out,
and watching the session lifecycle until it ends.
"""

import sys
import json
import asyncio
import argparse
import getpass
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List

from auctionz_shared.exceptions import AuctionzError, AuthenticationError, NetworkError
from auctionz_shared.interfaces import IRouter
from auctionz_shared.logging_config import setup_logging, LogLevel, LogFormat
from auctionz_shared.models import LifecycleState, LogoutOptions, RouteLocation
from auctionz_client.api_client import AuthGatewayClient, RetryConfig
from auctionz_client.auth.auth_context import AuthContext
from auctionz_client.auth.refresh_coordinator import RefreshCoordinator
from auctionz_client.auth.token_storage import TokenStore, create_default_storage
from auctionz_client.config import ClientConfiguration
from auctionz_client.error_handling import ErrorReporter
from auctionz_client.platform import DesktopPlatform, EnvironmentEvents
from auctionz_client.session.lifecycle import LifecycleOrchestrator
from auctionz_client.session.logout_service import LogoutService

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_NOT_AUTHENTICATED = 2
EXIT_NETWORK_ERROR = 3
EXIT_INTERRUPTED = 130


class TerminalRouter(IRouter):
    """Router for the terminal; navigation is recorded and reported."""

    def __init__(self, path: str = "/"):
        self._route = RouteLocation(path=path, full_path=path)

    @property
    def current_route(self) -> RouteLocation:
        return self._route

    async def push(self, path: str) -> None:
        self._route = RouteLocation(path=path.split('?', 1)[0], full_path=path)
        logger.info(f"Navigated to {path}")


@dataclass
class ClientComponents:
    config: ClientConfiguration
    token_store: TokenStore
    gateway: AuthGatewayClient
    refresh_coordinator: RefreshCoordinator
    auth_context: AuthContext
    platform: DesktopPlatform
    events: EnvironmentEvents
    router: TerminalRouter
    lifecycle: LifecycleOrchestrator
    logout_service: LogoutService
    error_reporter: ErrorReporter


def build_components(config: ClientConfiguration) -> ClientComponents:
    """Wire the session client together from configuration."""
    storage = create_default_storage(config.get_storage_backend(), config.get_storage_file())
    token_store = TokenStore(storage)

    gateway = AuthGatewayClient(
        server_url=config.get_server_url(),
        timeout=config.get_server_timeout(),
        retry_config=RetryConfig(max_retries=config.get_retry_attempts(), base_delay=config.get_retry_delay()),
        token_store=token_store
    )
    refresh_coordinator = RefreshCoordinator(token_store, gateway)
    auth_context = AuthContext(token_store, gateway)
    refresh_coordinator.add_refresh_callback(auth_context.on_token_refreshed)

    platform = DesktopPlatform(local_storage=storage)
    events = EnvironmentEvents()
    router = TerminalRouter()

    lifecycle = LifecycleOrchestrator(
        token_store,
        refresh_coordinator,
        gateway,
        platform=platform,
        events=events,
        config=config.get_lifecycle_config()
    )
    logout_service = LogoutService(
        token_store, gateway, platform,
        router=router, auth_context=auth_context, lifecycle=lifecycle
    )

    return ClientComponents(
        config=config,
        token_store=token_store,
        gateway=gateway,
        refresh_coordinator=refresh_coordinator,
        auth_context=auth_context,
        platform=platform,
        events=events,
        router=router,
        lifecycle=lifecycle,
        logout_service=logout_service,
        error_reporter=ErrorReporter()
    )


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="auctionz-session",
        description="AuctionZ session client",
        epilog="""
Examples:
  %(prog)s login --email me@example.com
  %(prog)s status --json
  %(prog)s sessions
  %(prog)s revoke 3f2c9a
  %(prog)s logout --all --yes
  %(prog)s watch
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Configuration file path")
    config_group.add_argument("--server-url", type=str, metavar="URL",
                              help="API base URL")

    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Write logs to file")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    login_parser = subparsers.add_parser("login", help="Log in and store the session")
    login_parser.add_argument("--email", type=str, help="Account email")
    login_parser.add_argument("--password", type=str, help="Account password (prompted when omitted)")

    status_parser = subparsers.add_parser("status", help="Validate the stored session")
    status_parser.add_argument("--json", action="store_true", help="Output in JSON format")

    sessions_parser = subparsers.add_parser("sessions", help="List active sessions")
    sessions_parser.add_argument("--json", action="store_true", help="Output in JSON format")

    revoke_parser = subparsers.add_parser("revoke", help="End a session by id")
    revoke_parser.add_argument("session_id", help="Session id")
    revoke_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    logout_parser = subparsers.add_parser("logout", help="Log out")
    logout_parser.add_argument("--all", action="store_true", help="Log out from all devices")
    logout_parser.add_argument("--wipe", action="store_true", help="Clear all local application data")
    logout_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    subparsers.add_parser("watch", help="Keep validating the session until it ends")

    return parser.parse_args(argv)


def configure_logging(args, config: ClientConfiguration) -> None:
    """Configure logging from arguments and configuration."""
    log_file = args.log_file or config.get_log_file()

    if args.debug:
        level = LogLevel.DEBUG
    elif log_file:
        try:
            level = LogLevel(config.get_log_level())
        except ValueError:
            level = LogLevel.INFO
    else:
        level = LogLevel.WARNING

    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError:
        log_format = LogFormat.STANDARD

    setup_logging(
        log_level=level,
        log_format=log_format,
        log_file=log_file,
        enable_console=args.debug or not log_file,
        enable_audit=bool(log_file),
        audit_file=str(Path(log_file).with_suffix('.audit.log')) if log_file else None
    )


def _exit_code_for(error: Exception) -> int:
    if isinstance(error, AuthenticationError):
        return EXIT_NOT_AUTHENTICATED
    if isinstance(error, NetworkError):
        return EXIT_NETWORK_ERROR
    return EXIT_FAILED


def _report(components: ClientComponents, error: Exception, operation: str) -> int:
    components.error_reporter.handle_api_error(error, operation)
    record = components.error_reporter.get_errors()[0]
    print(f"{record.title}: {record.message}", file=sys.stderr)
    if record.details:
        print(f"  {record.details}", file=sys.stderr)
    return _exit_code_for(error)


async def handle_login(args, components: ClientComponents) -> int:
    email = args.email or input("Email: ")
    password = args.password or getpass.getpass("Password: ")

    try:
        user = await components.auth_context.login(email, password)
    except AuctionzError as e:
        if isinstance(e, AuthenticationError):
            print(f"Login failed: {components.auth_context.last_error}", file=sys.stderr)
            return EXIT_NOT_AUTHENTICATED
        return _report(components, e, "Login")

    print(f"Logged in as {user.display_name} ({user.role})")
    return EXIT_SUCCESS


async def _load_user(components: ClientComponents) -> Optional[int]:
    """Load the profile of the stored session; returns an exit code on failure."""
    if not components.auth_context.restore():
        print("Not logged in", file=sys.stderr)
        return EXIT_NOT_AUTHENTICATED
    try:
        await components.auth_context.fetch_user()
    except AuctionzError as e:
        return _report(components, e, "Profile")
    return None


async def handle_status(args, components: ClientComponents) -> int:
    failure = await _load_user(components)
    if failure is not None:
        return failure

    lifecycle = components.lifecycle
    lifecycle.router = components.router
    lifecycle.auth_context = components.auth_context
    result = await lifecycle.validate_session()

    if args.json:
        output = result.to_dict()
        output['user'] = components.auth_context.user.email if components.auth_context.user else None
        print(json.dumps(output, indent=2))
    elif result.is_valid:
        session = result.session
        print(f"Session {session.id} is valid")
        print(f"  User: {components.auth_context.user.display_name}")
        print(f"  Device: {session.device_info or 'unknown'}")
        print(f"  Expires: {session.expires_at.isoformat()}")
        if result.is_expiring_soon and lifecycle.config.show_expiry_warning:
            print("  Warning: the session expires soon")
    else:
        print(f"Session is not valid: {result.reason}", file=sys.stderr)

    if result.is_valid:
        return EXIT_SUCCESS
    if result.reason == "Network error":
        return EXIT_NETWORK_ERROR
    return EXIT_NOT_AUTHENTICATED


async def handle_sessions(args, components: ClientComponents) -> int:
    if not components.token_store.is_present():
        print("Not logged in", file=sys.stderr)
        return EXIT_NOT_AUTHENTICATED

    try:
        sessions = await components.gateway.get_sessions()
    except AuctionzError as e:
        return _report(components, e, "Sessions")

    current_id = components.token_store.get_session_id()
    if args.json:
        print(json.dumps([dict(s.to_dict(), current=s.id == current_id) for s in sessions], indent=2))
        return EXIT_SUCCESS

    if not sessions:
        print("No active sessions")
    for session in sessions:
        marker = "*" if session.id == current_id else " "
        state = "active" if session.is_active else "inactive"
        print(f"{marker} {session.id}  {session.device_info or 'unknown device'}  "
              f"{session.ip_address}  {state}  expires {session.expires_at.isoformat()}")
    return EXIT_SUCCESS


async def handle_revoke(args, components: ClientComponents) -> int:
    result = await components.logout_service.logout_session(
        args.session_id, LogoutOptions(show_confirmation=not args.yes)
    )
    print(result.message, file=sys.stdout if result.success else sys.stderr)
    return EXIT_SUCCESS if result.success else EXIT_FAILED


async def handle_logout(args, components: ClientComponents) -> int:
    components.auth_context.restore()
    service = components.logout_service

    if args.all:
        result = await service.logout_all_devices(LogoutOptions(show_confirmation=not args.yes))
    else:
        result = await service.logout_current_session(
            LogoutOptions(show_confirmation=not args.yes, clear_all_data=args.wipe)
        )

    print(result.message, file=sys.stdout if result.success else sys.stderr)
    return EXIT_SUCCESS if result.success else EXIT_FAILED


async def handle_watch(args, components: ClientComponents) -> int:
    failure = await _load_user(components)
    if failure is not None:
        return failure

    ended = asyncio.Event()
    lifecycle = components.lifecycle

    def on_state_changed(state: LifecycleState) -> None:
        if state.is_session_expiring and lifecycle.config.show_expiry_warning:
            logger.warning(f"Session expires at {state.session_expiry_time}")
        if state.is_session_expired and not components.token_store.is_present():
            ended.set()

    unsubscribe = lifecycle.subscribe(on_state_changed)
    try:
        await lifecycle.initialize(components.router, components.auth_context)
        print(f"Watching session (validation every {int(lifecycle.config.validation_interval)}s)")
        await ended.wait()
        print(f"Session ended; redirected to {components.router.current_route.full_path}", file=sys.stderr)
        return EXIT_NOT_AUTHENTICATED
    finally:
        unsubscribe()
        lifecycle.destroy()


COMMAND_HANDLERS = {
    'login': handle_login,
    'status': handle_status,
    'sessions': handle_sessions,
    'revoke': handle_revoke,
    'logout': handle_logout,
    'watch': handle_watch,
}


async def run_command(args, config: ClientConfiguration) -> int:
    components = build_components(config)
    async with components.gateway:
        return await COMMAND_HANDLERS[args.command](args, components)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the client."""
    args = None
    try:
        args = parse_arguments(argv)

        config = ClientConfiguration(args.config)
        if args.server_url:
            config.set_override('server.url', args.server_url)

        configure_logging(args, config)
        return asyncio.run(run_command(args, config))

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except AuctionzError as e:
        print(f"Error: {e.user_message}", file=sys.stderr)
        return _exit_code_for(e)
    except Exception as e:
        print(f"Fatal error: {str(e)}", file=sys.stderr)
        if args is not None and args.debug:
            logger.exception("Fatal error in main")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
