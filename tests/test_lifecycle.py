"""
Unit tests for the session lifecycle orchestrator.
"""

import asyncio

import pytest

from auctionz_shared.exceptions import ConfigurationError, ErrorCode
from auctionz_shared.models import LifecycleConfig
from auctionz_client.platform import EnvironmentEvents
from auctionz_client.session.lifecycle import LifecycleOrchestrator

from conftest import FakeRouter, make_session


def gate_sessions(gateway):
    """Make get_sessions wait on the returned event."""
    gate = asyncio.Event()

    async def slow_sessions():
        gateway.calls.append(("get_sessions",))
        await gate.wait()
        return list(gateway.sessions)

    gateway.get_sessions = slow_sessions
    return gate


async def settle():
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.fixture
def events():
    return EnvironmentEvents()


@pytest.fixture
def make_orchestrator(token_store, coordinator, gateway, platform, events):
    def factory(**config):
        config.setdefault("validate_on_interval", False)
        return LifecycleOrchestrator(
            token_store, coordinator, gateway,
            platform=platform,
            events=events,
            config=LifecycleConfig(**config)
        )
    return factory


@pytest.fixture
def orchestrator(make_orchestrator):
    lifecycle = make_orchestrator()
    yield lifecycle
    lifecycle.destroy()


class TestInitialization:

    @pytest.mark.asyncio
    async def test_initialize_validates_once(self, orchestrator, auth_context, gateway):
        await orchestrator.initialize(FakeRouter("/"), auth_context)

        state = orchestrator.get_state()
        assert state.is_initialized
        assert state.current_session.id == "sess-42"
        assert state.session_expiry_time == state.current_session.expires_at
        assert not state.is_validation_in_progress
        assert state.last_validation_time is not None
        assert gateway.count("get_sessions") == 1

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, orchestrator, auth_context, gateway, events):
        await orchestrator.initialize(FakeRouter("/"), auth_context)
        await orchestrator.initialize(FakeRouter("/"), auth_context)

        assert gateway.count("get_sessions") == 1
        assert events.listener_count(EnvironmentEvents.FOCUS) == 1

    @pytest.mark.asyncio
    async def test_destroy_releases_everything(self, make_orchestrator, auth_context, events):
        orchestrator = make_orchestrator(validate_on_interval=True)
        await orchestrator.initialize(FakeRouter("/"), auth_context)
        assert orchestrator._interval_task is not None

        orchestrator.destroy()
        orchestrator.destroy()

        assert events.listener_count() == 0
        assert orchestrator._interval_task is None
        assert not orchestrator.get_state().is_initialized
        assert orchestrator.get_state().current_session is None

    def test_destroy_without_initialize_is_noop(self, orchestrator):
        states = []
        orchestrator.subscribe(states.append)

        orchestrator.destroy()

        assert states == []

    @pytest.mark.asyncio
    async def test_focus_listener_only_when_enabled(self, make_orchestrator, auth_context, events):
        orchestrator = make_orchestrator(validate_on_page_focus=False)
        await orchestrator.initialize(FakeRouter("/"), auth_context)

        assert events.listener_count(EnvironmentEvents.FOCUS) == 0
        assert events.listener_count(EnvironmentEvents.VISIBILITY_CHANGE) == 1
        assert events.listener_count(EnvironmentEvents.BEFORE_UNLOAD) == 1
        orchestrator.destroy()


class TestRemediation:

    @pytest.mark.asyncio
    async def test_missing_session_redirects_with_current_route(self, orchestrator, auth_context,
                                                                token_store, gateway):
        gateway.sessions = []
        router = FakeRouter("/my-bids")

        await orchestrator.initialize(router, auth_context)

        assert token_store.get() is None
        assert auth_context.user is None
        assert not auth_context.is_authenticated
        assert router.pushed == ["/login?redirect=%2Fmy-bids"]
        state = orchestrator.get_state()
        assert state.is_session_expired
        assert state.current_session is None

    @pytest.mark.asyncio
    async def test_redirect_encodes_full_path(self, orchestrator, auth_context, gateway):
        gateway.sessions = [make_session(is_active=False)]
        router = FakeRouter("/items", full_path="/items?page=2&sort=ending")

        await orchestrator.initialize(router, auth_context)

        assert router.pushed == ["/login?redirect=%2Fitems%3Fpage%3D2%26sort%3Dending"]

    @pytest.mark.asyncio
    async def test_redirect_from_home_goes_to_plain_login(self, orchestrator, auth_context, gateway):
        gateway.sessions = []
        router = FakeRouter("/")

        await orchestrator.initialize(router, auth_context)

        assert router.pushed == ["/login"]

    @pytest.mark.asyncio
    async def test_redirect_to_home_when_configured(self, make_orchestrator, auth_context, gateway):
        orchestrator = make_orchestrator(redirect_to_home_on_logout=True)
        gateway.sessions = []
        router = FakeRouter("/my-bids")

        await orchestrator.initialize(router, auth_context)

        assert router.pushed == ["/"]
        orchestrator.destroy()

    @pytest.mark.asyncio
    async def test_route_not_preserved_when_disabled(self, make_orchestrator, auth_context, gateway):
        orchestrator = make_orchestrator(preserve_current_route=False)
        gateway.sessions = []
        router = FakeRouter("/my-bids")

        await orchestrator.initialize(router, auth_context)

        assert router.pushed == ["/login"]
        orchestrator.destroy()

    @pytest.mark.asyncio
    async def test_hard_navigation_without_router(self, orchestrator, auth_context, gateway, platform):
        gateway.sessions = []

        await orchestrator.initialize(None, auth_context)

        assert platform.hard_navigations == ["/login"]

    @pytest.mark.asyncio
    async def test_hard_navigation_when_router_fails(self, orchestrator, auth_context, gateway, platform):
        gateway.sessions = []
        router = FakeRouter("/watchlist", fail=True)

        await orchestrator.initialize(router, auth_context)

        assert router.pushed == ["/login?redirect=%2Fwatchlist"]
        assert platform.hard_navigations == ["/login?redirect=%2Fwatchlist"]

    @pytest.mark.asyncio
    async def test_expired_result_without_auto_logout(self, make_orchestrator, auth_context,
                                                      gateway, token_store):
        orchestrator = make_orchestrator(auto_logout_on_expiry=False)
        gateway.sessions = [make_session(expires_in=-30)]
        router = FakeRouter("/my-bids")

        await orchestrator.initialize(router, auth_context)

        assert router.pushed == []
        assert token_store.is_present()
        assert orchestrator.get_state().is_session_expired
        orchestrator.destroy()

    @pytest.mark.asyncio
    async def test_expired_session_snapshot_is_recorded(self, make_orchestrator, auth_context, gateway):
        orchestrator = make_orchestrator(auto_logout_on_expiry=False)
        expired = make_session(expires_in=-30)
        gateway.sessions = [expired]

        await orchestrator.initialize(FakeRouter("/my-bids"), auth_context)

        state = orchestrator.get_state()
        assert state.current_session == expired
        assert state.session_expiry_time == expired.expires_at
        assert not state.is_session_expiring
        orchestrator.destroy()

    @pytest.mark.asyncio
    async def test_expiring_session_is_flagged(self, orchestrator, auth_context, gateway):
        gateway.sessions = [make_session(expires_in=60)]

        await orchestrator.initialize(FakeRouter("/"), auth_context)

        assert orchestrator.get_state().is_session_expiring

    @pytest.mark.asyncio
    async def test_force_logout(self, orchestrator, auth_context, token_store):
        await orchestrator.initialize(FakeRouter("/account"), auth_context)

        await orchestrator.force_logout()

        assert token_store.get() is None
        assert orchestrator.router.pushed == ["/login?redirect=%2Faccount"]

    @pytest.mark.asyncio
    async def test_superseded_run_does_not_remediate(self, orchestrator, auth_context, gateway, token_store):
        router = FakeRouter("/my-bids")
        await orchestrator.initialize(router, auth_context)

        gate = gate_sessions(gateway)
        gateway.sessions = []
        run = asyncio.ensure_future(orchestrator.validate_session())
        await settle()

        orchestrator.mark_logged_out()
        gate.set()
        result = await run

        assert result.reason == "Session not found"
        assert router.pushed == []
        assert token_store.is_present()
        assert orchestrator.get_state().current_session is None


class TestTriggers:

    @pytest.mark.asyncio
    async def test_focus_triggers_validation(self, orchestrator, auth_context, gateway, events):
        await orchestrator.initialize(FakeRouter("/"), auth_context)

        events.emit(EnvironmentEvents.FOCUS)
        await settle()

        assert gateway.count("get_sessions") == 2

    @pytest.mark.asyncio
    async def test_visibility_triggers_only_when_visible(self, orchestrator, auth_context, gateway, events):
        await orchestrator.initialize(FakeRouter("/"), auth_context)

        events.set_hidden(True)
        await settle()
        assert gateway.count("get_sessions") == 1

        events.set_hidden(False)
        await settle()
        assert gateway.count("get_sessions") == 2

    @pytest.mark.asyncio
    async def test_before_unload_destroys(self, orchestrator, auth_context, events):
        await orchestrator.initialize(FakeRouter("/"), auth_context)

        events.emit(EnvironmentEvents.BEFORE_UNLOAD)

        assert not orchestrator.get_state().is_initialized
        assert events.listener_count() == 0

    @pytest.mark.asyncio
    async def test_route_change(self, orchestrator, auth_context, gateway):
        assert await orchestrator.handle_route_change("/my-bids") is None

        await orchestrator.initialize(FakeRouter("/"), auth_context)

        assert await orchestrator.handle_route_change("/login") is None
        assert await orchestrator.handle_route_change("/register?ref=mail") is None
        result = await orchestrator.handle_route_change("/my-bids")
        assert result.is_valid
        assert gateway.count("get_sessions") == 2

    @pytest.mark.asyncio
    async def test_route_change_when_not_authenticated(self, orchestrator, auth_context, gateway):
        await orchestrator.initialize(FakeRouter("/"), auth_context)
        auth_context.clear_user()

        assert await orchestrator.handle_route_change("/my-bids") is None
        assert gateway.count("get_sessions") == 1

    @pytest.mark.asyncio
    async def test_interval_validates_periodically(self, make_orchestrator, auth_context, gateway):
        orchestrator = make_orchestrator(validate_on_interval=True, validation_interval=0.01)
        await orchestrator.initialize(FakeRouter("/"), auth_context)

        await asyncio.sleep(0.05)
        orchestrator.destroy()

        assert gateway.count("get_sessions") >= 2

    @pytest.mark.asyncio
    async def test_concurrent_validation_returns_busy(self, orchestrator, auth_context, gateway):
        await orchestrator.initialize(FakeRouter("/"), auth_context)
        gate = gate_sessions(gateway)

        first = asyncio.ensure_future(orchestrator.validate_session())
        await settle()
        busy = await orchestrator.validate_session()
        gate.set()
        await first

        assert busy.error_code == ErrorCode.VALIDATION_BUSY
        assert gateway.count("get_sessions") == 2

    @pytest.mark.asyncio
    async def test_refresh_session(self, orchestrator, auth_context, gateway):
        await orchestrator.initialize(FakeRouter("/"), auth_context)

        assert await orchestrator.refresh_session()
        gateway.sessions = [make_session(is_active=False)]
        assert not await orchestrator.refresh_session()


class TestStateAndConfig:

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self, orchestrator, auth_context):
        states = []
        unsubscribe = orchestrator.subscribe(states.append)

        await orchestrator.initialize(FakeRouter("/"), auth_context)
        seen = len(states)
        assert seen >= 3
        assert states[-1].current_session is not None

        unsubscribe()
        await orchestrator.refresh_session()
        assert len(states) == seen

    def test_update_config_rejects_unknown_key(self, orchestrator):
        with pytest.raises(ConfigurationError) as exc_info:
            orchestrator.update_config(validate_on_scroll=True)

        assert exc_info.value.error_code == ErrorCode.CONFIG_UNKNOWN_KEY

    def test_update_config_rejects_invalid_value(self, orchestrator):
        with pytest.raises(ConfigurationError):
            orchestrator.update_config(validation_interval=0)

        assert orchestrator.config.validation_interval == 300.0

    def test_update_config_reaches_validator(self, orchestrator):
        config = orchestrator.update_config(token_refresh_lookahead=30.0)

        assert config.token_refresh_lookahead == 30.0
        assert orchestrator.validator.config is config

    @pytest.mark.asyncio
    async def test_update_config_restarts_interval(self, orchestrator, auth_context):
        await orchestrator.initialize(FakeRouter("/"), auth_context)
        assert orchestrator._interval_task is None

        orchestrator.update_config(validate_on_interval=True, validation_interval=60.0)
        first_task = orchestrator._interval_task
        assert first_task is not None

        orchestrator.update_config(validation_interval=30.0)
        assert orchestrator._interval_task is not first_task

        orchestrator.update_config(validate_on_interval=False)
        assert orchestrator._interval_task is None

    def test_update_config_before_initialize_starts_nothing(self, orchestrator):
        orchestrator.update_config(validate_on_interval=True)

        assert orchestrator._interval_task is None
