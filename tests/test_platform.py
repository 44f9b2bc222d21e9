"""
Unit tests for the desktop platform facilities.
"""

import pytest

from auctionz_client.auth.token_storage import MemoryStorage
from auctionz_client.platform import (
    DesktopPlatform, DirectoryCacheStorage, EnvironmentEvents, InProcessWorkerRegistry
)


class TestEnvironmentEvents:

    def test_emit_calls_listeners(self):
        events = EnvironmentEvents()
        calls = []
        listener = lambda: calls.append("focus")

        events.add_listener(EnvironmentEvents.FOCUS, listener)
        events.add_listener(EnvironmentEvents.FOCUS, lambda: 1 / 0)
        events.emit(EnvironmentEvents.FOCUS)
        events.remove_listener(EnvironmentEvents.FOCUS, listener)
        events.emit(EnvironmentEvents.FOCUS)

        assert calls == ["focus"]
        assert events.listener_count(EnvironmentEvents.FOCUS) == 1

    def test_set_hidden_emits_visibility_change(self):
        events = EnvironmentEvents()
        seen = []
        events.add_listener(EnvironmentEvents.VISIBILITY_CHANGE, lambda: seen.append(events.hidden))

        events.set_hidden(True)
        events.set_hidden(False)

        assert seen == [True, False]


class TestDirectoryCacheStorage:

    @pytest.mark.asyncio
    async def test_keys_and_delete(self, tmp_path):
        (tmp_path / "images").mkdir()
        (tmp_path / "images" / "lot-1.jpg").write_bytes(b"jpg")
        (tmp_path / "api-v1.json").write_text("{}")
        caches = DirectoryCacheStorage(tmp_path)

        assert await caches.keys() == ["api-v1.json", "images"]
        assert await caches.delete("images")
        assert await caches.delete("api-v1.json")
        assert not await caches.delete("missing")
        assert await caches.keys() == []

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path):
        assert await DirectoryCacheStorage(tmp_path / "absent").keys() == []


class TestWorkerRegistry:

    @pytest.mark.asyncio
    async def test_unregister_runs_callback_once(self):
        registry = InProcessWorkerRegistry()
        stopped = []

        async def stop():
            stopped.append("poller")

        registration = registry.register("poller", stop)

        assert await registration.unregister()
        assert not await registration.unregister()
        assert stopped == ["poller"]
        assert await registry.get_registrations() == []


class TestDesktopPlatform:

    def test_hard_navigate_records_location(self, tmp_path):
        platform = DesktopPlatform(local_storage=MemoryStorage(), cache_dir=tmp_path)
        visited = []
        platform.add_navigation_callback(visited.append)
        platform.add_navigation_callback(lambda path: 1 / 0)

        platform.hard_navigate("/login")

        assert platform.location == "/login"
        assert visited == ["/login"]

    @pytest.mark.asyncio
    async def test_confirm_uses_callback(self, tmp_path):
        prompts = []

        def answer(message):
            prompts.append(message)
            return True

        platform = DesktopPlatform(local_storage=MemoryStorage(), cache_dir=tmp_path, confirm_callback=answer)

        assert await platform.confirm("Log out?")
        assert prompts == ["Log out?"]

    def test_prompt_without_terminal_declines(self, monkeypatch):
        def no_input(prompt):
            raise EOFError()

        monkeypatch.setattr("builtins.input", no_input)

        assert DesktopPlatform._prompt("Log out?") is False

    def test_prompt_accepts_yes(self, monkeypatch):
        monkeypatch.setattr("builtins.input", lambda prompt: " Yes ")

        assert DesktopPlatform._prompt("Log out?") is True
