"""Tests for SessionManager."""

from __future__ import annotations

import pytest

from fdash.app.session_manager import MAX_SESSIONS, SessionManager
from fdash.daemon.commands import CommandChannel, RequestTracker
from fdash.shared.exceptions import CapacityExceeded, SessionNotFound
from fdash.shared.models import Device


class NullWriter:
    def write(self, data: bytes) -> None:
        return None

    async def drain(self) -> None:
        return None

    def is_closing(self) -> bool:
        return False


def _channel() -> CommandChannel:
    return CommandChannel(writer=NullWriter(), tracker=RequestTracker())


@pytest.fixture
def manager() -> SessionManager:
    return SessionManager()


class TestCapacity:
    def test_nine_then_capacity_exceeded(self, manager: SessionManager, device_a: Device) -> None:
        for expected in range(1, MAX_SESSIONS + 1):
            manager.create_session(device_a)
            assert manager.count() == expected

        with pytest.raises(CapacityExceeded, match="Maximum of 9 concurrent sessions reached"):
            manager.create_session(device_a)
        assert manager.count() == MAX_SESSIONS
        assert manager.is_full()

    def test_duplicate_devices_allowed(self, manager: SessionManager, device_a: Device) -> None:
        first = manager.create_session(device_a)
        second = manager.create_session(device_a)

        assert first != second
        assert manager.count() == 2

    def test_ids_never_reused(self, manager: SessionManager, device_a: Device) -> None:
        first = manager.create_session(device_a)
        manager.remove(first)
        second = manager.create_session(device_a)

        assert second != first


class TestSelection:
    def test_new_session_selected(self, manager: SessionManager, device_a: Device, device_b: Device) -> None:
        manager.create_session(device_a)
        second = manager.create_session(device_b)

        assert manager.selected_id() == second
        assert manager.selected_index == 1

    def test_next_previous_wrap(self, manager: SessionManager, device_a: Device, device_b: Device) -> None:
        first = manager.create_session(device_a)
        second = manager.create_session(device_b)

        manager.select_next()
        assert manager.selected_id() == first
        manager.select_previous()
        assert manager.selected_id() == second

    def test_select_by_index_and_id(self, manager: SessionManager, device_a: Device, device_b: Device) -> None:
        first = manager.create_session(device_a)
        manager.create_session(device_b)

        assert manager.select_by_index(0)
        assert manager.selected_id() == first
        assert not manager.select_by_index(5)
        assert manager.selected_id() == first
        assert not manager.select(999_999)

    def test_empty_navigation(self, manager: SessionManager) -> None:
        manager.select_next()
        manager.select_previous()

        assert manager.selected_id() is None
        assert manager.selected() is None


class TestRemove:
    def test_remove_selected_last_selects_neighbour(
        self, manager: SessionManager, device_a: Device, device_b: Device, device_c: Device
    ) -> None:
        manager.create_session(device_a)
        second = manager.create_session(device_b)
        third = manager.create_session(device_c)

        handle = manager.remove(third)

        assert handle is not None and handle.id == third
        assert manager.selected_id() == second

    def test_remove_selected_middle(
        self, manager: SessionManager, device_a: Device, device_b: Device, device_c: Device
    ) -> None:
        manager.create_session(device_a)
        second = manager.create_session(device_b)
        third = manager.create_session(device_c)
        manager.select(second)

        manager.remove(second)

        assert manager.selected_id() == third

    def test_remove_before_selection_keeps_selected(
        self, manager: SessionManager, device_a: Device, device_b: Device
    ) -> None:
        first = manager.create_session(device_a)
        second = manager.create_session(device_b)

        manager.remove(first)

        assert manager.selected_id() == second
        assert manager.selected_index == 0

    def test_remove_all_clears_selection(self, manager: SessionManager, device_a: Device) -> None:
        only = manager.create_session(device_a)

        manager.remove(only)

        assert manager.is_empty()
        assert manager.selected_index is None
        assert manager.remove(only) is None

    def test_selection_valid_after_every_removal(self, manager: SessionManager, device_a: Device) -> None:
        ids = [manager.create_session(device_a) for _ in range(5)]
        manager.select_by_index(2)

        for session_id in [ids[2], ids[0], ids[4], ids[1]]:
            manager.remove(session_id)
            assert manager.selected_index is not None
            assert 0 <= manager.selected_index < manager.count()

        manager.remove(ids[3])
        assert manager.selected_index is None


class TestLookup:
    def test_reloadable_requires_app_id_and_channel(
        self, manager: SessionManager, device_a: Device, device_b: Device, device_c: Device
    ) -> None:
        running = manager.create_session(device_a)
        no_channel = manager.create_session(device_b)
        no_app = manager.create_session(device_c)

        manager.get(running).mark_started("app-1")
        manager.attach(running, _channel())
        manager.get(no_channel).mark_started("app-2")
        manager.attach(no_app, _channel())

        targets = manager.reloadable_sessions()

        assert [target.session_id for target in targets] == [running]
        assert targets[0].app_id == "app-1"

    def test_busy_sessions_not_reloadable(self, manager: SessionManager, device_a: Device) -> None:
        session_id = manager.create_session(device_a)
        manager.get(session_id).mark_started("app-1")
        manager.attach(session_id, _channel())

        manager.get(session_id).start_reload()

        assert manager.any_session_busy()
        assert manager.reloadable_sessions() == []

    def test_find_helpers(self, manager: SessionManager, device_a: Device, device_b: Device) -> None:
        first = manager.create_session(device_a)
        second = manager.create_session(device_b)
        manager.get(second).mark_started("app-2")

        assert manager.find_by_app_id("app-2") == second
        assert manager.find_by_device_id(device_a.id) == first
        assert manager.find_by_app_id("nope") is None
        assert manager.running_sessions() == [second]

    def test_attach_unknown_session(self, manager: SessionManager) -> None:
        with pytest.raises(SessionNotFound):
            manager.attach(12345678, _channel())
