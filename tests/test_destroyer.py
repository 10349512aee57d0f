"""Tests for the shutdown-hook process destroyer."""

from __future__ import annotations

import atexit

from procwarden.destroyer import ShutdownHookProcessDestroyer, default_destroyer
from tests.conftest import FakeProcess


def test_hook_registered_only_while_tracking(monkeypatch):
    registered = []
    monkeypatch.setattr(atexit, "register", lambda fn: registered.append(fn))
    monkeypatch.setattr(atexit, "unregister", lambda fn: registered.remove(fn))

    destroyer = ShutdownHookProcessDestroyer()
    first, second = FakeProcess(), FakeProcess()

    assert destroyer.add(first) is True
    assert destroyer.add(second) is True
    assert destroyer.is_added_as_shutdown_hook is True
    assert registered == [destroyer.run]

    assert destroyer.remove(first) is True
    assert destroyer.is_added_as_shutdown_hook is True
    assert destroyer.remove(second) is True
    assert destroyer.is_added_as_shutdown_hook is False
    assert registered == []


def test_set_semantics():
    destroyer = ShutdownHookProcessDestroyer()
    process = FakeProcess()
    destroyer.add(process)
    destroyer.add(process)
    assert len(destroyer) == 1
    assert process in destroyer

    assert destroyer.remove(process) is True
    assert destroyer.remove(process) is False
    assert len(destroyer) == 0


def test_run_destroys_live_processes():
    destroyer = ShutdownHookProcessDestroyer()
    live, finished = FakeProcess(), FakeProcess()
    finished.wait()
    destroyer.add(live)
    destroyer.add(finished)

    destroyer.run()
    destroyer.run()

    assert live.kill_calls == 1
    assert finished.kill_calls == 0
    destroyer.remove(live)
    destroyer.remove(finished)


def test_run_keeps_going_when_a_kill_fails():
    class Stubborn(FakeProcess):
        def kill(self):
            raise PermissionError("nope")

    destroyer = ShutdownHookProcessDestroyer()
    stubborn, normal = Stubborn(), FakeProcess()
    destroyer.add(stubborn)
    destroyer.add(normal)

    destroyer.run()

    assert normal.kill_calls == 1
    destroyer.remove(stubborn)
    destroyer.remove(normal)


def test_default_destroyer_is_shared():
    assert default_destroyer() is default_destroyer()
    assert isinstance(default_destroyer(), ShutdownHookProcessDestroyer)
