"""Tests for the usage-log watcher state machine."""

import asyncio

import pytest

from usage_hue.services import watcher as watcher_module
from usage_hue.services.watcher import LogWatcher, WatchState


async def _noop():
    return None


@pytest.mark.asyncio
async def test_not_armed_while_file_missing(log_path):
    w = LogWatcher(log_path, _noop)
    assert not w.arm()
    assert w.state is WatchState.UNARMED


@pytest.mark.asyncio
async def test_change_events_invoke_callback(log_path, monkeypatch):
    log_path.write_text("")
    calls = []

    async def fake_awatch(path, stop_event):
        for i in range(3):
            yield {("modified", str(path))}
        await stop_event.wait()

    async def on_change():
        calls.append(1)

    monkeypatch.setattr(watcher_module, "awatch", fake_awatch)
    w = LogWatcher(log_path, on_change)
    assert w.arm()
    assert w.state is WatchState.ARMED
    assert not w.arm()  # already armed

    for _ in range(10):
        await asyncio.sleep(0)
    await w.close()

    assert len(calls) == 3
    assert w.state is WatchState.UNARMED


@pytest.mark.asyncio
async def test_watch_error_moves_to_failed_and_stays(log_path, monkeypatch, caplog):
    log_path.write_text("")

    async def broken_awatch(path, stop_event):
        raise OSError("inotify watch limit reached")
        yield  # pragma: no cover

    monkeypatch.setattr(watcher_module, "awatch", broken_awatch)
    w = LogWatcher(log_path, _noop)
    w.arm()
    for _ in range(5):
        await asyncio.sleep(0)

    assert w.state is WatchState.FAILED
    assert not w.arm()
    assert sum("relying on polling only" in r.getMessage() for r in caplog.records) == 1
    await w.close()
    assert w.state is WatchState.FAILED
