"""Tests for the scheduler: startup, poll ticks, pushes and shutdown."""

from datetime import timedelta

import pytest
import pytest_asyncio

from usage_hue.core.config import DaemonConfig
from usage_hue.domain.light_controller import LightController
from usage_hue.domain.models import UsageSource
from usage_hue.domain.resolver import SnapshotStore, UsageResolver
from usage_hue.drivers.light_sim import SimulatedLight
from usage_hue.services import watcher as watcher_module
from usage_hue.services.scheduler import UsageScheduler
from usage_hue.services.watcher import WatchState

from conftest import FakeSource, append_log, failing, report_of, write_log


@pytest.fixture(autouse=True)
def quiet_watch(monkeypatch):
    """Replace the filesystem watch with one that idles until stopped."""

    async def fake_awatch(path, stop_event):
        await stop_event.wait()
        return
        yield  # pragma: no cover

    monkeypatch.setattr(watcher_module, "awatch", fake_awatch)


class Harness:
    def __init__(self, hue_config, log_path, clock, sources):
        self.light = SimulatedLight(light_id=3)
        self.resolver = UsageResolver(
            store=SnapshotStore(),
            sources=sources,
            usage=hue_config.usage,
            usage_log_path=log_path,
            clock=clock,
        )
        self.scheduler = UsageScheduler(
            self.resolver, LightController(self.light, hue_config), hue_config, log_path
        )

    async def close(self):
        await self.scheduler.stop()
        await self.scheduler.join(timeout=1)


@pytest_asyncio.fixture
async def harness_factory(hue_config, log_path, clock):
    created = []

    def make(*sources, config=None):
        h = Harness(config or hue_config, log_path, clock, list(sources))
        created.append(h)
        return h

    yield make
    for h in created:
        await h.close()


class TestStartup:
    @pytest.mark.asyncio
    async def test_applies_immediately_from_local(self, harness_factory):
        h = harness_factory()
        await h.scheduler.start()

        assert len(h.light.commands) == 1
        assert h.scheduler.live.last_resolution.source is UsageSource.LOCAL
        assert h.scheduler.live.last_trigger == "startup"

    @pytest.mark.asyncio
    async def test_upfront_oauth_fetch(self, harness_factory):
        oauth = FakeSource(UsageSource.OAUTH, report_of(0.5))
        cookie = FakeSource(UsageSource.COOKIE_API, report_of(0.9))
        h = harness_factory(oauth, cookie)
        await h.scheduler.start()

        assert oauth.calls == 1
        assert cookie.calls == 0
        assert h.scheduler.live.last_resolution.source is UsageSource.OAUTH

    @pytest.mark.asyncio
    async def test_upfront_cookie_when_oauth_fails(self, harness_factory):
        cookie = FakeSource(UsageSource.COOKIE_API, report_of(0.9))
        h = harness_factory(failing(UsageSource.OAUTH), cookie)
        await h.scheduler.start()

        assert h.scheduler.live.last_resolution.source is UsageSource.COOKIE_API

    @pytest.mark.asyncio
    async def test_arms_watcher_when_log_exists(self, harness_factory, log_path, clock):
        write_log(log_path, [clock.now])
        h = harness_factory()
        await h.scheduler.start()
        assert h.scheduler.watcher.state is WatchState.ARMED


class TestTick:
    @pytest.mark.asyncio
    async def test_tick_refreshes_when_stale_and_applies(self, harness_factory, clock):
        oauth = FakeSource(UsageSource.OAUTH, report_of(0.5))
        h = harness_factory(oauth)
        await h.scheduler.start()

        clock.advance(minutes=1)
        await h.scheduler.tick()
        assert oauth.calls == 1  # still fresh
        assert len(h.light.commands) == 2

        clock.advance(minutes=5)
        await h.scheduler.tick()
        assert oauth.calls == 2
        assert len(h.light.commands) == 3

    @pytest.mark.asyncio
    async def test_tick_arms_watcher_once_log_appears(self, harness_factory, log_path, clock):
        h = harness_factory()
        await h.scheduler.start()
        assert h.scheduler.watcher.state is WatchState.UNARMED

        write_log(log_path, [clock.now])
        await h.scheduler.tick()
        assert h.scheduler.watcher.state is WatchState.ARMED

    @pytest.mark.asyncio
    async def test_tick_trims_log(self, harness_factory, hue_config, log_path, clock):
        window = timedelta(milliseconds=hue_config.usage.window_ms)
        write_log(log_path, [clock.now - 3 * window, clock.now])
        h = harness_factory()
        await h.scheduler.start()

        await h.scheduler.tick()
        assert len(log_path.read_text().splitlines()) == 1

    @pytest.mark.asyncio
    async def test_failed_light_update_does_not_stop_ticks(self, harness_factory):
        h = harness_factory()

        async def broken_send(command):
            raise RuntimeError("bridge exploded")

        h.light.send = broken_send
        await h.scheduler.start()
        assert await h.scheduler.update_light("poll") is None
        await h.scheduler.tick()
        assert h.scheduler.running


class TestPush:
    @pytest.mark.asyncio
    async def test_push_then_apply_uses_push(self, harness_factory):
        oauth = FakeSource(UsageSource.OAUTH, report_of(0.1))
        h = harness_factory(oauth)
        await h.scheduler.start()

        snapshot = h.scheduler.accept_push({"five_hour": {"utilization": 80}})
        result = await h.scheduler.update_light("push", allow_refresh=False)

        assert snapshot.source is UsageSource.PUSH
        assert result.ok
        assert h.scheduler.live.last_resolution.percentage == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_no_events_after_stop(self, harness_factory):
        h = harness_factory()
        await h.scheduler.start()
        await h.scheduler.stop()

        assert h.scheduler.accept_push({"five_hour": {"utilization": 80}}) is None
        assert await h.scheduler.update_light("poll") is None
        assert len(h.light.commands) == 1


class TestLocalScenario:
    @pytest.mark.asyncio
    async def test_local_mode_end_to_end(self, harness_factory, log_path, clock):
        h = harness_factory()
        await h.scheduler.start()
        live = h.scheduler.live
        assert live.last_resolution.source is UsageSource.LOCAL
        assert live.last_resolution.percentage == 0.0

        append_log(log_path, [clock.now - timedelta(seconds=s) for s in range(10)])
        await h.scheduler.tick()
        assert live.last_resolution.percentage == pytest.approx(10 / 45)
        assert live.last_resolution.details == "10/45 prompts"

        write_log(log_path, [clock.now - timedelta(seconds=s) for s in range(50)])
        await h.scheduler.tick()
        assert live.last_resolution.percentage == 1.0
        assert live.last_resolution.details == "50/45 prompts"

        # Past the staleness window the light follows the log as it is now
        clock.advance(minutes=6)
        write_log(log_path, [clock.now - timedelta(seconds=s) for s in range(5)])
        applied_before = len(h.light.commands)
        await h.scheduler.tick()
        assert len(h.light.commands) == applied_before + 1
        assert live.last_resolution.percentage == pytest.approx(5 / 45)
        assert h.light.last_command == h.scheduler._controller.build_command(5 / 45)

    @pytest.mark.asyncio
    async def test_log_change_callback_recounts(self, harness_factory, log_path, clock):
        h = harness_factory()
        await h.scheduler.start()

        append_log(log_path, [clock.now] * 3)
        await h.scheduler._on_log_change()

        assert h.scheduler.live.last_trigger == "log-change"
        assert h.scheduler.live.last_resolution.percentage == pytest.approx(3 / 45)


@pytest.mark.asyncio
async def test_poll_seconds_from_config(harness_factory, hue_config):
    config = hue_config.model_copy(update={"daemon": DaemonConfig(poll_interval_ms=1500)})
    h = harness_factory(config=config)
    assert h.scheduler.poll_seconds == 1.5
