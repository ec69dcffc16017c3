from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import socket
import sys
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import ConfigError, HueConfig, Settings, load_config, settings as default_settings
from .core.log import configure_logging
from .domain.interfaces import Light, RemoteUsageSource
from .domain.light_controller import LightController
from .domain.resolver import SnapshotStore, UsageResolver
from .drivers.hue_light import HueLight
from .drivers.light_sim import SimulatedLight
from .services.lifecycle import AlreadyRunningError, PidMarker, StopReport, signal_stop
from .services.scheduler import UsageScheduler
from .sources.cookie_api import CookieUsageSource
from .sources.oauth import OAuthUsageSource

from .api.routes import router as api_router
import usage_hue.api.routes as routes_module

logger = logging.getLogger(__name__)


def build_light(settings: Settings, config: HueConfig) -> Light:
    if settings.light_mode.lower() == "sim":
        return SimulatedLight(light_id=config.light.id)
    return HueLight(
        bridge_ip=config.bridge.ip,
        username=config.bridge.username,
        light_id=config.light.id,
        timeout=settings.request_timeout_seconds,
    )


def build_sources(settings: Settings, config: HueConfig) -> list[RemoteUsageSource]:
    # Trust order: OAuth (zero config) before the cookie API
    return [
        OAuthUsageSource(settings),
        CookieUsageSource(config.claude, settings),
    ]


def build_resolver(settings: Settings, config: HueConfig, store: Optional[SnapshotStore] = None) -> UsageResolver:
    return UsageResolver(
        store=store or SnapshotStore(),
        sources=build_sources(settings, config),
        usage=config.usage,
        usage_log_path=settings.usage_log_path,
        stale_after=timedelta(seconds=settings.usage_stale_seconds),
    )


def create_app(scheduler: UsageScheduler) -> FastAPI:
    app = FastAPI(title="usage-hue push endpoint", docs_url=None, redoc_url=None, openapi_url=None)

    # The sender is a browser extension
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    # Make the dependency function in routes resolve to the live scheduler
    app.dependency_overrides[routes_module.get_scheduler] = lambda: scheduler

    app.include_router(api_router)
    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the daemon."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class PushListener:
    """Loopback HTTP endpoint for pushed usage. Failing to bind is not fatal."""

    def __init__(self, app: FastAPI, host: str, port: int) -> None:
        self._app = app
        self.host = host
        self.port = port
        self._server: Optional[uvicorn.Server] = None
        self._task: Optional[asyncio.Task] = None
        self._sock: Optional[socket.socket] = None

    @property
    def listening(self) -> bool:
        return self._task is not None

    async def start(self) -> bool:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            logger.warning("Port %s in use (%s); extension push disabled", self.port, e)
            return False

        config = uvicorn.Config(
            self._app,
            log_level="warning",
            access_log=False,
            timeout_graceful_shutdown=1,
        )
        self._sock = sock
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]), name="push_listener")
        logger.info("Extension server: http://%s:%s", self.host, self.port)
        return True

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        task, self._task = self._task, None
        if task is not None:
            done, _ = await asyncio.wait({task}, timeout=2.0)
            if not done:
                task.cancel()
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        self._server = None


class UsageDaemon:
    def __init__(self, settings: Settings, config: HueConfig, marker: PidMarker) -> None:
        self._settings = settings
        self._config = config
        self._marker = marker

        self.resolver = build_resolver(settings, config)
        self.controller = LightController(build_light(settings, config), config)
        self.scheduler = UsageScheduler(self.resolver, self.controller, config, settings.usage_log_path)
        self.listener = PushListener(create_app(self.scheduler), settings.push_host, settings.push_port)

        self._shutdown_event = asyncio.Event()
        self._shutting_down = False

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._shutting_down:
            return
        logger.info("Received %s, stopping", sig.name)
        self._shutdown_event.set()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

        cfg = self._config
        logger.info("%s daemon started (PID marker %s)", self._settings.app_name, self._marker.path)
        logger.info("  Bridge: %s", cfg.bridge.ip)
        logger.info("  Light: %s (ID: %s)", cfg.light.name, cfg.light.id)
        logger.info("  Polling every %ss", cfg.daemon.poll_interval_ms / 1000)

        try:
            await self.scheduler.start()
            await self.listener.start()
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        if self._shutting_down:
            return
        self._shutting_down = True
        self._shutdown_event.set()

        await self.scheduler.stop()
        await self.listener.stop()
        self._marker.release()
        await self.scheduler.join(timeout=self._settings.request_timeout_seconds)

        # Repeat signals are absorbed by _handle_signal until the last task is done
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        logger.info("Shutdown complete")


# --- Operations for the command layer ---

def is_running(settings: Settings = default_settings) -> bool:
    return PidMarker(settings.pid_path).running_pid() is not None


def start(settings: Settings = default_settings) -> int:
    """Run the daemon in the foreground until signalled. Returns the exit status."""
    marker = PidMarker(settings.pid_path)
    pid = marker.running_pid()
    if pid is not None:
        print(f"Daemon is already running (PID {pid}). Use 'usage-hue stop' first.", file=sys.stderr)
        return 1

    try:
        config = load_config(settings.config_path)
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return 1

    try:
        marker.acquire()
    except AlreadyRunningError as e:
        print(f"{e} Use 'usage-hue stop' first.", file=sys.stderr)
        return 1

    configure_logging(settings)
    try:
        asyncio.run(UsageDaemon(settings, config, marker).run())
    finally:
        marker.release()
    return 0


def stop(settings: Settings = default_settings) -> StopReport:
    report = signal_stop(PidMarker(settings.pid_path))
    print(report.message)
    return report


@dataclass(frozen=True)
class DaemonStatus:
    running: bool
    pid: Optional[int]
    source: Optional[str]
    percentage: Optional[float]
    details: Optional[str]


async def _resolve_once(settings: Settings, config: HueConfig):
    return await build_resolver(settings, config).resolve()


def current_status(settings: Settings = default_settings) -> DaemonStatus:
    pid = PidMarker(settings.pid_path).running_pid()
    try:
        config = load_config(settings.config_path)
    except ConfigError as e:
        logger.warning("%s", e)
        return DaemonStatus(running=pid is not None, pid=pid, source=None, percentage=None, details=None)

    resolution = asyncio.run(_resolve_once(settings, config))
    return DaemonStatus(
        running=pid is not None,
        pid=pid,
        source=resolution.source.value,
        percentage=resolution.percentage,
        details=resolution.details,
    )
