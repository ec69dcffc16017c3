from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="USAGE_HUE_", extra="ignore")

    app_name: str = "usage-hue"

    # Where the setup wizard, the prompt hook and the daemon share files
    config_dir: Path = Field(default_factory=lambda: Path.home() / ".claude-hue")

    # Push endpoint (browser extension)
    push_host: str = "127.0.0.1"
    push_port: int = 7684

    # Remote snapshots older than this are refreshed before being trusted
    usage_stale_seconds: float = 300.0

    # Bound for every bridge / remote API round-trip
    request_timeout_seconds: float = 5.0

    # Light driver: "hue" talks to the bridge, "sim" only records commands
    light_mode: str = "hue"

    # Remote usage sources
    oauth_usage_url: str = "https://api.anthropic.com/api/oauth/usage"
    oauth_beta_header: str = "oauth-2025-04-20"
    cookie_api_base: str = "https://claude.ai"
    credentials_paths: list[Path] = Field(
        default_factory=lambda: [
            Path.home() / ".claude" / ".credentials.json",
            Path.home() / ".claude.ai" / ".credentials.json",
        ]
    )

    log_level: str = "INFO"
    log_file_name: str = "daemon.log"

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def usage_log_path(self) -> Path:
        return self.config_dir / "usage.log"

    @property
    def pid_path(self) -> Path:
        return self.config_dir / "daemon.pid"

    @property
    def log_path(self) -> Path:
        return self.config_dir / self.log_file_name


settings = Settings()


class ConfigError(RuntimeError):
    """The persisted configuration is missing or unreadable."""


# --- Persisted configuration (written by the setup wizard) ---

class _ConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class CieXY(_ConfigModel):
    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)


COLOR_PRESETS: dict[str, CieXY] = {
    "green": CieXY(x=0.2151, y=0.7106),
    "yellow": CieXY(x=0.4317, y=0.5007),
    "orange": CieXY(x=0.5562, y=0.4084),
    "red": CieXY(x=0.675, y=0.322),
    "blue": CieXY(x=0.153, y=0.048),
    "white": CieXY(x=0.3227, y=0.329),
    "purple": CieXY(x=0.2703, y=0.1398),
}


class BridgeConfig(_ConfigModel):
    ip: str
    username: str


class LightConfig(_ConfigModel):
    id: int
    name: str = ""


class ColorConfig(_ConfigModel):
    start: CieXY = COLOR_PRESETS["green"]
    end: CieXY = COLOR_PRESETS["red"]


class BrightnessConfig(_ConfigModel):
    start: float = Field(default=100, ge=0, le=100)
    end: float = Field(default=100, ge=0, le=100)


class UsageConfig(_ConfigModel):
    max_prompts: int = Field(default=45, ge=1)
    window_ms: int = Field(default=5 * 60 * 60 * 1000, gt=0)  # 5 hours


class DaemonConfig(_ConfigModel):
    transition_ms: int = Field(default=2000, ge=0)
    poll_interval_ms: int = Field(default=60_000, gt=0)


class ClaudeAuthConfig(_ConfigModel):
    cookie: str = ""
    org_id: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.cookie and self.org_id)


class HueConfig(_ConfigModel):
    bridge: BridgeConfig
    light: LightConfig
    colors: ColorConfig = ColorConfig()
    brightness: BrightnessConfig = BrightnessConfig()
    usage: UsageConfig = UsageConfig()
    daemon: DaemonConfig = DaemonConfig()
    claude: Optional[ClaudeAuthConfig] = None


def load_config(path: Path) -> HueConfig:
    if not path.exists():
        raise ConfigError(f'Config not found at {path}. Run "usage-hue setup" first.')
    try:
        return HueConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except (ValidationError, OSError) as e:
        raise ConfigError(f"Config at {path} is invalid: {e}") from e


def save_config(config: HueConfig, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(by_alias=True, exclude_none=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
