"""
config/settings.py — NomadBot Runtime Settings

Merges config.yaml (structure/defaults) with environment variables and .env
(connection target, credentials, command sender). Pydantic-powered: every
field is validated and typed at parse time.

  - Each section rejects out-of-range values as soon as it is parsed
  - validate_all() performs the cross-field startup checks and raises
    ConfigError with a numbered list of every problem found
  - load_settings() respects NOMADBOT_CONFIG as a fallback when no explicit
    config_path argument is given
  - Flat env vars (SERVER_HOST, BOT_USERNAME, ...) override the YAML sections
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_AUTH = {"offline", "microsoft"}
_VALID_MODES = {"autonomous", "task_only", "passive"}
_VALID_SLEEP = {"auto", "force", "deny"}
_VALID_REST_RULES = {"night", "night_clear", "night_or_thunder"}


def _valid_port(v: int, name: str) -> int:
    if not (1 <= v <= 65535):
        raise ValueError(f"{name} must be between 1 and 65535, got {v}")
    return v


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class ServerConfig(BaseModel):
    host: str = "localhost"
    port: int = 25565
    version: Optional[str] = None  # None = let the bridge auto-detect

    @field_validator("port")
    @classmethod
    def _port(cls, v: int) -> int:
        return _valid_port(v, "server.port")


class IdentityConfig(BaseModel):
    username: str = "NomadBot"
    auth: str = "offline"

    @field_validator("auth")
    @classmethod
    def _valid_auth(cls, v: str) -> str:
        v = v.lower()
        if v not in _VALID_AUTH:
            raise ValueError(f"identity.auth must be one of {sorted(_VALID_AUTH)}, got '{v}'")
        return v


class BridgeConfig(BaseModel):
    url: str = "ws://127.0.0.1:8765"
    request_timeout_s: float = 60.0

    @field_validator("url")
    @classmethod
    def _ws_scheme(cls, v: str) -> str:
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(f"bridge.url must start with ws:// or wss://, got '{v}'")
        return v

    @field_validator("request_timeout_s")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("bridge.request_timeout_s must be > 0")
        return v


class ReconnectConfig(BaseModel):
    """Reconnect timing. multiplier == 1.0 keeps the delay flat."""
    base_delay_s: float = 10.0
    multiplier: float = 1.0
    max_delay_s: float = 300.0
    jitter_s: float = 0.0
    duplicate_delay_s: float = 60.0
    benign_error_patterns: list[str] = Field(default_factory=lambda: ["PartialReadError"])

    @field_validator("base_delay_s", "max_delay_s", "jitter_s", "duplicate_delay_s")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("reconnect delays must be >= 0")
        return v

    @field_validator("multiplier")
    @classmethod
    def _multiplier(cls, v: float) -> float:
        if v < 1.0:
            raise ValueError("reconnect.multiplier must be >= 1.0")
        return v

    @model_validator(mode="after")
    def _ordering(self) -> "ReconnectConfig":
        if self.max_delay_s < self.base_delay_s:
            raise ValueError("reconnect.max_delay_s must be >= reconnect.base_delay_s")
        if self.duplicate_delay_s <= self.base_delay_s:
            raise ValueError(
                "reconnect.duplicate_delay_s must be greater than reconnect.base_delay_s "
                "so a stale login can time out server-side"
            )
        return self


class IdleBands(BaseModel):
    """Cumulative upper bounds; wander takes everything above `nothing`."""
    shuffle: float = 0.05
    nothing: float = 0.15

    @model_validator(mode="after")
    def _cumulative(self) -> "IdleBands":
        if not (0.0 <= self.shuffle <= self.nothing <= 1.0):
            raise ValueError(
                "behavior.idle_bands must satisfy 0 <= shuffle <= nothing <= 1 "
                f"(got shuffle={self.shuffle}, nothing={self.nothing})"
            )
        return self


class BehaviorConfig(BaseModel):
    tick_interval_s: float = 3.0
    gaze_interval_s: float = 7.0
    low_health: float = 10.0
    low_food: float = 14.0
    sensor_range: float = 16.0
    melee_range: float = 3.0
    guard_range: float = 6.0
    strike_windup_s: float = 0.3
    bed_search_radius: float = 32.0
    task_search_radius: float = 24.0
    craft_threshold: int = 4
    rest_rule: str = "night"
    idle_bands: IdleBands = Field(default_factory=IdleBands)

    @field_validator("tick_interval_s", "gaze_interval_s", "sensor_range", "melee_range")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("behavior periods and ranges must be > 0")
        return v

    @field_validator("strike_windup_s")
    @classmethod
    def _non_negative_windup(cls, v: float) -> float:
        if v < 0:
            raise ValueError("behavior.strike_windup_s must be >= 0")
        return v

    @field_validator("craft_threshold")
    @classmethod
    def _positive_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError("behavior.craft_threshold must be >= 1")
        return v

    @field_validator("rest_rule")
    @classmethod
    def _known_rule(cls, v: str) -> str:
        if v not in _VALID_REST_RULES:
            raise ValueError(
                f"behavior.rest_rule '{v}' is not supported. "
                f"Supported: {sorted(_VALID_REST_RULES)}"
            )
        return v

    @field_validator("idle_bands", mode="before")
    @classmethod
    def _coerce_bands(cls, v: Any) -> Any:
        return IdleBands(**v) if isinstance(v, dict) else v


class PolicyConfig(BaseModel):
    """Initial Policy State; commands mutate it at runtime."""
    mode: str = "autonomous"
    sleep: str = "auto"
    alter_environment: bool = True
    collect_loot: bool = True
    chatter: bool = True

    @field_validator("mode")
    @classmethod
    def _mode(cls, v: str) -> str:
        if v not in _VALID_MODES:
            raise ValueError(f"policy.mode must be one of {sorted(_VALID_MODES)}, got '{v}'")
        return v

    @field_validator("sleep")
    @classmethod
    def _sleep(cls, v: str) -> str:
        if v not in _VALID_SLEEP:
            raise ValueError(f"policy.sleep must be one of {sorted(_VALID_SLEEP)}, got '{v}'")
        return v


class CommandsConfig(BaseModel):
    allowed_sender: Optional[str] = None
    prefix: str = ""
    whisper_replies: bool = False


class StatusConfig(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3000

    @field_validator("port")
    @classmethod
    def _port(cls, v: int) -> int:
        return _valid_port(v, "status.port")


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 20
    backup_count: int = 5
    console_output: bool = True
    json_format: Optional[bool] = None

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    NomadBot runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Flat overrides from the environment ---------------------------------
    server_host: Optional[str] = Field(default=None, alias="SERVER_HOST")
    server_port: Optional[int] = Field(default=None, alias="SERVER_PORT")
    bot_version: Optional[str] = Field(default=None, alias="BOT_VERSION")
    bot_username: Optional[str] = Field(default=None, alias="BOT_USERNAME")
    bot_auth: Optional[str] = Field(default=None, alias="BOT_AUTH")
    bot_password: Optional[str] = Field(default=None, alias="BOT_PASSWORD")
    command_sender: Optional[str] = Field(default=None, alias="COMMAND_SENDER")
    bridge_url: Optional[str] = Field(default=None, alias="BRIDGE_URL")
    http_port: Optional[int] = Field(default=None, alias="PORT")

    # -- Structured config (from config.yaml) --------------------------------
    server: ServerConfig = Field(default_factory=ServerConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    behavior: BehaviorConfig = Field(default_factory=BehaviorConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    status: StatusConfig = Field(default_factory=StatusConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("server_port", "http_port", mode="before")
    @classmethod
    def _coerce_port(cls, v: Any) -> Optional[int]:
        if v in (None, "", "null"):
            return None
        return _valid_port(int(v), "port")

    @field_validator("bot_version", "command_sender", "bot_password", mode="before")
    @classmethod
    def _blank_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().lower() in ("", "false", "null"):
            return None
        return v

    @field_validator("server", mode="before")
    @classmethod
    def _coerce_server(cls, v: Any) -> Any:
        return ServerConfig(**v) if isinstance(v, dict) else v

    @field_validator("identity", mode="before")
    @classmethod
    def _coerce_identity(cls, v: Any) -> Any:
        return IdentityConfig(**v) if isinstance(v, dict) else v

    @field_validator("bridge", mode="before")
    @classmethod
    def _coerce_bridge(cls, v: Any) -> Any:
        return BridgeConfig(**v) if isinstance(v, dict) else v

    @field_validator("reconnect", mode="before")
    @classmethod
    def _coerce_reconnect(cls, v: Any) -> Any:
        return ReconnectConfig(**v) if isinstance(v, dict) else v

    @field_validator("behavior", mode="before")
    @classmethod
    def _coerce_behavior(cls, v: Any) -> Any:
        return BehaviorConfig(**v) if isinstance(v, dict) else v

    @field_validator("policy", mode="before")
    @classmethod
    def _coerce_policy(cls, v: Any) -> Any:
        return PolicyConfig(**v) if isinstance(v, dict) else v

    @field_validator("commands", mode="before")
    @classmethod
    def _coerce_commands(cls, v: Any) -> Any:
        return CommandsConfig(**v) if isinstance(v, dict) else v

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> Any:
        return StatusConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def target_host(self) -> str:
        return self.server_host or self.server.host

    @property
    def target_port(self) -> int:
        return self.server_port or self.server.port

    @property
    def protocol_version(self) -> Optional[str]:
        return self.bot_version or self.server.version

    @property
    def username(self) -> str:
        return self.bot_username or self.identity.username

    @property
    def auth(self) -> str:
        return (self.bot_auth or self.identity.auth).lower()

    @property
    def allowed_sender(self) -> Optional[str]:
        return self.command_sender or self.commands.allowed_sender

    @property
    def bridge_endpoint(self) -> str:
        return self.bridge_url or self.bridge.url

    @property
    def status_port(self) -> int:
        return self.http_port or self.status.port

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Field validators catch type/value errors at parse time; this catches
        problems that only show up once env overrides are merged in.
        """
        errors: list[str] = []

        if not self.target_host.strip():
            errors.append("Server host is empty. Set SERVER_HOST or server.host.")

        if not self.username.strip():
            errors.append("Bot username is empty. Set BOT_USERNAME or identity.username.")

        if self.auth not in _VALID_AUTH:
            errors.append(
                f"BOT_AUTH '{self.auth}' is not supported. Use one of {sorted(_VALID_AUTH)}."
            )
        elif self.auth == "microsoft" and not self.bot_password:
            errors.append("BOT_AUTH=microsoft requires BOT_PASSWORD to be set in your .env file.")

        endpoint = self.bridge_endpoint
        if not endpoint.startswith(("ws://", "wss://")):
            errors.append(f"BRIDGE_URL '{endpoint}' must start with ws:// or wss://.")

        if self.status.enabled and self.status_port == self.target_port and self.target_host in (
            "localhost", "127.0.0.1",
        ):
            errors.append(
                f"Status port {self.status_port} collides with the local server port. "
                f"Change PORT or status.port."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nNomadBot startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

import threading as _threading

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {
    "server", "identity", "bridge", "reconnect", "behavior",
    "policy", "commands", "status", "logging",
}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. NOMADBOT_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("NOMADBOT_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)

    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config
    path on first use.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is not None:
            return _singleton
    return load_settings()
