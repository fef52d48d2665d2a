"""
tests/unit/test_config.py — Settings Hardening Tests

Covers:
  - Defaults load cleanly with no YAML and no environment
  - Section validators: ports, auth, bridge url, reconnect ordering,
    idle bands, rest rule, policy mode/sleep, log level
  - Flat env vars override the YAML sections
  - validate_all() raises ConfigError with a numbered list
  - NOMADBOT_CONFIG env var is respected by load_settings()
  - Explicit config_path argument takes priority over env var
"""

from __future__ import annotations

import os
import textwrap
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError


# ── Helpers ───────────────────────────────────────────────────────────────────

def _make_settings(**overrides):
    """Build a Settings object from keyword overrides (no YAML file needed)."""
    from nomadbot.config.settings import Settings
    return Settings(**overrides)


# ── Defaults ──────────────────────────────────────────────────────────────────

class TestDefaults:
    def test_defaults(self):
        s = _make_settings()
        assert s.target_host == "localhost"
        assert s.target_port == 25565
        assert s.protocol_version is None
        assert s.username == "NomadBot"
        assert s.auth == "offline"
        assert s.allowed_sender is None
        assert s.status_port == 3000
        assert s.reconnect.base_delay_s == 10.0
        assert s.reconnect.duplicate_delay_s == 60.0
        assert s.behavior.tick_interval_s == 3.0
        assert s.policy.mode == "autonomous"

    def test_defaults_pass_validate_all(self):
        _make_settings().validate_all()


# ── Section validators ────────────────────────────────────────────────────────

class TestSectionValidators:
    def test_server_port_range(self):
        from nomadbot.config.settings import ServerConfig
        with pytest.raises(ValidationError):
            ServerConfig(port=70000)

    def test_auth_lowercased(self):
        from nomadbot.config.settings import IdentityConfig
        assert IdentityConfig(auth="Microsoft").auth == "microsoft"

    def test_auth_rejected(self):
        from nomadbot.config.settings import IdentityConfig
        with pytest.raises(ValidationError):
            IdentityConfig(auth="mojang")

    def test_bridge_url_scheme(self):
        from nomadbot.config.settings import BridgeConfig
        with pytest.raises(ValidationError) as exc_info:
            BridgeConfig(url="http://127.0.0.1:8765")
        assert "ws://" in str(exc_info.value)

    def test_reconnect_max_below_base(self):
        from nomadbot.config.settings import ReconnectConfig
        with pytest.raises(ValidationError):
            ReconnectConfig(base_delay_s=30, max_delay_s=10)

    def test_reconnect_duplicate_must_exceed_base(self):
        from nomadbot.config.settings import ReconnectConfig
        with pytest.raises(ValidationError) as exc_info:
            ReconnectConfig(base_delay_s=10, duplicate_delay_s=10)
        assert "duplicate_delay_s" in str(exc_info.value)

    def test_reconnect_multiplier_floor(self):
        from nomadbot.config.settings import ReconnectConfig
        with pytest.raises(ValidationError):
            ReconnectConfig(multiplier=0.5)

    @pytest.mark.parametrize("shuffle,nothing", [(0.2, 0.1), (-0.1, 0.1), (0.1, 1.5)])
    def test_idle_bands_rejected(self, shuffle, nothing):
        from nomadbot.config.settings import BehaviorConfig
        with pytest.raises(ValidationError):
            BehaviorConfig(idle_bands={"shuffle": shuffle, "nothing": nothing})

    def test_idle_bands_from_dict(self):
        from nomadbot.config.settings import BehaviorConfig
        cfg = BehaviorConfig(idle_bands={"shuffle": 0.1, "nothing": 0.3})
        assert cfg.idle_bands.nothing == 0.3

    def test_unknown_rest_rule(self):
        from nomadbot.config.settings import BehaviorConfig
        with pytest.raises(ValidationError) as exc_info:
            BehaviorConfig(rest_rule="always")
        assert "not supported" in str(exc_info.value)

    def test_zero_tick_interval(self):
        from nomadbot.config.settings import BehaviorConfig
        with pytest.raises(ValidationError):
            BehaviorConfig(tick_interval_s=0)

    def test_policy_mode(self):
        from nomadbot.config.settings import PolicyConfig
        with pytest.raises(ValidationError):
            PolicyConfig(mode="berserk")

    def test_log_level_uppercased(self):
        from nomadbot.config.settings import LoggingConfig
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")


# ── Environment overrides ─────────────────────────────────────────────────────

class TestEnvOverrides:
    def test_flat_env_vars(self, monkeypatch):
        monkeypatch.setenv("SERVER_HOST", "mc.example.net")
        monkeypatch.setenv("SERVER_PORT", "25570")
        monkeypatch.setenv("BOT_USERNAME", "Wanderer")
        monkeypatch.setenv("COMMAND_SENDER", "Alex")
        monkeypatch.setenv("PORT", "8080")
        s = _make_settings()
        assert s.target_host == "mc.example.net"
        assert s.target_port == 25570
        assert s.username == "Wanderer"
        assert s.allowed_sender == "Alex"
        assert s.status_port == 8080

    @pytest.mark.parametrize("raw", ["", "false", "null"])
    def test_blank_version_means_auto(self, monkeypatch, raw):
        monkeypatch.setenv("BOT_VERSION", raw)
        assert _make_settings().protocol_version is None

    def test_env_beats_yaml_section(self, monkeypatch):
        monkeypatch.setenv("BOT_AUTH", "MICROSOFT")
        s = _make_settings(identity={"username": "Yaml", "auth": "offline"})
        assert s.username == "Yaml"
        assert s.auth == "microsoft"


# ── validate_all ──────────────────────────────────────────────────────────────

class TestValidateAll:
    def test_microsoft_needs_password(self):
        from nomadbot.config.settings import ConfigError
        s = _make_settings(identity={"auth": "microsoft"})
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        assert "BOT_PASSWORD" in str(exc_info.value)

    def test_bad_bridge_env_url(self, monkeypatch):
        from nomadbot.config.settings import ConfigError
        monkeypatch.setenv("BRIDGE_URL", "tcp://bridge:1")
        with pytest.raises(ConfigError) as exc_info:
            _make_settings().validate_all()
        assert "BRIDGE_URL" in str(exc_info.value)

    def test_errors_are_numbered(self, monkeypatch):
        from nomadbot.config.settings import ConfigError
        monkeypatch.setenv("BRIDGE_URL", "tcp://bridge:1")
        monkeypatch.setenv("PORT", "25565")
        with pytest.raises(ConfigError) as exc_info:
            _make_settings().validate_all()
        message = str(exc_info.value)
        assert "  1. " in message
        assert "  2. " in message
        assert "2 configuration problem(s)" in message

    def test_port_collision_ignored_when_status_disabled(self, monkeypatch):
        monkeypatch.setenv("PORT", "25565")
        _make_settings(status={"enabled": False}).validate_all()


# ── Config path resolution ────────────────────────────────────────────────────

class TestConfigPathResolution:
    def test_explicit_path_takes_priority(self, tmp_path):
        from nomadbot.config.settings import _resolve_config_path
        cfg_file = tmp_path / "custom.yaml"
        env_file = tmp_path / "env.yaml"
        with patch.dict(os.environ, {"NOMADBOT_CONFIG": str(env_file)}):
            resolved = _resolve_config_path(str(cfg_file))
        assert resolved == Path(str(cfg_file))

    def test_env_var_used_when_no_explicit_path(self, tmp_path):
        from nomadbot.config.settings import _resolve_config_path
        env_file = tmp_path / "env_config.yaml"
        with patch.dict(os.environ, {"NOMADBOT_CONFIG": str(env_file)}):
            resolved = _resolve_config_path(None)
        assert resolved == Path(str(env_file))

    def test_default_path(self):
        from nomadbot.config.settings import _resolve_config_path
        assert _resolve_config_path(None) == Path("config/config.yaml")

    def test_missing_file_gives_defaults(self, tmp_path):
        from nomadbot.config.settings import load_settings
        s = load_settings(tmp_path / "absent.yaml")
        assert s.username == "NomadBot"

    def test_load_settings_from_file(self, tmp_path):
        from nomadbot.config.settings import get_settings, load_settings
        cfg_file = tmp_path / "test_config.yaml"
        cfg_file.write_text(textwrap.dedent("""
            server:
              host: "play.example.org"
              port: 25566
            reconnect:
              base_delay_s: 5
              duplicate_delay_s: 45
            behavior:
              rest_rule: "night_clear"
              idle_bands:
                shuffle: 0.1
                nothing: 0.2
            policy:
              mode: "task_only"
            unrelated_section:
              ignored: true
        """), encoding="utf-8")
        s = load_settings(str(cfg_file))
        assert s.target_host == "play.example.org"
        assert s.target_port == 25566
        assert s.reconnect.duplicate_delay_s == 45
        assert s.behavior.rest_rule == "night_clear"
        assert s.behavior.idle_bands.shuffle == 0.1
        assert s.policy.mode == "task_only"
        assert get_settings() is s

    def test_shipped_config_is_valid(self):
        from nomadbot.config.settings import load_settings
        root = Path(__file__).resolve().parents[2]
        s = load_settings(root / "config" / "config.yaml")
        s.validate_all()
