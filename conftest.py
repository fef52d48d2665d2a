"""
Unit test conftest — isolate the flat environment overrides so that
Settings tests are not affected by a developer's or CI's real connection
details.
"""
import pytest

_OVERRIDE_ENV_VARS = [
    "SERVER_HOST",
    "SERVER_PORT",
    "BOT_VERSION",
    "BOT_USERNAME",
    "BOT_AUTH",
    "BOT_PASSWORD",
    "COMMAND_SENDER",
    "BRIDGE_URL",
    "PORT",
    "NOMADBOT_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_overrides_from_env(monkeypatch):
    """Remove override env vars for every unit test so Settings() behaves
    as if only config.yaml and defaults are present unless the test
    explicitly provides them. Also disables .env file loading so local
    developer .env files don't leak into tests."""
    for var in _OVERRIDE_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import nomadbot.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
