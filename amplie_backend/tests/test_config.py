import pytest

from amplie_backend.whatsapp.config import SessionSettings, build_settings, load_session_settings
from amplie_backend.whatsapp.errors import ConfigError
from amplie_backend.whatsapp.models import DEFAULT_WEBHOOK_EVENTS


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "WHATSAPP_SESSION_CONFIG_INLINE",
        "WHATSAPP_SESSION_CONFIG",
        "WHATSAPP_POLL_INTERVAL_S",
        "WHATSAPP_MAX_POLL_ATTEMPTS",
        "WHATSAPP_PAIRING_TIMEOUT_S",
        "WHATSAPP_HTTP_TIMEOUT_S",
        "WHATSAPP_ATTACHMENTS_BUCKET",
        "PUBLIC_BACKEND_URL",
        "WHATSAPP_DEV_SANDBOX",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_configuration():
    settings = load_session_settings()
    assert settings == SessionSettings()
    assert settings.poll_interval_s == 5.0
    assert settings.max_poll_attempts == 24
    assert settings.default_webhook_events == tuple(DEFAULT_WEBHOOK_EVENTS)


def test_inline_json_nested_under_whatsapp(monkeypatch):
    monkeypatch.setenv(
        "WHATSAPP_SESSION_CONFIG_INLINE",
        '{"whatsapp": {"poll_interval_s": 2, "max_poll_attempts": 10, "default_webhook_events": ["connection_update"]}}',
    )
    settings = load_session_settings()
    assert settings.poll_interval_s == 2.0
    assert settings.max_poll_attempts == 10
    assert settings.default_webhook_events == ("CONNECTION_UPDATE",)


def test_yaml_file_with_env_override(monkeypatch, tmp_path):
    cfg = tmp_path / "session.yaml"
    cfg.write_text(
        "poll_interval_s: 3\n"
        "pairing_timeout_s: 60\n"
        "dev_sandbox_enabled: true\n"
        "public_base_url: https://crm.example.com/\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("WHATSAPP_SESSION_CONFIG", str(cfg))
    monkeypatch.setenv("WHATSAPP_POLL_INTERVAL_S", "7.5")

    settings = load_session_settings()
    assert settings.poll_interval_s == 7.5
    assert settings.pairing_timeout_s == 60.0
    assert settings.dev_sandbox_enabled is True
    assert settings.public_base_url == "https://crm.example.com"


def test_unknown_keys_are_rejected():
    with pytest.raises(ConfigError) as exc:
        build_settings({"poll_interval": 5})
    assert exc.value.details == {"keys": ["poll_interval"]}


@pytest.mark.parametrize(
    "data",
    [
        {"poll_interval_s": 0},
        {"max_poll_attempts": "0"},
        {"max_poll_attempts": "many"},
        {"pairing_timeout_s": -1},
        {"default_webhook_events": "CONNECTION_UPDATE,NOPE"},
    ],
)
def test_invalid_values_are_config_errors(data):
    with pytest.raises(ConfigError):
        build_settings(data)


def test_broken_inline_json(monkeypatch):
    monkeypatch.setenv("WHATSAPP_SESSION_CONFIG_INLINE", '{"poll_interval_s": ')
    with pytest.raises(ConfigError):
        load_session_settings()


def test_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("WHATSAPP_SESSION_CONFIG", str(tmp_path / "nope.yaml"))
    with pytest.raises(ConfigError):
        load_session_settings()
