import json
import logging

from config import DEFAULT_UPSTREAM_URL, Config, load_config
from logging_config import JSONFormatter


def test_defaults():
    config = load_config({})

    assert config.upstream_base_url == DEFAULT_UPSTREAM_URL
    assert config.port == 3000
    assert config.base_uri == "http://localhost:3000"
    assert config.session_ttl == 86400
    assert config.auth_code_ttl == 300
    assert config.pickup_token_ttl == 300
    assert config.auth_mode == "form"
    assert config.enable_oauth is True


def test_environment_overrides():
    config = load_config({
        "REZOOMEX_BASE_URL": "https://api.example.test/",
        "BASE_URI": "https://mcp.example.test/",
        "PORT": "8080",
        "AUTH_CODE_TTL_SECONDS": "120",
        "IDENTITY_TIMEOUT": "2.5",
        "AUTH_MODE": "DELEGATE",
        "ENABLE_OAUTH": "false",
    })

    assert config.upstream_base_url == "https://api.example.test"
    assert config.base_uri == "https://mcp.example.test"
    assert config.port == 8080
    assert config.auth_code_ttl == 120
    assert config.identity_timeout == 2.5
    assert config.auth_mode == "delegate"
    assert config.enable_oauth is False


def test_invalid_numbers_fall_back_to_defaults(caplog):
    with caplog.at_level(logging.WARNING):
        config = load_config({"PORT": "eighty", "SESSION_TTL_SECONDS": "-5"})

    assert config.port == 3000
    assert config.session_ttl == 86400
    assert "PORT" in caplog.text


def test_unknown_auth_mode_falls_back_to_form():
    assert load_config({"AUTH_MODE": "magic"}).auth_mode == "form"


def test_empty_config():
    assert Config().login_url.startswith("https://")


def test_json_formatter_lifts_tag():
    record = logging.LogRecord("rzmx", logging.INFO, __file__, 1, "[AUTH] Issued code %s", ("abc",), None)

    entry = json.loads(JSONFormatter().format(record))

    assert entry["tag"] == "AUTH"
    assert entry["message"] == "Issued code abc"
    assert entry["service"] == "rzmx-mcp-server"


def test_json_formatter_without_tag():
    record = logging.LogRecord("rzmx", logging.WARNING, __file__, 1, "plain message", None, None)

    entry = json.loads(JSONFormatter().format(record))

    assert entry["tag"] is None
    assert entry["level"] == "WARNING"
