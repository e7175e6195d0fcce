"""Config management for rzmx-mcp-server."""
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM_URL = "https://awsapi-gateway.rezoomex.com"
DEFAULT_LOGIN_URL = "https://workspace.rezoomex.com/account/login"

# env var -> (config key, default)
_INT_SETTINGS = {
    "PORT": ("port", 3000),
    "SESSION_TTL_SECONDS": ("session_ttl", 24 * 60 * 60),
    "SESSION_SWEEP_INTERVAL": ("session_sweep_interval", 60 * 60),
    "AUTH_CODE_TTL_SECONDS": ("auth_code_ttl", 5 * 60),
    "AUTH_SWEEP_INTERVAL": ("auth_sweep_interval", 60),
    "PICKUP_TOKEN_TTL_SECONDS": ("pickup_token_ttl", 5 * 60),
}

_FLOAT_SETTINGS = {
    "IDENTITY_TIMEOUT": ("identity_timeout", 10.0),
    "UPSTREAM_TIMEOUT": ("upstream_timeout", 30.0),
}


class Config:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = data or {}

    @property
    def upstream_base_url(self) -> str:
        return self.data.get("upstream_base_url", DEFAULT_UPSTREAM_URL).rstrip("/")

    @property
    def login_url(self) -> str:
        return self.data.get("login_url", DEFAULT_LOGIN_URL)

    @property
    def host(self) -> str:
        return self.data.get("host", "0.0.0.0")

    @property
    def port(self) -> int:
        return self.data.get("port", 3000)

    @property
    def base_uri(self) -> str:
        base = self.data.get("base_uri") or f"http://localhost:{self.port}"
        return base.rstrip("/")

    @property
    def session_ttl(self) -> int:
        return self.data.get("session_ttl", 24 * 60 * 60)

    @property
    def session_sweep_interval(self) -> int:
        return self.data.get("session_sweep_interval", 60 * 60)

    @property
    def auth_code_ttl(self) -> int:
        return self.data.get("auth_code_ttl", 5 * 60)

    @property
    def auth_sweep_interval(self) -> int:
        return self.data.get("auth_sweep_interval", 60)

    @property
    def pickup_token_ttl(self) -> int:
        return self.data.get("pickup_token_ttl", 5 * 60)

    @property
    def identity_timeout(self) -> float:
        return self.data.get("identity_timeout", 10.0)

    @property
    def upstream_timeout(self) -> float:
        return self.data.get("upstream_timeout", 30.0)

    @property
    def auth_mode(self) -> str:
        """'form' shows our own login form, 'delegate' sends users to the identity provider."""
        return self.data.get("auth_mode", "form")

    @property
    def enable_oauth(self) -> bool:
        return self.data.get("enable_oauth", True)

    @property
    def log_level(self) -> str:
        return self.data.get("log_level", "INFO")

    @property
    def log_file(self) -> Optional[str]:
        return self.data.get("log_file")


def _load_env_files() -> None:
    """Load .env (local override) or .env.public (bundled defaults)."""
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)
        return
    public_env = Path(__file__).parent / ".env.public"
    if public_env.exists():
        load_dotenv(public_env)


def load_config(environ: dict = None) -> Config:
    """Build config from the environment.

    Args:
        environ: Mapping to read instead of os.environ (env files are skipped).
    """
    if environ is None:
        _load_env_files()
        environ = os.environ

    data = {}

    for env_name, key in (
        ("REZOOMEX_BASE_URL", "upstream_base_url"),
        ("REZOOMEX_LOGIN_URL", "login_url"),
        ("HOST", "host"),
        ("BASE_URI", "base_uri"),
        ("LOG_LEVEL", "log_level"),
        ("LOG_FILE", "log_file"),
    ):
        value = environ.get(env_name)
        if value:
            data[key] = value

    for env_name, (key, default) in _INT_SETTINGS.items():
        data[key] = _parse_number(environ.get(env_name), int, default, env_name)

    for env_name, (key, default) in _FLOAT_SETTINGS.items():
        data[key] = _parse_number(environ.get(env_name), float, default, env_name)

    auth_mode = environ.get("AUTH_MODE", "form").lower()
    if auth_mode not in ("form", "delegate"):
        logger.warning(f"[CONFIG] Unknown AUTH_MODE {auth_mode!r}, using 'form'")
        auth_mode = "form"
    data["auth_mode"] = auth_mode

    data["enable_oauth"] = environ.get("ENABLE_OAUTH", "true").lower() == "true"

    return Config(data)


def _parse_number(raw, cast, default, name):
    if raw is None or raw == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"[CONFIG] Invalid value for {name}: {raw!r}, using {default}")
        return default
    if value <= 0:
        logger.warning(f"[CONFIG] {name} must be positive, using {default}")
        return default
    return value
