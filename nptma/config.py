"""Runtime configuration for nptma.

All settings come from the environment (a local `.env` file is honored).
Missing required values are fatal: the gateway cannot serve any route
without them, so `load_settings()` raises before the first request.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv

load_dotenv()

REQUIRED_ENV = (
    "BOT_TOKEN",
    "OWNER_CHAT_ID",
    "ALLOWED_ORIGIN",
    "DB_ENDPOINT",
    "DB_NAME",
    "DB_TABLE",
)

DEFAULT_AUTH_TTL_SECONDS = 3600
DEFAULT_LEAD_RATE_LIMIT_SECONDS = 300
DEFAULT_TELEGRAM_API_BASE = "https://api.telegram.org"

CREDENTIALS_MODE_URL = "url"
CREDENTIALS_MODE_ENV = "env"
CREDENTIALS_MODES = (CREDENTIALS_MODE_URL, CREDENTIALS_MODE_ENV)

_DEFAULT_PORTS = {"http": 80, "https": 443}


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or malformed."""


@dataclass(frozen=True)
class Settings:
    """Process-wide settings for the gateway."""

    bot_token: str
    owner_chat_id: str
    allowed_origin: str
    db_endpoint: str
    db_name: str
    db_table: str

    auth_ttl_seconds: int = DEFAULT_AUTH_TTL_SECONDS
    lead_rate_limit_seconds: int = DEFAULT_LEAD_RATE_LIMIT_SECONDS
    telegram_api_base: str = DEFAULT_TELEGRAM_API_BASE
    db_credentials_mode: str = CREDENTIALS_MODE_URL
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    log_level: str = "INFO"

    def __repr__(self) -> str:
        # Keep secrets out of logs and tracebacks.
        return (
            f"Settings(owner_chat_id={self.owner_chat_id!r}, allowed_origin={self.allowed_origin!r}, "
            f"db_endpoint={self.db_endpoint!r}, db_name={self.db_name!r}, db_table={self.db_table!r}, "
            f"auth_ttl_seconds={self.auth_ttl_seconds}, lead_rate_limit_seconds={self.lead_rate_limit_seconds}, "
            f"db_credentials_mode={self.db_credentials_mode!r})"
        )

    @property
    def canonical_origin(self) -> str:
        return normalize_origin(self.allowed_origin)


def normalize_origin(url_value: Optional[str]) -> str:
    """Reduce a URL to its origin (scheme://host[:port]).

    Default ports are dropped and the host is lowercased, the way browsers
    serialize the `Origin` header. Values that do not parse as absolute URLs
    are returned unchanged.
    """
    if not url_value:
        return ""
    try:
        parsed = urlsplit(url_value.strip())
        port = parsed.port
    except ValueError:
        return url_value
    if not parsed.scheme or not parsed.hostname:
        return url_value

    scheme = parsed.scheme.lower()
    host = parsed.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"
    return f"{scheme}://{host}"


def _get(env: Mapping[str, str], name: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    value = env.get(name)
    if value is None or value.strip() == "":
        if required:
            raise ConfigurationError(f"Missing required env: {name}")
        return default
    return value.strip()


def _get_positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment.

    Args:
        env: Mapping to read from. Defaults to `os.environ`.

    Raises:
        ConfigurationError: If a required variable is missing or a value is invalid.
    """
    env = os.environ if env is None else env

    missing = [name for name in REQUIRED_ENV if not (env.get(name) or "").strip()]
    if missing:
        raise ConfigurationError(f"Missing required env: {', '.join(missing)}")

    credentials_mode = (_get(env, "DB_CREDENTIALS_MODE", CREDENTIALS_MODE_URL) or "").lower()
    if credentials_mode not in CREDENTIALS_MODES:
        raise ConfigurationError(
            f"DB_CREDENTIALS_MODE must be one of {', '.join(CREDENTIALS_MODES)}, got {credentials_mode!r}"
        )

    db_user = _get(env, "DB_USER")
    db_password = _get(env, "DB_PASSWORD")
    if credentials_mode == CREDENTIALS_MODE_ENV and not db_user:
        raise ConfigurationError("Missing required env: DB_USER (DB_CREDENTIALS_MODE=env)")

    return Settings(
        bot_token=_get(env, "BOT_TOKEN", required=True),
        owner_chat_id=_get(env, "OWNER_CHAT_ID", required=True),
        allowed_origin=_get(env, "ALLOWED_ORIGIN", required=True),
        db_endpoint=_get(env, "DB_ENDPOINT", required=True),
        db_name=_get(env, "DB_NAME", required=True),
        db_table=_get(env, "DB_TABLE", required=True),
        auth_ttl_seconds=_get_positive_int(env, "AUTH_TTL_SECONDS", DEFAULT_AUTH_TTL_SECONDS),
        lead_rate_limit_seconds=_get_positive_int(env, "LEAD_RATE_LIMIT_SECONDS", DEFAULT_LEAD_RATE_LIMIT_SECONDS),
        telegram_api_base=(_get(env, "TELEGRAM_API_BASE", DEFAULT_TELEGRAM_API_BASE) or "").rstrip("/"),
        db_credentials_mode=credentials_mode,
        db_user=db_user,
        db_password=db_password,
        log_level=(_get(env, "LOG_LEVEL", "INFO") or "INFO").upper(),
    )
