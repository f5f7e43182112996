"""Configuration for the Chatwork thread tool.

Values come from the process environment, optionally seeded from a .env file:

    CHATWORK_API_TOKEN      Chatwork API token (required for API commands)
    CHATWORK_API_BASE_URL   default: https://api.chatwork.com/v2
    API_TIMEOUT             HTTP timeout in seconds, default: 30
    API_RETRY_ATTEMPTS      default: 3
    API_RETRY_DELAY         base backoff delay in seconds, default: 1.0
    DB_PATH                 SQLite file, default: ./data/threads.db
    LOG_LEVEL               default: INFO
    LOG_FILE                optional log file

A Config value is built once by the caller and handed to the client and the
store; nothing here is global.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.chatwork.com/v2"
DEFAULT_DB_PATH = "./data/threads.db"
_PLACEHOLDER_TOKEN = "your_api_token_here"


@dataclass(frozen=True)
class Config:
    api_token: str = ""
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0
    retry_attempts: int = 3
    retry_delay: float = 1.0
    database_path: str = DEFAULT_DB_PATH
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"

    def require_token(self) -> str:
        """Return the API token or raise ConfigError when it is unset."""
        if not self.api_token or self.api_token == _PLACEHOLDER_TOKEN:
            raise ConfigError(
                "CHATWORK_API_TOKEN is required. "
                "Set it in the .env file or the environment."
            )
        return self.api_token


def load_dotenv(env_path: Path = Path(".env")) -> None:
    """Load key=value pairs from a .env file into os.environ (non-destructive)."""
    if not env_path.exists():
        return
    try:
        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            if key and key not in os.environ:
                os.environ[key] = value
    except OSError as e:
        logger.warning("Could not read %s: %s", env_path, e)


def _number(env: Mapping[str, str], key: str, default, cast):
    raw = env.get(key, "")
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None


def load_config(
    env: Optional[Mapping[str, str]] = None,
    env_path: Optional[Path] = Path(".env"),
) -> Config:
    """Build a Config from *env* (default: os.environ after reading *env_path*).

    The token is not validated here; commands that talk to the API call
    Config.require_token() so store-only commands work without one.
    """
    if env is None:
        if env_path is not None:
            load_dotenv(env_path)
        env = os.environ

    return Config(
        api_token=env.get("CHATWORK_API_TOKEN", ""),
        base_url=env.get("CHATWORK_API_BASE_URL", "") or DEFAULT_BASE_URL,
        timeout=_number(env, "API_TIMEOUT", 30.0, float),
        retry_attempts=_number(env, "API_RETRY_ATTEMPTS", 3, int),
        retry_delay=_number(env, "API_RETRY_DELAY", 1.0, float),
        database_path=env.get("DB_PATH", "") or DEFAULT_DB_PATH,
        log_level=(env.get("LOG_LEVEL", "") or "INFO").upper(),
        log_file=env.get("LOG_FILE") or None,
    )
