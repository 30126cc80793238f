from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_BACKENDS = ("sqlite", "postgres")
_LOG_FORMATS = ("text", "json")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    db_backend: str = "sqlite"
    db_path: str = "poker.db"
    db_host: Optional[str] = None
    db_port: int = 5432
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_pool_min: int = 1
    db_pool_max: int = 10
    log_level: str = "INFO"
    log_format: str = "text"
    default_currency: str = "USD"

    @property
    def postgres_params(self) -> dict:
        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
        }


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {value}")
    return value


def _choice(env: Mapping[str, str], key: str, default: str, choices, normalize=str.lower) -> str:
    value = normalize(env.get(key, default).strip())
    if value not in choices:
        raise ConfigError(f"{key} must be one of {', '.join(choices)}, got {value!r}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build `Settings` from the process environment.

    A `.env` file in the working directory is loaded first; variables
    already set in the environment take precedence over it. Tests can pass
    `env` directly to skip both.
    """

    if env is None:
        load_dotenv()
        env = os.environ

    backend = _choice(env, "DB_BACKEND", "sqlite", _BACKENDS)
    currency = env.get("DEFAULT_CURRENCY", "USD").strip()
    if not _CURRENCY_RE.match(currency):
        raise ConfigError(f"DEFAULT_CURRENCY must be a 3-letter upper-case code, got {currency!r}")

    pool_min = _int(env, "DB_POOL_MIN", 1)
    pool_max = _int(env, "DB_POOL_MAX", 10)
    if pool_max < 1 or pool_min > pool_max:
        raise ConfigError(f"Invalid pool bounds: DB_POOL_MIN={pool_min}, DB_POOL_MAX={pool_max}")

    settings = Settings(
        db_backend=backend,
        db_path=env.get("DB_PATH", "poker.db"),
        db_host=env.get("DB_HOST") or None,
        db_port=_int(env, "DB_PORT", 5432),
        db_name=env.get("DB_NAME") or None,
        db_user=env.get("DB_USER") or None,
        db_password=env.get("DB_PASSWORD") or None,
        db_pool_min=pool_min,
        db_pool_max=pool_max,
        log_level=_choice(env, "LOG_LEVEL", "INFO", _LOG_LEVELS, normalize=str.upper),
        log_format=_choice(env, "LOG_FORMAT", "text", _LOG_FORMATS),
        default_currency=currency,
    )

    if backend == "postgres":
        missing = [
            key
            for key, value in (
                ("DB_HOST", settings.db_host),
                ("DB_NAME", settings.db_name),
                ("DB_USER", settings.db_user),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"DB_BACKEND=postgres requires {', '.join(missing)} to be set")

    return settings
