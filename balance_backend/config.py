from __future__ import annotations

from dataclasses import dataclass
import os

from dotenv import load_dotenv

load_dotenv()


def _getenv_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    store_db_path: str
    table_prefix: str
    metrics_config_path: str | None
    column_cache_ttl_s: int
    max_distinct_values: int
    list_min_limit: int
    list_max_limit: int
    list_default_limit: int
    labels_max_limit: int
    log_level: str
    cors_origins: tuple[str, ...]


def load_settings() -> Settings:
    return Settings(
        store_db_path=os.getenv("STORE_DB_PATH", "analytics.db"),
        table_prefix=os.getenv("TABLE_PREFIX", ""),
        metrics_config_path=os.getenv("METRICS_CONFIG_PATH") or None,
        column_cache_ttl_s=_getenv_int("COLUMN_CACHE_TTL_S", 300),
        max_distinct_values=_getenv_int("MAX_DISTINCT_VALUES", 10000),
        list_min_limit=_getenv_int("LIST_MIN_LIMIT", 20),
        list_max_limit=_getenv_int("LIST_MAX_LIMIT", 100),
        list_default_limit=_getenv_int("LIST_DEFAULT_LIMIT", 50),
        labels_max_limit=_getenv_int("LABELS_MAX_LIMIT", 1000),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=_getenv_list("CORS_ORIGINS", "*"),
    )


settings = load_settings()


def get_settings() -> Settings:
    return settings
