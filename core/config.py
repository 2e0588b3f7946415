# core/config.py
"""Сборка настроек из .env / окружения. Читается один раз при старте."""
from core.models import (
    DEFAULT_EXCLUDE_KEYWORDS, DEFAULT_EXCLUDED_LOT_TYPES, DEFAULT_INCLUDE_KEYWORDS,
    CDTRF_BASE_URL, SBERAST_BASE_URL, TORGI_CLOSED_RSS_URL, TORGI_RSS_URL, TORGI_XHR_URL,
    RegionSignature, Settings,
)
from core.utils import env, env_list


def _chat_id(name: str) -> int:
    raw = env(name)
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Env var {name} must be an integer chat id, got {raw!r}")


def load_settings() -> Settings:
    """
    Без PARSE_GROUP_ID / ADMIN_GROUP_ID запуск невозможен: RuntimeError уходит наверх.
    """
    return Settings(
        target_chat_id=_chat_id("PARSE_GROUP_ID"),
        admin_chat_id=_chat_id("ADMIN_GROUP_ID"),
        database_url=env("DATABASE_URL", "sqlite+aiosqlite:///data/lots.db"),
        include_keywords=env_list("FILTER_INCLUDE_KEYWORDS", DEFAULT_INCLUDE_KEYWORDS),
        exclude_keywords=env_list("FILTER_EXCLUDE_KEYWORDS", DEFAULT_EXCLUDE_KEYWORDS),
        excluded_lot_types=env_list("FILTER_EXCLUDED_LOT_TYPES", DEFAULT_EXCLUDED_LOT_TYPES),
        region=RegionSignature(
            code=env("REGION_CODE", "91"),
            name=env("REGION_NAME", "севастополь").lower(),
        ),
        rss_url=env("RSS_URL", TORGI_RSS_URL),
        xhr_url=env("XHR_URL", TORGI_XHR_URL),
        closed_rss_url=env("CLOSED_RSS_URL", TORGI_CLOSED_RSS_URL),
        cdtrf_base_url=env("CDTRF_BASE_URL", CDTRF_BASE_URL),
        sberast_base_url=env("SBERAST_BASE_URL", SBERAST_BASE_URL),
        operators_file=env("OPERATORS_FILE", "data/operators.json"),
        log_level=env("LOG_LEVEL", "INFO"),
    )
