# core/utils.py
import logging
import os
from typing import List

from dotenv import load_dotenv
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def env(name: str, default: str | None = None) -> str:
    load_dotenv(override=False)
    val = os.getenv(name, default)
    if val is None:
        raise RuntimeError(f"Missing env var: {name}")
    return val


def env_list(name: str, default: str = "") -> List[str]:
    """Список через запятую: пустые элементы и пробелы по краям отбрасываются."""
    return split_csv(env(name, default))


def split_csv(value: str | None) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def ensure_dirs(*paths: str):
    for p in paths:
        Path(p).mkdir(parents=True, exist_ok=True)


def setup_logging(level: str = "INFO"):
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # httpx логирует каждый запрос на INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
