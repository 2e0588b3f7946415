# services/dedup.py
"""
Поиск одного и того же лота, опубликованного разными площадками.
Сравниваем нормализованные описания: точное совпадение или вхождение
одного в другое при близкой длине (площадки любят дописывать шапку/хвост).
"""
import re
from typing import Iterable, Optional

SIMILARITY_THRESHOLD = 0.7

NON_WORD_RE = re.compile(r"[^0-9а-яё\s]")
SPACES_RE = re.compile(r"\s+")


def normalize_title(title: str | None) -> str:
    if not title:
        return ""
    text = NON_WORD_RE.sub("", title.lower())
    return SPACES_RE.sub(" ", text).strip()


def is_similar(candidate: str, persisted: str, threshold: float = SIMILARITY_THRESHOLD) -> bool:
    """Оба аргумента уже нормализованы."""
    if not candidate or not persisted:
        return False
    if candidate == persisted:
        return True
    shorter, longer = sorted((candidate, persisted), key=len)
    if shorter not in longer:
        return False
    return len(shorter) / len(longer) > threshold


def find_duplicate(title: str, persisted_titles: Iterable[str | None]) -> Optional[str]:
    """Возвращает первый совпавший сохранённый заголовок или None."""
    candidate = normalize_title(title)
    if not candidate:
        return None
    for stored in persisted_titles:
        if is_similar(candidate, normalize_title(stored)):
            return stored
    return None
