# services/classifier.py
"""
Фильтрация лотов: регион (обязательная проверка) и ключевые слова.
Неопределённые лоты не отбрасываются молча: операторам один раз уходит уведомление.
"""
import hashlib
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Protocol

from core.lots import Lot
from core.models import RegionSignature

logger = logging.getLogger(__name__)

REGION_PASS_PERCENT = 80
TWO_DIGITS_RE = re.compile(r"^\d{2}")


class NoMatchStore(Protocol):
    async def is_no_match_sent(self, lot_id: str) -> bool: ...
    async def mark_no_match_sent(self, lot_id: str) -> bool: ...


class OperatorNotifier(Protocol):
    async def notify_operators(self, text: str) -> bool: ...


class Verdict(str, Enum):
    EXCLUDED = "excluded"
    INCLUDED = "included"
    NO_MATCH = "no_match"


def title_key(title: str) -> str:
    """Ключ для no-match, когда у лота нет идентификатора."""
    normalized = " ".join((title or "").lower().split())
    return "title-" + hashlib.md5(normalized.encode()).hexdigest()[:16]


def format_no_match(title: str, lot_id: str | None, link: str | None) -> str:
    lines = ["❓ Не удалось определить пригодность лота"]
    if lot_id and link:
        lines.append(f"ID: {lot_id}")
        lines.append(f"Ссылка: {link}")
    lines.append(f"Текст: {title}")
    return "\n".join(lines)


class KeywordFilter:
    def __init__(
        self,
        include: Iterable[str],
        exclude: Iterable[str],
        store: Optional[NoMatchStore] = None,
        notifier: Optional[OperatorNotifier] = None,
    ):
        self.include = [w.lower() for w in include if w.strip()]
        self.exclude = [w.lower() for w in exclude if w.strip()]
        self.store = store
        self.notifier = notifier

    def classify(self, title: str | None, address: str | None = None) -> Verdict:
        combined = f"{title or ''} {address or ''}".lower()
        for word in self.exclude:
            if word in combined:
                logger.debug("[filter] excluded by %r: %s", word, title)
                return Verdict.EXCLUDED
        for word in self.include:
            if word in combined:
                logger.debug("[filter] included by %r: %s", word, title)
                return Verdict.INCLUDED
        return Verdict.NO_MATCH

    async def matches(
        self,
        title: str | None,
        address: str | None = None,
        lot_id: str | None = None,
        link: str | None = None,
        notify: bool = False,
    ) -> bool:
        verdict = self.classify(title, address)
        if verdict is Verdict.NO_MATCH:
            logger.debug("[filter] no include/exclude match: %s", title)
            if notify:
                await self._notify_no_match(title or "", lot_id, link)
        return verdict is Verdict.INCLUDED

    async def _notify_no_match(self, title: str, lot_id: str | None, link: str | None):
        if self.store is None or self.notifier is None:
            return
        key = lot_id or title_key(title)
        if await self.store.is_no_match_sent(key):
            logger.info("[filter] no-match %s already reported, skipping", key)
            return

        text = format_no_match(title, lot_id, link)
        try:
            await self.notifier.notify_operators(text)
        except Exception as e:
            # канал упал - маркер не ставим, попробуем в следующий прогон
            logger.warning("[filter] failed to report no-match %s: %s", key, e)
            return
        await self.store.mark_no_match_sent(key)


@dataclass
class RegionCheck:
    is_valid: bool
    message: str
    wrong_regions: List[str] = field(default_factory=list)


class RegionValidator:
    """Проверка, что лот действительно из целевого региона (код 91 - Севастополь)."""

    def __init__(self, region: RegionSignature | None = None, pass_percent: int = REGION_PASS_PERCENT):
        self.region = region or RegionSignature()
        self.pass_percent = pass_percent

    def is_in_region(self, lot: Lot) -> bool:
        if lot.number and lot.number.startswith(self.region.code):
            return True
        if lot.cadastral_number and lot.cadastral_number.startswith(self.region.cadastral_prefix):
            return True
        if lot.address and self.region.name in lot.address.lower():
            return True
        if lot.title and self.region.name in lot.title.lower():
            return True
        return False

    @staticmethod
    def region_label(lot: Lot) -> Optional[str]:
        for value in (lot.number, lot.cadastral_number):
            if value and TWO_DIGITS_RE.match(value):
                return f"регион-{value[:2]}"
        if lot.address:
            addr = lot.address.lower()
            if "респ " in addr or "обл " in addr or "край " in addr:
                return lot.address[:30] + "..."
        return None

    def validate(self, lots: List[Lot]) -> RegionCheck:
        """Проверка всей пачки: меньше 80% лотов из региона - похоже, фильтр ленты не сработал."""
        if not lots:
            return RegionCheck(False, "Список лотов пуст")

        total = len(lots)
        wrong_regions: List[str] = []
        in_region = 0
        for lot in lots:
            if self.is_in_region(lot):
                in_region += 1
                continue
            label = self.region_label(lot)
            if label and label not in wrong_regions:
                wrong_regions.append(label)

        percent = in_region / total * 100
        if percent < self.pass_percent:
            wrong = total - in_region
            message = (
                f"Обнаружены лоты из неправильных регионов: {wrong}/{total} "
                f"({wrong / total * 100:.1f}%). Регионы: {', '.join(wrong_regions) or 'неизвестно'}"
            )
            logger.warning("[region] validation failed: %d/%d in region", in_region, total)
            return RegionCheck(False, message, wrong_regions)

        logger.info("[region] validation passed: %d/%d (%.1f%%)", in_region, total, percent)
        return RegionCheck(True, f"Найдено {in_region}/{total} лотов из региона ({percent:.1f}%)")
