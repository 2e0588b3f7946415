# services/source_base.py
"""
Общий интерфейс источников лотов. Оркестратор работает только с LotSource,
конкретные площадки (RSS, ASP.NET-таблица, поисковое API) - его реализации.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from core.lots import Lot
from services.classifier import KeywordFilter, OperatorNotifier, RegionValidator, Verdict
from services.http import ClientFactory, create_client

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Ошибка источника целиком (не 200, редирект, HTML вместо ленты, битый конверт)."""


class DuplicateChecker(Protocol):
    async def is_duplicate_by_description(self, title: str, exclude_number: Optional[str] = None) -> bool: ...


class LotSource(ABC):
    name: str = "source"
    pacing_delay: float = 0.5
    default_address: Optional[str] = None

    def __init__(
        self,
        keyword_filter: KeywordFilter,
        region_validator: RegionValidator,
        duplicates: Optional[DuplicateChecker] = None,
        notifier: Optional[OperatorNotifier] = None,
        client_factory: ClientFactory = create_client,
        pacing_delay: Optional[float] = None,
    ):
        self.keyword_filter = keyword_filter
        self.region_validator = region_validator
        self.duplicates = duplicates
        self.notifier = notifier
        self.client_factory = client_factory
        if pacing_delay is not None:
            self.pacing_delay = pacing_delay

    @abstractmethod
    async def fetch(
        self,
        max_count: int,
        check_duplicates: bool = True,
        notify_on_ambiguous: bool = False,
    ) -> List[Lot]:
        """Возвращает до max_count лотов, прошедших регион, ключевые слова и (опционально) дедупликацию."""

    async def accept(self, lot: Lot, check_duplicates: bool, notify_on_ambiguous: bool) -> bool:
        """
        Общий фильтр: регион -> ключевые слова -> дубликаты с других площадок.
        Регион проверяется по тому, что реально извлечено со страницы; адрес
        по умолчанию подставляется только принятому лоту.
        """
        if not self.region_validator.is_in_region(lot):
            logger.info("[%s] %s rejected: outside region (%s)", self.name, lot.number, lot.address)
            return False

        try:
            matched = await self.keyword_filter.matches(
                lot.title, lot.address, lot_id=lot.number, link=lot.link, notify=notify_on_ambiguous,
            )
        except SQLAlchemyError as e:
            # недоступны no-match маркеры: вердикт по словам без уведомления
            logger.error("[%s] no-match lookup for %s failed: %s", self.name, lot.number, e)
            matched = self.keyword_filter.classify(lot.title, lot.address) is Verdict.INCLUDED
        if not matched:
            logger.info("[%s] %s rejected by keywords: %s", self.name, lot.number, lot.title[:80])
            return False

        if check_duplicates and self.duplicates is not None:
            try:
                duplicate = await self.duplicates.is_duplicate_by_description(lot.title, exclude_number=lot.number)
            except SQLAlchemyError as e:
                logger.error("[%s] duplicate check for %s failed, keeping lot: %s", self.name, lot.number, e)
                duplicate = False
            if duplicate:
                logger.info("[%s] %s skipped: duplicate of a stored lot", self.name, lot.number)
                return False

        if not lot.address and self.default_address:
            lot.address = self.default_address
        return True

    async def notify(self, text: str):
        if self.notifier is None:
            return
        try:
            await self.notifier.notify_operators(text)
        except Exception as e:
            logger.warning("[%s] failed to notify operators: %s", self.name, e)
