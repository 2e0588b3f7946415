# services/channel.py
"""
Граница с каналом доставки. Форматирование, картинки и ретраи - на стороне канала,
пайплайну нужны только три операции.
"""
import itertools
import logging
from typing import List, Protocol, Tuple

from core.lots import Lot, status_display_name

logger = logging.getLogger(__name__)


class DeliveryChannel(Protocol):
    async def publish(self, chat_id: int, lot: Lot) -> int:
        """Отправляет объявление, возвращает message_id."""
        ...

    async def edit_published(self, chat_id: int, message_id: int, lot: Lot) -> bool:
        ...

    async def notify_operators(self, text: str) -> bool:
        ...


class LoggingChannel:
    """
    Канал для сухого прогона: ничего не отправляет, пишет в лог и запоминает вызовы.
    """
    def __init__(self):
        self._ids = itertools.count(1)
        self.published: List[Tuple[int, int, Lot]] = []
        self.edited: List[Tuple[int, int, Lot]] = []
        self.notifications: List[str] = []

    async def publish(self, chat_id: int, lot: Lot) -> int:
        message_id = next(self._ids)
        self.published.append((chat_id, message_id, lot))
        logger.info("[channel] publish #%d to %s: %s | %s", message_id, chat_id, lot.number, lot.title[:80])
        return message_id

    async def edit_published(self, chat_id: int, message_id: int, lot: Lot) -> bool:
        self.edited.append((chat_id, message_id, lot))
        logger.info(
            "[channel] edit #%d in %s: %s -> %s",
            message_id, chat_id, lot.number, status_display_name(lot.lot_status),
        )
        return True

    async def notify_operators(self, text: str) -> bool:
        self.notifications.append(text)
        logger.info("[channel] operators: %s", text.replace("\n", " | "))
        return True
