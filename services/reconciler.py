# services/reconciler.py
"""
Сверка уже опубликованных лотов со свежими данными:
- сдвиг срока подачи заявок -> обновление в БД + уведомление операторам;
- лот появился в ленте завершённых -> новый статус + правка всех его сообщений.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from core.lots import Lot, LotStatus
from services.channel import DeliveryChannel
from services.closed_lots import ClosedLotsFeed

logger = logging.getLogger(__name__)


@dataclass
class DeadlineChange:
    lot: Lot
    old_deadline: str
    new_deadline: str


@dataclass
class StatusChange:
    lot: Lot
    old_status: Optional[LotStatus]
    new_status: LotStatus
    edited_messages: int = 0


def format_deadline_change(change: DeadlineChange) -> str:
    return (
        "⚠️ Изменение срока подачи заявок\n\n"
        f"Лот: {change.lot.title}\n\n"
        f"Старый срок: {change.old_deadline}\n"
        f"Новый срок: {change.new_deadline}\n\n"
        f"{change.lot.link}"
    )


class Reconciler:
    def __init__(self, store, closed_feed: ClosedLotsFeed, channel: DeliveryChannel):
        """
        store - LotService (или любой объект с теми же методами):
        active_sent_lots, update_deadline, update_status, get, message_mappings.
        """
        self.store = store
        self.closed_feed = closed_feed
        self.channel = channel

    async def reconcile(self, fresh_lots: Iterable[Lot]) -> Tuple[List[DeadlineChange], List[StatusChange]]:
        active = await self.store.active_sent_lots()
        logger.info("[reconcile] %d active sent lots", len(active))
        if not active:
            return [], []

        fresh: Dict[str, Lot] = {lot.number: lot for lot in fresh_lots}
        deadline_changes = []
        for stored in active:
            change = await self._check_deadline(stored, fresh.get(stored.number))
            if change is not None:
                deadline_changes.append(change)

        closed = await self.closed_feed.fetch_statuses(lot.number for lot in active)
        status_changes = []
        for stored in active:
            new_status = closed.get(stored.number)
            if new_status is None or new_status == stored.lot_status:
                continue
            status_changes.append(await self._apply_status(stored, new_status))

        logger.info(
            "[reconcile] done: %d deadline changes, %d status changes",
            len(deadline_changes), len(status_changes),
        )
        return deadline_changes, status_changes

    async def _check_deadline(self, stored: Lot, fresh: Optional[Lot]) -> Optional[DeadlineChange]:
        if fresh is None:
            return None
        old, new = stored.deadline, fresh.deadline
        # пустой срок в свежих данных - это провал парсинга, а не отмена срока
        if not old or not new or old == new:
            return None

        logger.info("[reconcile] deadline of %s changed: %s -> %s", stored.number, old, new)
        await self.store.update_deadline(stored.number, new)
        change = DeadlineChange(lot=stored, old_deadline=old, new_deadline=new)
        try:
            await self.channel.notify_operators(format_deadline_change(change))
        except Exception as e:
            logger.error("[reconcile] deadline notification for %s failed: %s", stored.number, e)
        return change

    async def _apply_status(self, stored: Lot, status: LotStatus) -> StatusChange:
        logger.info("[reconcile] lot %s status: %s -> %s", stored.number, stored.lot_status, status.value)
        await self.store.update_status(stored.number, status)
        change = StatusChange(lot=stored, old_status=stored.lot_status, new_status=status)

        updated = await self.store.get(stored.number)
        if updated is None:
            return change
        change.lot = updated

        for message_id, chat_id in await self.store.message_mappings(stored.number):
            try:
                if await self.channel.edit_published(chat_id, message_id, updated):
                    change.edited_messages += 1
                    logger.info("[reconcile] edited message %s in %s for %s", message_id, chat_id, stored.number)
                else:
                    logger.warning("[reconcile] message %s in %s not edited", message_id, chat_id)
            except Exception as e:
                logger.error("[reconcile] failed to edit message %s for %s: %s", message_id, stored.number, e)
        return change
