# database/lot_service.py
"""
Сервис хранения лотов: единственное место с долговременным состоянием.
Используется источниками (дедупликация, no-match), сверкой и оркестратором.
"""
import logging
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError

from core.lots import Lot, LotStatus
from database.connection import get_session
from database.repository import LotRepo, MessageMappingRepo, NoMatchRepo, row_to_lot
from services.dedup import find_duplicate

logger = logging.getLogger(__name__)


class LotService:
    """
    Высокоуровневый сервис для работы с лотами.
    Каждая операция открывает свою сессию; upsert пачки идёт одной транзакцией.
    """

    async def upsert(self, lots: Iterable[Lot]) -> int:
        """
        Сохраняет пачку лотов атомарно.

        Returns:
            количество сохранённых лотов; 0, если транзакция откатилась
        """
        lots = list(lots)
        if not lots:
            return 0
        try:
            async with get_session() as session:
                repo = LotRepo(session)
                for lot in lots:
                    await repo.upsert(lot)
        except SQLAlchemyError as e:
            logger.error("[db] upsert of %d lots rolled back: %s", len(lots), e)
            return 0
        logger.info("[db] saved %d lots", len(lots))
        return len(lots)

    async def select_unsent(self, lots: Iterable[Lot]) -> List[Lot]:
        """Из переданных кандидатов: которых нет в БД или которые ещё не отправлены."""
        lots = list(lots)
        async with get_session() as session:
            flags = await LotRepo(session).existing_sent_flags([lot.number for lot in lots])

        result, seen = [], set()
        for lot in lots:
            if lot.number in seen or flags.get(lot.number, False):
                continue
            seen.add(lot.number)
            result.append(lot)
        return result

    async def known_numbers(self, numbers: Iterable[str]) -> Set[str]:
        """Какие из номеров уже есть в БД."""
        async with get_session() as session:
            flags = await LotRepo(session).existing_sent_flags(list(numbers))
        return set(flags)

    async def mark_sent(self, number: str) -> bool:
        async with get_session() as session:
            affected = await LotRepo(session).mark_sent(number)
        if not affected:
            logger.warning("[db] mark_sent: lot %s not found", number)
        return affected

    async def get(self, number: str) -> Optional[Lot]:
        async with get_session() as session:
            row = await LotRepo(session).get(number)
            return row_to_lot(row) if row else None

    async def active_sent_lots(self) -> List[Lot]:
        async with get_session() as session:
            rows = await LotRepo(session).list_active_sent()
            return [row_to_lot(row) for row in rows]

    async def update_status(self, number: str, status: LotStatus) -> bool:
        async with get_session() as session:
            return await LotRepo(session).update_status(number, status)

    async def update_deadline(self, number: str, deadline: Optional[str]) -> bool:
        async with get_session() as session:
            return await LotRepo(session).update_deadline(number, deadline)

    # --- сообщения ---

    async def message_mappings(self, number: str) -> List[Tuple[int, int]]:
        """[(message_id, chat_id), ...]"""
        async with get_session() as session:
            return await MessageMappingRepo(session).list_for_lot(number)

    async def record_message_mapping(self, number: str, message_id: int, chat_id: int) -> bool:
        async with get_session() as session:
            return await MessageMappingRepo(session).add(number, message_id, chat_id)

    async def lot_number_by_message(self, message_id: int, chat_id: int) -> Optional[str]:
        async with get_session() as session:
            return await MessageMappingRepo(session).lot_number_by_message(message_id, chat_id)

    # --- no-match ---

    async def is_no_match_sent(self, lot_id: str) -> bool:
        async with get_session() as session:
            return await NoMatchRepo(session).exists(lot_id)

    async def mark_no_match_sent(self, lot_id: str) -> bool:
        async with get_session() as session:
            return await NoMatchRepo(session).add(lot_id)

    # --- дедупликация ---

    async def is_duplicate_by_description(self, title: str, exclude_number: Optional[str] = None) -> bool:
        """
        Есть ли в БД лот с тем же описанием. exclude_number - сам кандидат,
        чтобы повторный парсинг того же лота не считался дублем.
        Кандидат, который уже есть в БД, дублем не считается.
        """
        async with get_session() as session:
            repo = LotRepo(session)
            if exclude_number is not None and await repo.get(exclude_number) is not None:
                return False
            titles = await repo.list_titles(exclude_number)
        match = find_duplicate(title, titles)
        if match is not None:
            logger.info("[dedup] %r looks like already stored %r", title[:80], match[:80])
            return True
        return False


lot_service = LotService()
