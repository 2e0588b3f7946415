# database/repository.py
from typing import Optional, List, Tuple

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from core.lots import Lot, LotStatus
from database.models import Lot as LotRow, MessageMapping, NoMatchLot

# Поля, которые перезаписываются при каждом повторном парсинге
DESCRIPTIVE_FIELDS = (
    "title", "link", "address", "lot_type", "price", "monthly_price", "deposit",
    "area", "contract_term", "cadastral_number", "organizer", "deadline", "source",
)


def row_to_lot(row: LotRow) -> Lot:
    status = None
    if row.lot_status:
        try:
            status = LotStatus(row.lot_status)
        except ValueError:
            status = None
    return Lot(
        number=row.number,
        title=row.title or "",
        link=row.link or "",
        address=row.address,
        lot_type=row.lot_type,
        price=row.price,
        monthly_price=row.monthly_price,
        deposit=row.deposit,
        area=row.area,
        contract_term=row.contract_term,
        cadastral_number=row.cadastral_number,
        organizer=row.organizer,
        deadline=row.deadline,
        image_urls=list(row.image_urls or []),
        source=row.source or "",
        lot_status=status or LotStatus.ACTIVE,
        is_sent=bool(row.is_sent),
    )


class LotRepo:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, number: str) -> Optional[LotRow]:
        stmt = select(LotRow).where(LotRow.number == number)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, lot: Lot, keep_sent_deadline: bool = True) -> LotRow:
        """
        Создаёт или обновляет лот.
        is_sent не откатывается в False, lot_status меняется только если задан явно.
        keep_sent_deadline: у опубликованного лота срок не трогаем,
        его изменение обнаруживает и сохраняет сверка.
        """
        row = await self.get(lot.number)

        if row is None:
            row = LotRow(
                number=lot.number,
                image_urls=list(lot.image_urls),
                is_sent=lot.is_sent,
                lot_status=(lot.lot_status or LotStatus.ACTIVE).value,
            )
            for key in DESCRIPTIVE_FIELDS:
                setattr(row, key, getattr(lot, key))
            self.session.add(row)
            await self.session.flush()
            return row

        for key in DESCRIPTIVE_FIELDS:
            if key == "deadline" and keep_sent_deadline and row.is_sent:
                continue
            setattr(row, key, getattr(lot, key))
        if lot.image_urls:
            row.image_urls = list(lot.image_urls)
        row.is_sent = bool(row.is_sent) or lot.is_sent
        if lot.lot_status is not None:
            row.lot_status = lot.lot_status.value
        await self.session.flush()
        return row

    async def existing_sent_flags(self, numbers: List[str]) -> dict:
        if not numbers:
            return {}
        stmt = select(LotRow.number, LotRow.is_sent).where(LotRow.number.in_(numbers))
        result = await self.session.execute(stmt)
        return {number: bool(is_sent) for number, is_sent in result.all()}

    async def mark_sent(self, number: str) -> bool:
        stmt = update(LotRow).where(LotRow.number == number).values(is_sent=True)
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def list_active_sent(self) -> List[LotRow]:
        stmt = select(LotRow).where(
            LotRow.is_sent == True,
            or_(LotRow.lot_status == LotStatus.ACTIVE.value, LotRow.lot_status.is_(None)),
        ).order_by(LotRow.number)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_status(self, number: str, status: LotStatus) -> bool:
        stmt = update(LotRow).where(LotRow.number == number).values(lot_status=status.value)
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def update_deadline(self, number: str, deadline: Optional[str]) -> bool:
        stmt = update(LotRow).where(LotRow.number == number).values(deadline=deadline)
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def list_titles(self, exclude_number: Optional[str] = None) -> List[str]:
        stmt = select(LotRow.title).where(LotRow.title.is_not(None))
        if exclude_number is not None:
            stmt = stmt.where(LotRow.number != exclude_number)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class MessageMappingRepo:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, lot_number: str, message_id: int, chat_id: int) -> bool:
        """Повторная доставка того же сообщения не создаёт дубль."""
        stmt = select(MessageMapping).where(
            MessageMapping.lot_number == lot_number,
            MessageMapping.message_id == message_id,
            MessageMapping.chat_id == chat_id,
        )
        result = await self.session.execute(stmt)
        if result.scalar_one_or_none() is not None:
            return False
        self.session.add(MessageMapping(lot_number=lot_number, message_id=message_id, chat_id=chat_id))
        await self.session.flush()
        return True

    async def list_for_lot(self, lot_number: str) -> List[Tuple[int, int]]:
        stmt = (
            select(MessageMapping.message_id, MessageMapping.chat_id)
            .where(MessageMapping.lot_number == lot_number)
            .order_by(MessageMapping.chat_id, MessageMapping.message_id)
        )
        result = await self.session.execute(stmt)
        return [(message_id, chat_id) for message_id, chat_id in result.all()]

    async def lot_number_by_message(self, message_id: int, chat_id: int) -> Optional[str]:
        stmt = select(MessageMapping.lot_number).where(
            MessageMapping.message_id == message_id,
            MessageMapping.chat_id == chat_id,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()


class NoMatchRepo:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, lot_id: str) -> bool:
        stmt = select(NoMatchLot.lot_id).where(NoMatchLot.lot_id == lot_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def add(self, lot_id: str) -> bool:
        if await self.exists(lot_id):
            return False
        self.session.add(NoMatchLot(lot_id=lot_id))
        await self.session.flush()
        return True
