# core/lots.py
"""
Каноническая запись лота, общая для всех источников.
Источники заполняют её частично, обогащение и нормализация дописывают остальное.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional

MAX_IMAGES = 4


class LotStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUCCEED = "SUCCEED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    SUSPENDED = "SUSPENDED"

    @property
    def is_terminal(self) -> bool:
        return self is not LotStatus.ACTIVE


STATUS_DISPLAY_NAMES = {
    LotStatus.SUCCEED: "Состоялся",
    LotStatus.FAILED: "Не состоялся",
    LotStatus.CANCELED: "Отменен",
    LotStatus.SUSPENDED: "Прием заявок приостановлен",
    LotStatus.ACTIVE: "Активный",
}


def normalize_status(raw: str | None) -> Optional[LotStatus]:
    """Сырой текст статуса из ленты завершённых торгов -> LotStatus (None, если не распознан)."""
    if not raw:
        return None
    text = raw.strip().lower()
    # "не состоял..." проверяем раньше "состоял...", иначе FAILED превратится в SUCCEED
    if "не состоял" in text:
        return LotStatus.FAILED
    if "состоял" in text:
        return LotStatus.SUCCEED
    if "отмен" in text:
        return LotStatus.CANCELED
    if "приостановлен" in text:
        return LotStatus.SUSPENDED
    try:
        return LotStatus(raw.strip().upper())
    except ValueError:
        return None


def status_display_name(status: LotStatus | str | None) -> str:
    if status is None:
        return STATUS_DISPLAY_NAMES[LotStatus.ACTIVE]
    try:
        return STATUS_DISPLAY_NAMES[LotStatus(status)]
    except ValueError:
        return str(status)


@dataclass
class Lot:
    number: str
    title: str = ""
    link: str = ""
    address: Optional[str] = None
    lot_type: Optional[str] = None

    # Деньги в рублях
    price: Optional[Decimal] = None
    monthly_price: Optional[Decimal] = None
    deposit: Optional[Decimal] = None

    area: Optional[Decimal] = None  # кв.м
    contract_term: Optional[str] = None
    cadastral_number: Optional[str] = None
    organizer: Optional[str] = None
    deadline: Optional[str] = None  # ISO-дата, либо исходный текст если не распарсился

    image_urls: List[str] = field(default_factory=list)
    source: str = ""

    # None = статус не задан явно, при сохранении берётся из БД
    lot_status: Optional[LotStatus] = None
    is_sent: bool = False

    def add_image(self, url: str) -> bool:
        if not url or url in self.image_urls or len(self.image_urls) >= MAX_IMAGES:
            return False
        self.image_urls.append(url)
        return True

    @property
    def status(self) -> LotStatus:
        return self.lot_status or LotStatus.ACTIVE
