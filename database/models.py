# database/models.py
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    JSON, BigInteger, Boolean, DateTime, ForeignKey, Index, Numeric, String, Text, func
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Lot(Base):
    __tablename__ = "lots"
    __table_args__ = (
        Index("idx_lots_is_sent", "is_sent"),
        Index("idx_lots_status", "lot_status"),
    )

    # Идентификатор, синтезированный источником (номер лота torgi, cdtrf-123, код закупки)
    number: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Content
    title: Mapped[str] = mapped_column(Text, default="")
    link: Mapped[str] = mapped_column(Text, default="")
    address: Mapped[Optional[str]] = mapped_column(Text)
    lot_type: Mapped[Optional[str]] = mapped_column(String(500))

    # Money
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))  # годовая или цена договора
    monthly_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))  # только аренда
    deposit: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))

    area: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))  # кв.м
    contract_term: Mapped[Optional[str]] = mapped_column(String(255))
    cadastral_number: Mapped[Optional[str]] = mapped_column(String(100))
    deadline: Mapped[Optional[str]] = mapped_column(String(100))  # ISO-дата или сырой текст

    # Добавлены второй миграцией, у старых строк значения по умолчанию
    organizer: Mapped[Optional[str]] = mapped_column(Text)
    image_urls: Mapped[List[str]] = mapped_column(JSON, default=list)
    source: Mapped[Optional[str]] = mapped_column(String(255))
    lot_status: Mapped[Optional[str]] = mapped_column(String(20), default="ACTIVE")

    # Status
    is_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    # Relationships
    messages: Mapped[List["MessageMapping"]] = relationship(back_populates="lot", cascade="all, delete-orphan")


class MessageMapping(Base):
    """Какие сообщения в каких чатах описывают лот: нужно для редактирования при смене статуса."""
    __tablename__ = "message_mappings"
    __table_args__ = (
        Index("idx_message_mappings_message", "message_id", "chat_id"),
    )

    lot_number: Mapped[str] = mapped_column(
        String(255), ForeignKey("lots.number", ondelete="CASCADE"), primary_key=True
    )
    message_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    chat_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    lot: Mapped["Lot"] = relationship(back_populates="messages")


class NoMatchLot(Base):
    """Лоты, по которым уже ушло уведомление «не удалось определить пригодность»."""
    __tablename__ = "no_match_lots"

    lot_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
