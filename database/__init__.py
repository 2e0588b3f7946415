# database/__init__.py
from database.connection import get_session, init_db, init_engine, close_db
from database.models import Base, Lot, MessageMapping, NoMatchLot
from database.repository import LotRepo, MessageMappingRepo, NoMatchRepo
from database.lot_service import lot_service, LotService

__all__ = [
    # Connection
    "get_session",
    "init_db",
    "init_engine",
    "close_db",
    # Models
    "Base",
    "Lot",
    "MessageMapping",
    "NoMatchLot",
    # Repositories
    "LotRepo",
    "MessageMappingRepo",
    "NoMatchRepo",
    # Services
    "lot_service",
    "LotService",
]
