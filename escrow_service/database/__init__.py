"""Database package for the escrow service."""
from .connection import close_db, get_session_factory, init_db
from .models import Base, NotificationRecord, OrderRecord

__all__ = [
    "Base",
    "OrderRecord",
    "NotificationRecord",
    "close_db",
    "get_session_factory",
    "init_db",
]
