"""Database package for marketplace payments."""
from .connection import (
    close_db,
    create_engine_from_settings,
    create_session_factory,
    get_engine,
    get_session_factory,
    init_db,
)
from .models import Base, Payment, PaymentAuditLog

__all__ = [
    "Base",
    "Payment",
    "PaymentAuditLog",
    "close_db",
    "create_engine_from_settings",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "init_db",
]
