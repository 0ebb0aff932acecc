"""Database package for campaign payments."""
from campaign_payments.database.connection import (
    close_db,
    create_engine_for_url,
    get_session_factory,
    init_db,
    make_session_factory,
)
from campaign_payments.database.models import Base, Campaign, Transaction

__all__ = [
    "Base",
    "Campaign",
    "Transaction",
    "close_db",
    "create_engine_for_url",
    "get_session_factory",
    "init_db",
    "make_session_factory",
]
