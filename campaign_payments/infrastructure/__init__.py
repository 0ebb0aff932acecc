"""Infrastructure layer - campaign persistence and transaction ledger."""
from campaign_payments.infrastructure.ledger import InMemoryLedger, Ledger, SQLAlchemyLedger
from campaign_payments.infrastructure.sql_store import SQLAlchemyCampaignStore
from campaign_payments.infrastructure.store import (
    CampaignQuery,
    CampaignStore,
    ConcurrencyError,
    InMemoryCampaignStore,
)

__all__ = [
    "CampaignQuery",
    "CampaignStore",
    "ConcurrencyError",
    "InMemoryCampaignStore",
    "InMemoryLedger",
    "Ledger",
    "SQLAlchemyCampaignStore",
    "SQLAlchemyLedger",
]
