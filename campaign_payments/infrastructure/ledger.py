"""
Transaction ledger: one immutable row per settled gateway charge.

Rows are keyed by the gateway reference. An attempt whose outcome was
lost is re-sent under the same idempotency key, the gateway hands back
the same reference, and the ledger returns the row it already holds.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campaign_payments.database.models import Transaction
from campaign_payments.domain.models import CampaignRecord, LineItem

logger = structlog.get_logger(__name__)


class Ledger(Protocol):
    """Records settled payment attempts."""

    async def record_transaction(
        self,
        campaign: CampaignRecord,
        item: LineItem,
        gateway_reference: str,
        at: datetime,
    ) -> str:
        """Persist a transaction once per gateway reference and return its id."""
        ...


class InMemoryLedger:
    """List-backed ledger for tests and local runs."""

    def __init__(self) -> None:
        self.entries: List[Dict[str, Any]] = []
        self._by_reference: Dict[str, Dict[str, Any]] = {}

    async def record_transaction(
        self,
        campaign: CampaignRecord,
        item: LineItem,
        gateway_reference: str,
        at: datetime,
    ) -> str:
        existing = self._by_reference.get(gateway_reference)
        if existing is not None:
            return existing["id"]

        entry = {
            "id": str(uuid.uuid4()),
            "campaign_id": campaign.id,
            "campaign_kind": campaign.kind.value,
            "item_id": item.item_id,
            "amount": item.amount,
            "currency": campaign.currency,
            "customer_email": item.recipient_email,
            "gateway_reference": gateway_reference,
            "created_at": at,
        }
        self.entries.append(entry)
        self._by_reference[gateway_reference] = entry
        return entry["id"]

    def for_campaign(self, campaign_id: str) -> List[Dict[str, Any]]:
        return [e for e in self.entries if e["campaign_id"] == campaign_id]


class SQLAlchemyLedger:
    """Ledger writing to the `transactions` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @staticmethod
    async def _existing_id(session: AsyncSession, gateway_reference: str) -> Optional[str]:
        result = await session.execute(
            select(Transaction.id).where(Transaction.gateway_reference == gateway_reference)
        )
        return result.scalar_one_or_none()

    async def record_transaction(
        self,
        campaign: CampaignRecord,
        item: LineItem,
        gateway_reference: str,
        at: datetime,
    ) -> str:
        async with self.session_factory() as session:
            existing = await self._existing_id(session, gateway_reference)
            if existing is not None:
                logger.info(
                    "transaction_already_recorded",
                    transaction_id=existing,
                    campaign_id=campaign.id,
                    item_id=item.item_id,
                    gateway_reference=gateway_reference,
                )
                return existing

            transaction_id = str(uuid.uuid4())
            session.add(
                Transaction(
                    id=transaction_id,
                    campaign_id=campaign.id,
                    campaign_kind=campaign.kind.value,
                    item_id=item.item_id,
                    amount=item.amount,
                    currency=campaign.currency,
                    status="succeeded",
                    description=item.description or campaign.description or None,
                    customer_email=item.recipient_email,
                    customer_name=item.recipient_name,
                    gateway_reference=gateway_reference,
                    created_by=campaign.created_by,
                    created_at=at,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                # Lost the insert race to a concurrent writer of the same charge.
                await session.rollback()
                existing = await self._existing_id(session, gateway_reference)
                if existing is None:
                    raise
                return existing

        logger.debug(
            "transaction_recorded",
            transaction_id=transaction_id,
            campaign_id=campaign.id,
            item_id=item.item_id,
        )
        return transaction_id
