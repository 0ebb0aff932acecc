"""
SQLAlchemy-backed campaign store.

Each campaign is one row in `campaigns`; its items are a JSON document
column. A write is a single conditional UPDATE:

    UPDATE campaigns SET ..., version = :expected + 1
    WHERE id = :id AND version = :expected

Zero affected rows means another writer committed first.
"""
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campaign_payments.database.models import Campaign
from campaign_payments.domain.models import CampaignRecord
from campaign_payments.infrastructure.store import CampaignQuery, ConcurrencyError

logger = structlog.get_logger(__name__)


def _row_values(record: CampaignRecord) -> Dict[str, Any]:
    document = record.model_dump(mode="json", include={"items"})
    return {
        "kind": record.kind.value,
        "created_by": record.created_by,
        "currency": record.currency,
        "total_amount": record.total_amount,
        "description": record.description,
        "status": record.status.value,
        "items": document["items"],
        "success_count": record.success_count,
        "failure_count": record.failure_count,
        "error_message": record.error_message,
        "expires_at": record.expires_at,
        "scheduled_date": record.scheduled_date,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def _to_record(row: Campaign) -> CampaignRecord:
    return CampaignRecord(
        id=row.id,
        kind=row.kind,
        currency=row.currency,
        total_amount=row.total_amount,
        description=row.description,
        items=row.items,
        status=row.status,
        success_count=row.success_count,
        failure_count=row.failure_count,
        created_by=row.created_by,
        expires_at=row.expires_at,
        scheduled_date=row.scheduled_date,
        error_message=row.error_message,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SQLAlchemyCampaignStore:
    """Campaign store over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def insert(self, record: CampaignRecord) -> CampaignRecord:
        async with self.session_factory() as session:
            session.add(Campaign(id=record.id, version=0, **_row_values(record)))
            await session.commit()

        logger.debug("campaign_row_inserted", campaign_id=record.id)
        return record.model_copy(update={"version": 0}, deep=True)

    async def get(self, campaign_id: str) -> Optional[CampaignRecord]:
        async with self.session_factory() as session:
            row = await session.get(Campaign, campaign_id)
            if row is None:
                return None
            return _to_record(row)

    async def replace(self, record: CampaignRecord, expected_version: int) -> CampaignRecord:
        async with self.session_factory() as session:
            stmt = (
                update(Campaign)
                .where(Campaign.id == record.id, Campaign.version == expected_version)
                .values(version=expected_version + 1, **_row_values(record))
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)

            if result.rowcount == 0:
                await session.rollback()
                current = await session.scalar(
                    select(Campaign.version).where(Campaign.id == record.id)
                )
                raise ConcurrencyError(record.id, expected_version, current)

            await session.commit()

        return record.model_copy(update={"version": expected_version + 1}, deep=True)

    async def find(self, query: CampaignQuery) -> List[CampaignRecord]:
        stmt = select(Campaign)

        if query.created_by is not None:
            stmt = stmt.where(Campaign.created_by == query.created_by)
        if query.kind is not None:
            stmt = stmt.where(Campaign.kind == query.kind.value)
        if query.statuses is not None:
            stmt = stmt.where(Campaign.status.in_([s.value for s in query.statuses]))
        if query.scheduled_from is not None:
            stmt = stmt.where(Campaign.scheduled_date >= query.scheduled_from)
        if query.scheduled_until is not None:
            stmt = stmt.where(Campaign.scheduled_date <= query.scheduled_until)
        if query.expires_until is not None:
            stmt = stmt.where(Campaign.expires_at <= query.expires_until)
        if query.updated_before is not None:
            stmt = stmt.where(Campaign.updated_at < query.updated_before)

        if query.order == "due":
            stmt = stmt.order_by(Campaign.scheduled_date.asc())
        elif query.order == "oldest":
            stmt = stmt.order_by(Campaign.created_at.asc())
        else:
            stmt = stmt.order_by(Campaign.created_at.desc())

        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_to_record(row) for row in result.scalars().all()]

    async def delete_many(self, campaign_ids: List[str]) -> int:
        if not campaign_ids:
            return 0

        async with self.session_factory() as session:
            result = await session.execute(
                delete(Campaign)
                .where(Campaign.id.in_(campaign_ids))
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        logger.info("campaign_rows_deleted", count=result.rowcount)
        return result.rowcount
