"""SQLAlchemy database models for campaign storage."""
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Campaign(Base):
    """
    Campaign documents table.

    One row per campaign; line items live in the `items` JSON document so
    that a single-row conditional UPDATE is the atomic unit for every
    item outcome. `version` backs optimistic concurrency.
    """

    __tablename__ = "campaigns"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSONDocument, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scheduled_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="positive_total"),
        CheckConstraint(
            "kind IN ('bulk', 'split', 'scheduled')",
            name="valid_kind",
        ),
        CheckConstraint(
            "status IN ('scheduled', 'pending', 'processing', 'partial', "
            "'completed', 'failed', 'canceled', 'expired')",
            name="valid_campaign_status",
        ),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        CheckConstraint("success_count >= 0 AND failure_count >= 0", name="non_negative_counts"),
        Index("idx_campaigns_owner_created", "created_by", "created_at"),
        Index("idx_campaigns_status_scheduled", "status", "scheduled_date"),
        Index("idx_campaigns_status_expires", "status", "expires_at"),
        Index("idx_campaigns_status_updated", "status", "updated_at"),
    )

    def __repr__(self) -> str:
        """String representation of Campaign."""
        return (
            f"<Campaign(id={self.id}, kind={self.kind}, "
            f"status={self.status}, version={self.version})>"
        )


class Transaction(Base):
    """
    Transaction ledger table.

    One row per settled gateway charge (unique reference), linked back to its campaign
    item. Immutable once written.
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    campaign_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    campaign_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gateway_reference: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        Index("idx_transactions_campaign_item", "campaign_id", "item_id"),
    )

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(id={self.id}, campaign_id={self.campaign_id}, "
            f"amount={self.amount}, reference={self.gateway_reference})>"
        )
