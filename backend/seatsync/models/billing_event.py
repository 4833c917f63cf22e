"""Billing event model, the idempotency ledger for provider webhooks."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from seatsync.models._base import Base


class BillingEvent(Base):
    """One received provider webhook.

    ``processed_at`` stays null until dispatch succeeds; rows are frozen once it is set.
    """

    __tablename__ = "billing_event"

    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    external_event_id: Mapped[str] = mapped_column(String(255), nullable=False)

    event_type: Mapped[str] = mapped_column(
        String(100), nullable=False
    )  # subscription_created, subscription_payment_failed, etc.

    organization_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    outcome: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    error_detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "external_event_id", name="uq_billing_event_provider_event"),
        Index("idx_billing_events_org", "organization_id"),
        Index("idx_billing_events_type", "event_type"),
        Index("idx_billing_events_unprocessed", "processed_at"),
    )
