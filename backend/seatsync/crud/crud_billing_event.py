"""CRUD operations for the billing event ledger."""

from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync import schemas
from seatsync.core.datetime_utils import utc_now_naive
from seatsync.core.shared_models import WebhookOutcome
from seatsync.crud._base_system import CRUDBaseSystem
from seatsync.models import BillingEvent


class CRUDBillingEvent(
    CRUDBaseSystem[BillingEvent, schemas.BillingEventCreate, schemas.BillingEventCreate]
):
    """CRUD operations for billing events.

    Ledger rows are inserted before dispatch and only ever move from
    unprocessed to processed.
    """

    async def get_by_external_id(
        self, db: AsyncSession, *, provider: str, external_event_id: str
    ) -> Optional[BillingEvent]:
        """Get a ledger entry by provider and provider event id.

        Args:
            db: Database session
            provider: Provider name, e.g. ``lemonsqueezy``
            external_event_id: Provider event id

        Returns:
            BillingEvent or None
        """
        query = (
            select(BillingEvent)
            .where(
                BillingEvent.provider == provider,
                BillingEvent.external_event_id == external_event_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_failed(
        self, db: AsyncSession, *, provider: str, limit: int = 100
    ) -> list[BillingEvent]:
        """Get unprocessed events whose dispatch failed, oldest first."""
        query = (
            select(BillingEvent)
            .where(
                BillingEvent.provider == provider,
                BillingEvent.processed_at.is_(None),
                BillingEvent.error_detail.is_not(None),
            )
            .order_by(BillingEvent.created_at, BillingEvent.id)
            .limit(limit)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def mark_processed(
        self,
        db: AsyncSession,
        *,
        id: UUID,
        outcome: WebhookOutcome,
        organization_id: Optional[UUID] = None,
    ) -> None:
        """Freeze a ledger entry as processed.

        Args:
            db: Database session
            id: Ledger entry ID
            outcome: What the ingestor decided
            organization_id: Organization the event was resolved to, if known
        """
        values = {
            "processed_at": utc_now_naive(),
            "outcome": outcome.value,
            "error_detail": None,
            "modified_at": utc_now_naive(),
        }
        if organization_id is not None:
            values["organization_id"] = organization_id

        await db.execute(
            update(BillingEvent)
            .where(BillingEvent.id == id, BillingEvent.processed_at.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    async def mark_failed(self, db: AsyncSession, *, id: UUID, error_detail: str) -> None:
        """Record a dispatch failure; the entry stays eligible for reprocessing.

        Args:
            db: Database session
            id: Ledger entry ID
            error_detail: Description of the failure
        """
        await db.execute(
            update(BillingEvent)
            .where(BillingEvent.id == id, BillingEvent.processed_at.is_(None))
            .values(error_detail=error_detail[:4000], modified_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        await db.commit()


billing_event = CRUDBillingEvent(BillingEvent)
