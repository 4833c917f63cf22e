"""CRUD operations for subscriptions."""

from datetime import datetime
from typing import Any, Optional, Union
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync import schemas
from seatsync.core.datetime_utils import utc_now_naive
from seatsync.core.exceptions import ConcurrentModificationError
from seatsync.core.shared_models import LIVE_SUBSCRIPTION_STATUSES
from seatsync.crud._base_system import CRUDBaseSystem, column_values
from seatsync.models import Subscription

_LIVE_STATUS_VALUES = [status.value for status in LIVE_SUBSCRIPTION_STATUSES]


class CRUDSubscription(
    CRUDBaseSystem[Subscription, schemas.SubscriptionCreate, schemas.SubscriptionUpdate]
):
    """CRUD operations for subscriptions.

    Updates go exclusively through ``compare_and_set`` so every write is
    checked against the version the writer read.
    """

    async def get_by_external_id(
        self, db: AsyncSession, *, external_subscription_id: str
    ) -> Optional[Subscription]:
        """Get a subscription by its provider subscription id.

        Args:
            db: Database session
            external_subscription_id: Provider subscription id

        Returns:
            Subscription or None
        """
        query = (
            select(Subscription)
            .where(Subscription.external_subscription_id == external_subscription_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_live_for_organization(
        self, db: AsyncSession, *, organization_id: UUID
    ) -> Optional[Subscription]:
        """Get the organization's live subscription.

        Args:
            db: Database session
            organization_id: Organization ID

        Returns:
            Subscription or None
        """
        query = (
            select(Subscription)
            .where(
                Subscription.organization_id == organization_id,
                Subscription.status.in_(_LIVE_STATUS_VALUES),
            )
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_due_pending_changes(
        self, db: AsyncSession, *, now: datetime
    ) -> list[Subscription]:
        """Get live subscriptions whose deferred seat change is due.

        Args:
            db: Database session
            now: Reference time, naive UTC

        Returns:
            Subscriptions ordered by due date
        """
        query = (
            select(Subscription)
            .where(
                Subscription.pending_seats.is_not(None),
                Subscription.pending_effective_at <= now,
                Subscription.status.in_(_LIVE_STATUS_VALUES),
            )
            .order_by(Subscription.pending_effective_at, Subscription.id)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_live_with_provider_item(self, db: AsyncSession) -> list[Subscription]:
        """Get live subscriptions that can be compared against the provider."""
        query = (
            select(Subscription)
            .where(
                Subscription.status.in_(_LIVE_STATUS_VALUES),
                Subscription.external_subscription_item_id.is_not(None),
            )
            .order_by(Subscription.created_at, Subscription.id)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def compare_and_set(
        self,
        db: AsyncSession,
        *,
        id: UUID,
        expected_version: int,
        obj_in: Union[schemas.SubscriptionUpdate, dict[str, Any]],
        changed_at: Optional[datetime] = None,
        provider_event_at: Optional[datetime] = None,
        commit: bool = True,
    ) -> Subscription:
        """Update a subscription only if nobody wrote it since it was read.

        Args:
            db: Database session
            id: Subscription ID
            expected_version: The ``version`` the caller read
            obj_in: Fields to set; unset fields are left untouched
            changed_at: Timestamp of the state being written, defaults to now
            provider_event_at: Timestamp of the provider event being applied, if any
            commit: Commit the transaction

        Returns:
            The updated subscription

        Raises:
            ConcurrentModificationError: If the row's version no longer matches
        """
        if not isinstance(obj_in, dict):
            obj_in = obj_in.model_dump(exclude_unset=True)

        now = utc_now_naive()
        values = {
            **column_values(obj_in),
            "version": expected_version + 1,
            "last_changed_at": changed_at or now,
            "modified_at": now,
        }
        if provider_event_at is not None:
            values["provider_event_at"] = provider_event_at

        stmt = (
            update(Subscription)
            .where(Subscription.id == id, Subscription.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount == 0:
            await db.rollback()
            raise ConcurrentModificationError("Subscription", id)

        if commit:
            await db.commit()
        else:
            await db.flush()

        return await self.get(db, id)


subscription = CRUDSubscription(Subscription)
