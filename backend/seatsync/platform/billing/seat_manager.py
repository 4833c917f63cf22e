"""Seat manager.

Single entry point for changing an organization's seat count. It is the only
place that branches on the billing type: quantity-based subscriptions update
the provider quantity with proration, usage-based subscriptions report the
seat count as usage, and legacy subscriptions are refused.

Every change reaches the provider before the store is written, and the store
write is a compare-and-set on the version read at the start. Deferred
quantity-based changes are committed with the provider when scheduled and
only written to the store when they fall due.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from seatsync import crud, schemas
from seatsync.core.datetime_utils import to_naive_utc, utc_now_naive
from seatsync.core.exceptions import (
    ConcurrentModificationError,
    InvalidStateError,
    NotApplicableError,
    NotFoundException,
    ProviderUnavailableError,
    UnsupportedBillingTypeError,
    ValidationError,
)
from seatsync.core.logging import ContextualLogger, logger
from seatsync.core.shared_models import BillingType, ChargeTiming
from seatsync.integrations.lemonsqueezy_client import SERVICE_NAME, LemonSqueezyClient
from seatsync.platform.billing.proration import ProrationDetails, calculate_proration


@dataclass
class SeatChangeResult:
    """Outcome of an applied seat change."""

    subscription: schemas.Subscription
    billing_type: BillingType
    previous_seats: int
    charged_at: ChargeTiming
    message: str
    proration: Optional[ProrationDetails] = None


ChangeStrategy = Callable[..., Awaitable[SeatChangeResult]]


class SeatManager:
    """Applies, schedules and previews seat changes."""

    def __init__(self, client: Optional[LemonSqueezyClient]):
        """Initialize the seat manager.

        Args:
            client: Provider client, or None when the provider is not configured
        """
        self.client = client
        self._strategies: dict[BillingType, ChangeStrategy] = {
            BillingType.QUANTITY_BASED: self._apply_quantity_change,
            BillingType.USAGE_BASED: self._apply_usage_change,
        }

    # Lookups

    async def get_subscription(
        self, db: AsyncSession, subscription_id: UUID
    ) -> schemas.Subscription:
        """Load a subscription snapshot.

        Raises:
            NotFoundException: If the subscription does not exist
        """
        db_obj = await crud.subscription.get(db, subscription_id)
        if db_obj is None:
            raise NotFoundException(f"Subscription {subscription_id} not found")
        return schemas.Subscription.model_validate(db_obj, from_attributes=True)

    async def get_active_subscription(
        self, db: AsyncSession, organization_id: UUID
    ) -> schemas.Subscription:
        """Load the organization's live subscription.

        Raises:
            NotFoundException: If the organization has no live subscription
        """
        db_obj = await crud.subscription.get_live_for_organization(
            db, organization_id=organization_id
        )
        if db_obj is None:
            raise NotFoundException(f"No active subscription for organization {organization_id}")
        return schemas.Subscription.model_validate(db_obj, from_attributes=True)

    # Proration

    async def preview_proration(
        self,
        db: AsyncSession,
        subscription_id: UUID,
        new_quantity: int,
        *,
        now: Optional[datetime] = None,
    ) -> ProrationDetails:
        """Compute what a seat change would cost right now, without changing anything.

        Raises:
            ValidationError: If the quantity is not a positive integer
            UnsupportedBillingTypeError: For legacy subscriptions
            NotApplicableError: For usage-based subscriptions
        """
        self._validate_quantity(new_quantity)
        subscription = await self.get_subscription(db, subscription_id)
        billing_type = self._billing_type(subscription)
        if billing_type != BillingType.QUANTITY_BASED:
            raise NotApplicableError(
                billing_type.value,
                "Usage-based subscriptions are billed for their seat count at the end of "
                "each billing period; no proration applies",
            )
        return calculate_proration(subscription, new_quantity, now)

    # Immediate changes

    async def add_seats(
        self,
        db: AsyncSession,
        subscription_id: UUID,
        new_quantity: int,
        *,
        invoice_immediately: bool = True,
        log: Optional[ContextualLogger] = None,
    ) -> SeatChangeResult:
        """Increase the seat count to ``new_quantity``.

        Raises:
            ValidationError: If ``new_quantity`` does not exceed the current seat count
        """
        self._validate_quantity(new_quantity)
        subscription = await self.get_subscription(db, subscription_id)
        if new_quantity <= subscription.current_seats:
            raise ValidationError(
                f"New quantity {new_quantity} must be greater than the current "
                f"{subscription.current_seats} seats"
            )
        return await self._apply_change(db, subscription, new_quantity, invoice_immediately, log)

    async def remove_seats(
        self,
        db: AsyncSession,
        subscription_id: UUID,
        new_quantity: int,
        *,
        invoice_immediately: bool = True,
        log: Optional[ContextualLogger] = None,
    ) -> SeatChangeResult:
        """Decrease the seat count to ``new_quantity``.

        Occupancy is checked by the caller before calling this.

        Raises:
            ValidationError: If ``new_quantity`` is not below the current seat count
        """
        self._validate_quantity(new_quantity)
        subscription = await self.get_subscription(db, subscription_id)
        if new_quantity >= subscription.current_seats:
            raise ValidationError(
                f"New quantity {new_quantity} must be less than the current "
                f"{subscription.current_seats} seats"
            )
        return await self._apply_change(db, subscription, new_quantity, invoice_immediately, log)

    async def change_seats(
        self,
        db: AsyncSession,
        subscription_id: UUID,
        new_quantity: int,
        *,
        invoice_immediately: bool = True,
        log: Optional[ContextualLogger] = None,
    ) -> SeatChangeResult:
        """Apply a seat change in either direction."""
        self._validate_quantity(new_quantity)
        subscription = await self.get_subscription(db, subscription_id)
        if new_quantity == subscription.current_seats:
            raise ValidationError(
                f"Subscription already has {new_quantity} seats; nothing to change"
            )
        return await self._apply_change(db, subscription, new_quantity, invoice_immediately, log)

    # Deferred changes

    async def schedule_seat_change(
        self,
        db: AsyncSession,
        subscription_id: UUID,
        new_quantity: int,
        effective_at: Optional[datetime] = None,
        *,
        log: Optional[ContextualLogger] = None,
    ) -> schemas.Subscription:
        """Commit a seat change with the provider that takes effect later.

        Quantity-based subscriptions get the new quantity right away, without
        proration or an invoice, so the provider bills it from the next
        renewal on. Usage-based subscriptions report usage for the period the
        count applies to, so their usage record is sent on promotion. The store
        keeps the current seats and records the change as pending.

        Args:
            db: Database session
            subscription_id: Subscription to change
            new_quantity: Seat count to apply
            effective_at: When to apply it; defaults to the end of the billing period
            log: Optional contextual logger

        Returns:
            The updated subscription snapshot
        """
        self._validate_quantity(new_quantity)
        subscription = await self.get_subscription(db, subscription_id)
        billing_type = self._billing_type(subscription)
        self._require_live(subscription)
        item_id = self._require_item(subscription)

        if new_quantity == subscription.current_seats:
            raise ValidationError(
                f"Subscription already has {new_quantity} seats; nothing to schedule"
            )

        now = utc_now_naive()
        if effective_at is None:
            effective_at = subscription.renews_at
            if effective_at is None:
                raise InvalidStateError(
                    "Subscription has no renewal date; pass an explicit effective date"
                )
        effective_at = to_naive_utc(effective_at)
        if effective_at <= now:
            raise ValidationError("A scheduled seat change must take effect in the future")

        log = self._logger(subscription, log)
        if billing_type == BillingType.QUANTITY_BASED:
            await self._provider().update_subscription_quantity(
                item_id, new_quantity, prorate=False, invoice_immediately=False
            )

        updated = await self._write(
            db,
            subscription,
            {"pending_seats": new_quantity, "pending_effective_at": effective_at},
            log,
            changed_at=now,
            provider_quantity=new_quantity if billing_type == BillingType.QUANTITY_BASED else None,
        )
        log.info(
            f"Scheduled change from {subscription.current_seats} to {new_quantity} seats "
            f"effective {effective_at.isoformat()}"
        )
        return updated

    async def cancel_pending_change(
        self,
        db: AsyncSession,
        subscription_id: UUID,
        *,
        log: Optional[ContextualLogger] = None,
    ) -> schemas.Subscription:
        """Drop a scheduled seat change.

        A quantity already committed with the provider is set back to the
        current seat count, again without proration.

        Raises:
            InvalidStateError: If no change is scheduled
        """
        subscription = await self.get_subscription(db, subscription_id)
        if not subscription.has_pending_change:
            raise InvalidStateError("No pending seat change to cancel")

        log = self._logger(subscription, log)
        restored = None
        if BillingType(subscription.billing_type) == BillingType.QUANTITY_BASED:
            restored = subscription.current_seats
            await self._provider().update_subscription_quantity(
                self._require_item(subscription),
                restored,
                prorate=False,
                invoice_immediately=False,
            )

        updated = await self._write(
            db,
            subscription,
            {"pending_seats": None, "pending_effective_at": None},
            log,
            provider_quantity=restored,
        )
        log.info(f"Cancelled pending change to {subscription.pending_seats} seats")
        return updated

    async def promote_pending_change(
        self,
        db: AsyncSession,
        subscription: schemas.Subscription,
        *,
        now: Optional[datetime] = None,
        log: Optional[ContextualLogger] = None,
    ) -> SeatChangeResult:
        """Apply a due pending change to the store.

        Quantity-based subscriptions were committed with the provider when the
        change was scheduled, so only the store is written. Usage-based
        subscriptions report the new seat count as usage of the period that
        starts with the change, then write the store.

        Args:
            db: Database session
            subscription: Snapshot read by the caller; its version guards the write
            now: Reference time, naive UTC
            log: Optional contextual logger

        Returns:
            SeatChangeResult
        """
        if subscription.pending_seats is None or subscription.pending_effective_at is None:
            raise InvalidStateError(f"Subscription {subscription.id} has no pending seat change")

        now = now or utc_now_naive()
        if subscription.pending_effective_at > now:
            raise InvalidStateError(
                f"Pending change of subscription {subscription.id} is not due until "
                f"{subscription.pending_effective_at.isoformat()}"
            )

        billing_type = self._billing_type(subscription)
        new_quantity = subscription.pending_seats
        log = self._logger(subscription, log)

        if billing_type == BillingType.USAGE_BASED:
            await self._provider().create_usage_record(
                self._require_item(subscription),
                new_quantity,
                action="set",
                description=f"Scheduled seat change to {new_quantity} seats",
            )

        updated = await self._write_seats(db, subscription, new_quantity, log)
        log.info(
            f"Applied pending change from {subscription.current_seats} to {new_quantity} seats"
        )
        return SeatChangeResult(
            subscription=updated,
            billing_type=billing_type,
            previous_seats=subscription.current_seats,
            charged_at=ChargeTiming.END_OF_PERIOD,
            message=f"Scheduled change to {new_quantity} seats applied",
        )

    # Provider state

    async def get_provider_seats(self, subscription: schemas.Subscription) -> int:
        """Read the seat count the provider currently bills for.

        Quantity-based and legacy subscriptions report the subscription item
        quantity; usage-based subscriptions report the usage of the current period.
        """
        item_id = self._require_item(subscription)
        client = self._provider()
        if BillingType(subscription.billing_type) == BillingType.USAGE_BASED:
            usage = await client.get_current_usage(item_id)
            return int(usage.get("quantity") or 0)
        item = await client.get_subscription_item(item_id)
        return int(item.get("attributes", {}).get("quantity") or 0)

    # Strategies

    async def _apply_change(
        self,
        db: AsyncSession,
        subscription: schemas.Subscription,
        new_quantity: int,
        invoice_immediately: bool,
        log: Optional[ContextualLogger],
    ) -> SeatChangeResult:
        billing_type = self._billing_type(subscription)
        self._require_live(subscription)
        item_id = self._require_item(subscription)
        strategy = self._strategies[billing_type]
        log = self._logger(subscription, log)
        return await strategy(db, subscription, item_id, new_quantity, invoice_immediately, log)

    async def _apply_quantity_change(
        self,
        db: AsyncSession,
        subscription: schemas.Subscription,
        item_id: str,
        new_quantity: int,
        invoice_immediately: bool,
        log: ContextualLogger,
    ) -> SeatChangeResult:
        increase = new_quantity > subscription.current_seats
        proration = None
        if subscription.period_start is not None and subscription.renews_at is not None:
            proration = calculate_proration(subscription, new_quantity)

        # Decreases are neither charged nor credited
        await self._provider().update_subscription_quantity(
            item_id,
            new_quantity,
            prorate=increase,
            invoice_immediately=invoice_immediately and increase,
        )

        updated = await self._write_seats(db, subscription, new_quantity, log)
        if increase and invoice_immediately:
            charged_at = ChargeTiming.IMMEDIATELY
        else:
            charged_at = ChargeTiming.END_OF_PERIOD
        log.info(
            f"Changed quantity-based seats from {subscription.current_seats} to {new_quantity}"
            + (f", prorated {proration.amount} {proration.currency}" if proration else "")
        )
        if proration is not None:
            message = proration.message
        elif increase:
            message = f"Seats increased to {new_quantity}; the provider prorates the charge"
        else:
            message = f"Seats reduced to {new_quantity}"
        return SeatChangeResult(
            subscription=updated,
            billing_type=BillingType.QUANTITY_BASED,
            previous_seats=subscription.current_seats,
            charged_at=charged_at,
            message=message,
            proration=proration,
        )

    async def _apply_usage_change(
        self,
        db: AsyncSession,
        subscription: schemas.Subscription,
        item_id: str,
        new_quantity: int,
        invoice_immediately: bool,
        log: ContextualLogger,
    ) -> SeatChangeResult:
        await self._provider().create_usage_record(
            item_id,
            new_quantity,
            action="set",
            description=f"Seat count changed to {new_quantity}",
        )

        updated = await self._write_seats(db, subscription, new_quantity, log)
        log.info(
            f"Reported usage-based seats {new_quantity} (was {subscription.current_seats})"
        )
        return SeatChangeResult(
            subscription=updated,
            billing_type=BillingType.USAGE_BASED,
            previous_seats=subscription.current_seats,
            charged_at=ChargeTiming.END_OF_PERIOD,
            message=(
                f"Seat count set to {new_quantity}; usage is billed at the end of the "
                "billing period"
            ),
        )

    async def _write_seats(
        self,
        db: AsyncSession,
        subscription: schemas.Subscription,
        new_quantity: int,
        log: ContextualLogger,
    ) -> schemas.Subscription:
        """Store the new seat count and clear any pending change."""
        return await self._write(
            db,
            subscription,
            {"current_seats": new_quantity, "pending_seats": None, "pending_effective_at": None},
            log,
            provider_quantity=new_quantity,
        )

    async def _write(
        self,
        db: AsyncSession,
        subscription: schemas.Subscription,
        values: dict,
        log: ContextualLogger,
        *,
        changed_at: Optional[datetime] = None,
        provider_quantity: Optional[int] = None,
    ) -> schemas.Subscription:
        """Compare-and-set ``values`` on the version the caller read."""
        try:
            updated = await crud.subscription.compare_and_set(
                db,
                id=subscription.id,
                expected_version=subscription.version,
                obj_in=values,
                changed_at=changed_at,
            )
        except ConcurrentModificationError:
            if provider_quantity is not None:
                log.error(
                    f"Provider holds {provider_quantity} seats but the store write lost a "
                    "concurrent update; provider and store may now diverge until the "
                    "reconcile job flags the subscription"
                )
            raise
        return schemas.Subscription.model_validate(updated, from_attributes=True)

    # Guards

    def _provider(self) -> LemonSqueezyClient:
        if self.client is None:
            raise ProviderUnavailableError(
                service_name=SERVICE_NAME, message="Billing provider client is not configured"
            )
        return self.client

    @staticmethod
    def _validate_quantity(new_quantity: int) -> None:
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int):
            raise ValidationError("Seat quantity must be an integer")
        if new_quantity < 1:
            raise ValidationError("Seat quantity must be at least 1")

    @staticmethod
    def _billing_type(subscription: schemas.Subscription) -> BillingType:
        billing_type = BillingType(subscription.billing_type)
        if billing_type == BillingType.LEGACY:
            raise UnsupportedBillingTypeError(billing_type.value)
        return billing_type

    @staticmethod
    def _require_live(subscription: schemas.Subscription) -> None:
        if not subscription.is_live:
            raise InvalidStateError(
                f"Subscription is {subscription.status.value}; seats can only change on a live "
                "subscription"
            )

    @staticmethod
    def _require_item(subscription: schemas.Subscription) -> str:
        if not subscription.external_subscription_item_id:
            raise InvalidStateError(
                f"Subscription {subscription.id} has no provider subscription item"
            )
        return subscription.external_subscription_item_id

    @staticmethod
    def _logger(
        subscription: schemas.Subscription, log: Optional[ContextualLogger]
    ) -> ContextualLogger:
        return (log or logger).with_context(
            subscription_id=str(subscription.id),
            organization_id=str(subscription.organization_id),
            billing_type=BillingType(subscription.billing_type).value,
        )
