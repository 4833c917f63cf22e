"""Webhook processor for Lemon Squeezy billing events.

Every delivery is verified, recorded in the billing event ledger and then
dispatched to a handler. Deliveries are treated as possibly duplicated (the
ledger short-circuits processed events) and possibly stale (events older than
the stored state are recorded but not applied).
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync import crud, schemas
from seatsync.core.config import settings
from seatsync.core.datetime_utils import parse_provider_timestamp, utc_now_naive
from seatsync.core.exceptions import (
    ExternalServiceError,
    InvalidStateError,
    NotFoundException,
    ValidationError,
    WebhookDispatchError,
)
from seatsync.core.logging import ContextualLogger, logger
from seatsync.core.shared_models import (
    LIVE_SUBSCRIPTION_STATUSES,
    BillingType,
    SubscriptionStatus,
    WebhookDeliveryStatus,
    WebhookOutcome,
)
from seatsync.integrations.lemonsqueezy_client import LemonSqueezyClient, verify_webhook_signature
from seatsync.platform.billing.proration import derive_period_start

PROVIDER = "lemonsqueezy"


@dataclass
class WebhookResult:
    """Result of one webhook delivery."""

    status: WebhookDeliveryStatus
    event_id: str
    event_type: str
    outcome: Optional[WebhookOutcome] = None
    subscription_id: Optional[UUID] = None
    organization_id: Optional[UUID] = None
    detail: Optional[str] = None


@dataclass
class _Dispatched:
    outcome: WebhookOutcome
    subscription_id: Optional[UUID] = None
    organization_id: Optional[UUID] = None


Handler = Callable[[schemas.WebhookPayload, ContextualLogger], Awaitable[_Dispatched]]


class BillingWebhookProcessor:
    """Process Lemon Squeezy webhook events for seat subscriptions."""

    provider = PROVIDER

    def __init__(
        self,
        db: AsyncSession,
        client: Optional[LemonSqueezyClient] = None,
        *,
        webhook_secret: Optional[str] = None,
        monthly_variant_id: Optional[str] = None,
        yearly_variant_id: Optional[str] = None,
    ):
        """Initialize webhook processor.

        Args:
            db: Database session
            client: Provider client, used to report the initial usage of new
                usage-based subscriptions
            webhook_secret: Signing secret; defaults to the configured one
            monthly_variant_id: Variant id of the usage-based product
            yearly_variant_id: Variant id of the quantity-based product
        """
        self.db = db
        self.client = client
        self.webhook_secret = webhook_secret or settings.LEMONSQUEEZY_WEBHOOK_SECRET
        self.monthly_variant_id = monthly_variant_id or settings.LEMONSQUEEZY_MONTHLY_VARIANT_ID
        self.yearly_variant_id = yearly_variant_id or settings.LEMONSQUEEZY_YEARLY_VARIANT_ID

        # Event handler mapping
        self.handlers: dict[str, Handler] = {
            "subscription_created": self._handle_subscription_state,
            "subscription_updated": self._handle_subscription_state,
            "subscription_resumed": self._handle_subscription_state,
            "subscription_unpaused": self._handle_subscription_state,
            "subscription_paused": self._handle_subscription_state,
            "subscription_cancelled": self._handle_subscription_ended,
            "subscription_expired": self._handle_subscription_ended,
            "subscription_payment_success": self._handle_payment_success,
            "subscription_payment_failed": self._handle_payment_failed,
        }

    # Entry points

    async def process(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        """Verify, record and apply one delivery.

        Args:
            raw_body: Request body exactly as received
            signature: Value of the ``X-Signature`` header

        Returns:
            WebhookResult

        Raises:
            WebhookSignatureError: If the signature is invalid; nothing is recorded
            ValidationError: If the body is not a well-formed webhook payload
            WebhookDispatchError: If the event was recorded but could not be applied
        """
        verify_webhook_signature(raw_body, signature, self.webhook_secret or "")

        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            raise ValidationError("Webhook body is not valid JSON") from e
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object")

        return await self.ingest(payload)

    async def ingest(self, payload: dict[str, Any]) -> WebhookResult:
        """Record and apply a verified payload.

        Raises:
            ValidationError: If the payload does not have the expected shape
            WebhookDispatchError: If the event was recorded but could not be applied
        """
        event = self._parse(payload)
        event_id = self._event_id(event)
        event_type = event.meta.event_name
        log = self._create_context_logger(event, event_id)

        existing = await crud.billing_event.get_by_external_id(
            self.db, provider=self.provider, external_event_id=event_id
        )
        if existing is not None and existing.processed_at is not None:
            log.info(f"Ignoring duplicate delivery of {event_type}")
            return WebhookResult(
                status=WebhookDeliveryStatus.DUPLICATE,
                event_id=event_id,
                event_type=event_type,
                outcome=WebhookOutcome(existing.outcome) if existing.outcome else None,
                organization_id=existing.organization_id,
            )

        if existing is None:
            try:
                ledger = await crud.billing_event.create(
                    self.db,
                    obj_in=schemas.BillingEventCreate(
                        provider=self.provider,
                        external_event_id=event_id,
                        event_type=event_type,
                        organization_id=self._organization_id(event, required=False),
                        payload=payload,
                    ),
                )
            except IntegrityError:
                await self.db.rollback()
                log.info(f"Another delivery of {event_type} is already being processed")
                return WebhookResult(
                    status=WebhookDeliveryStatus.IN_PROGRESS,
                    event_id=event_id,
                    event_type=event_type,
                )
            ledger_id = ledger.id
        else:
            ledger_id = existing.id
            log.info(f"Reprocessing {event_type}; previous attempt failed: {existing.error_detail}")

        return await self._dispatch(ledger_id, event, event_id, log)

    async def retry_failed(self, *, limit: int = 100) -> list[WebhookResult]:
        """Re-dispatch recorded events whose earlier processing failed.

        Each event is isolated: a failure is recorded on its ledger entry and
        the run continues with the next one.
        """
        rows = await crud.billing_event.get_failed(self.db, provider=self.provider, limit=limit)
        pending = [(row.id, row.external_event_id, row.event_type, row.payload) for row in rows]

        results: list[WebhookResult] = []
        for ledger_id, event_id, event_type, payload in pending:
            event = self._parse(payload)
            log = self._create_context_logger(event, event_id).with_context(retry=True)
            try:
                results.append(await self._dispatch(ledger_id, event, event_id, log))
            except WebhookDispatchError as e:
                results.append(
                    WebhookResult(
                        status=WebhookDeliveryStatus.FAILED,
                        event_id=event_id,
                        event_type=event_type,
                        detail=e.detail,
                    )
                )
        return results

    async def _dispatch(
        self,
        ledger_id: UUID,
        event: schemas.WebhookPayload,
        event_id: str,
        log: ContextualLogger,
    ) -> WebhookResult:
        event_type = event.meta.event_name
        handler = self.handlers.get(event_type)

        try:
            if handler is None:
                log.info(f"Unhandled webhook event type: {event_type}")
                dispatched = _Dispatched(
                    WebhookOutcome.IGNORED,
                    organization_id=self._organization_id(event, required=False),
                )
            else:
                log.info(f"Processing webhook event: {event_type}")
                dispatched = await handler(event, log)
        except Exception as e:
            log.error(f"Error handling {event_type}: {e}", exc_info=True)
            await self.db.rollback()
            detail = f"{type(e).__name__}: {e}"
            await crud.billing_event.mark_failed(self.db, id=ledger_id, error_detail=detail)
            raise WebhookDispatchError(event_id, event_type, detail) from e

        await crud.billing_event.mark_processed(
            self.db,
            id=ledger_id,
            outcome=dispatched.outcome,
            organization_id=dispatched.organization_id,
        )
        return WebhookResult(
            status=WebhookDeliveryStatus.PROCESSED,
            event_id=event_id,
            event_type=event_type,
            outcome=dispatched.outcome,
            subscription_id=dispatched.subscription_id,
            organization_id=dispatched.organization_id,
        )

    # Event handlers

    async def _handle_subscription_state(
        self, event: schemas.WebhookPayload, log: ContextualLogger
    ) -> _Dispatched:
        """Create or sync a subscription from an event carrying its full state."""
        attributes = event.data.attributes
        event_at = self._event_timestamp(event)
        status = self._status(attributes)
        variant_id = self._optional_str(attributes.get("variant_id"))
        classified = self._classify(variant_id, log)

        db_obj = await crud.subscription.get_by_external_id(
            self.db, external_subscription_id=event.data.id
        )
        if db_obj is None:
            return await self._create_subscription(event, status, classified, event_at, log)

        current = schemas.Subscription.model_validate(db_obj, from_attributes=True)
        if event_at < current.last_changed_at:
            log.info(
                f"Discarding stale {event.meta.event_name} from {event_at.isoformat()}; "
                f"subscription changed at {current.last_changed_at.isoformat()}"
            )
            return _Dispatched(WebhookOutcome.STALE, current.id, current.organization_id)

        billing_type = self._resolve_billing_type(current.billing_type, classified, log)
        item = attributes.get("first_subscription_item") or {}

        update: dict[str, Any] = {
            "status": status,
            "billing_type": billing_type,
            "external_variant_id": variant_id or current.external_variant_id,
            "external_subscription_item_id": (
                self._optional_str(item.get("id")) or current.external_subscription_item_id
            ),
            "external_customer_id": (
                self._optional_str(attributes.get("customer_id")) or current.external_customer_id
            ),
            "ends_at": self._timestamp(attributes, "ends_at"),
            "trial_ends_at": self._timestamp(attributes, "trial_ends_at"),
        }
        renews_at = self._timestamp(attributes, "renews_at")
        if renews_at is not None:
            update["renews_at"] = renews_at
            update["period_start"] = derive_period_start(billing_type, renews_at)

        # Usage-based seats are managed by the application, not by the provider quantity
        quantity = item.get("quantity")
        if billing_type != BillingType.USAGE_BASED and quantity is not None:
            update.update(self._seat_fields(current, int(quantity), event_at, log))

        if status not in LIVE_SUBSCRIPTION_STATUSES:
            update["pending_seats"] = None
            update["pending_effective_at"] = None

        updated = await crud.subscription.compare_and_set(
            self.db,
            id=current.id,
            expected_version=current.version,
            obj_in=update,
            changed_at=event_at,
            provider_event_at=event_at,
        )
        log.info(
            f"Synced subscription {current.external_subscription_id}: status {status.value}, "
            f"{updated.current_seats} seats"
        )
        return _Dispatched(WebhookOutcome.APPLIED, current.id, current.organization_id)

    async def _create_subscription(
        self,
        event: schemas.WebhookPayload,
        status: SubscriptionStatus,
        billing_type: BillingType,
        event_at: datetime,
        log: ContextualLogger,
    ) -> _Dispatched:
        """Insert the store row for a subscription seen for the first time."""
        attributes = event.data.attributes
        custom_data = event.meta.custom_data or {}
        organization_id = self._organization_id(event, required=True)
        item = attributes.get("first_subscription_item") or {}

        if billing_type == BillingType.USAGE_BASED:
            seats = custom_data.get("user_count") or item.get("quantity") or 0
        else:
            seats = item.get("quantity") or 0

        if status in LIVE_SUBSCRIPTION_STATUSES:
            await self._supersede_live_subscription(
                organization_id, custom_data.get("migration_from_subscription_id"), event_at, log
            )

        renews_at = self._timestamp(attributes, "renews_at")
        db_obj = await crud.subscription.create(
            self.db,
            obj_in=schemas.SubscriptionCreate(
                organization_id=organization_id,
                external_subscription_id=event.data.id,
                external_subscription_item_id=self._optional_str(item.get("id")),
                external_customer_id=self._optional_str(attributes.get("customer_id")),
                external_variant_id=self._optional_str(attributes.get("variant_id")),
                billing_type=billing_type,
                status=status,
                current_seats=int(seats),
                period_start=derive_period_start(billing_type, renews_at),
                renews_at=renews_at,
                ends_at=self._timestamp(attributes, "ends_at"),
                trial_ends_at=self._timestamp(attributes, "trial_ends_at"),
                per_seat_price=self._seat_price(billing_type),
                currency=settings.BILLING_CURRENCY,
                last_changed_at=event_at,
                provider_event_at=event_at,
            ),
        )
        log.info(
            f"Created {billing_type.value} subscription {event.data.id} for organization "
            f"{organization_id} with {db_obj.current_seats} seats"
        )
        if billing_type == BillingType.USAGE_BASED:
            await self._report_initial_usage(
                db_obj.external_subscription_item_id, db_obj.current_seats, log
            )
        return _Dispatched(WebhookOutcome.APPLIED, db_obj.id, organization_id)

    async def _report_initial_usage(
        self, item_id: Optional[str], seats: int, log: ContextualLogger
    ) -> None:
        """Report the seats a usage-based subscription starts with.

        The subscription row is already stored, so a provider failure is logged
        and left to the reconcile job instead of failing the event.
        """
        if not item_id or seats < 1:
            return
        if self.client is None:
            log.warning(
                f"Cannot report initial usage of {seats} seats: billing provider client is "
                "not configured"
            )
            return
        try:
            await self.client.create_usage_record(
                item_id, seats, action="set", description=f"Initial seat count of {seats}"
            )
        except ExternalServiceError as e:
            log.error(f"Failed to report initial usage of {seats} seats: {e}")
            return
        log.info(f"Reported initial usage of {seats} seats")

    async def _supersede_live_subscription(
        self,
        organization_id: UUID,
        migration_from: Any,
        event_at: datetime,
        log: ContextualLogger,
    ) -> None:
        """Make room for a new live subscription when it replaces the current one.

        Raises:
            InvalidStateError: If another live subscription exists and is not being replaced
        """
        live = await crud.subscription.get_live_for_organization(
            self.db, organization_id=organization_id
        )
        if live is None:
            return

        if migration_from is None or str(migration_from) != live.external_subscription_id:
            raise InvalidStateError(
                f"Organization {organization_id} already has live subscription "
                f"{live.external_subscription_id}"
            )

        await crud.subscription.compare_and_set(
            self.db,
            id=live.id,
            expected_version=live.version,
            obj_in={
                "status": SubscriptionStatus.CANCELLED,
                "ends_at": event_at,
                "pending_seats": None,
                "pending_effective_at": None,
            },
            changed_at=max(live.last_changed_at, event_at),
            provider_event_at=event_at,
            commit=False,
        )
        log.info(
            f"Superseded subscription {live.external_subscription_id} of organization "
            f"{organization_id} by migration"
        )

    async def _handle_subscription_ended(
        self, event: schemas.WebhookPayload, log: ContextualLogger
    ) -> _Dispatched:
        """Handle cancellation and expiry. Seats are kept for the record."""
        attributes = event.data.attributes
        event_at = self._event_timestamp(event)
        current = await self._get_subscription(event.data.id)

        if self._is_stale_status_event(current, event_at):
            log.info(f"Discarding stale {event.meta.event_name} from {event_at.isoformat()}")
            return _Dispatched(WebhookOutcome.STALE, current.id, current.organization_id)

        if attributes.get("status"):
            status = self._status(attributes)
        elif event.meta.event_name == "subscription_expired":
            status = SubscriptionStatus.EXPIRED
        else:
            status = SubscriptionStatus.CANCELLED

        await crud.subscription.compare_and_set(
            self.db,
            id=current.id,
            expected_version=current.version,
            obj_in={
                "status": status,
                "ends_at": self._timestamp(attributes, "ends_at") or current.ends_at,
                "pending_seats": None,
                "pending_effective_at": None,
            },
            changed_at=max(current.last_changed_at, event_at),
            provider_event_at=event_at,
        )
        log.info(f"Subscription {current.external_subscription_id} is now {status.value}")
        return _Dispatched(WebhookOutcome.APPLIED, current.id, current.organization_id)

    async def _handle_payment_failed(
        self, event: schemas.WebhookPayload, log: ContextualLogger
    ) -> _Dispatched:
        """Mark a live subscription past due."""
        return await self._apply_payment_status(
            event,
            log,
            from_statuses=(
                SubscriptionStatus.ON_TRIAL,
                SubscriptionStatus.ACTIVE,
                SubscriptionStatus.PAST_DUE,
            ),
            to_status=SubscriptionStatus.PAST_DUE,
        )

    async def _handle_payment_success(
        self, event: schemas.WebhookPayload, log: ContextualLogger
    ) -> _Dispatched:
        """Reactivate a past-due subscription once a payment went through."""
        return await self._apply_payment_status(
            event,
            log,
            from_statuses=(SubscriptionStatus.PAST_DUE,),
            to_status=SubscriptionStatus.ACTIVE,
        )

    async def _apply_payment_status(
        self,
        event: schemas.WebhookPayload,
        log: ContextualLogger,
        *,
        from_statuses: tuple[SubscriptionStatus, ...],
        to_status: SubscriptionStatus,
    ) -> _Dispatched:
        subscription_id = self._optional_str(event.data.attributes.get("subscription_id"))
        if subscription_id is None:
            raise ValidationError(f"{event.meta.event_name} payload has no subscription_id")

        event_at = self._event_timestamp(event)
        current = await self._get_subscription(subscription_id)

        if self._is_stale_status_event(current, event_at):
            log.info(f"Discarding stale {event.meta.event_name} from {event_at.isoformat()}")
            return _Dispatched(WebhookOutcome.STALE, current.id, current.organization_id)

        if current.status not in from_statuses or current.status == to_status:
            log.info(
                f"{event.meta.event_name} leaves subscription {subscription_id} "
                f"{current.status.value}"
            )
            await crud.subscription.compare_and_set(
                self.db,
                id=current.id,
                expected_version=current.version,
                obj_in={},
                changed_at=current.last_changed_at,
                provider_event_at=event_at,
            )
            return _Dispatched(WebhookOutcome.IGNORED, current.id, current.organization_id)

        await crud.subscription.compare_and_set(
            self.db,
            id=current.id,
            expected_version=current.version,
            obj_in={"status": to_status},
            changed_at=max(current.last_changed_at, event_at),
            provider_event_at=event_at,
        )
        log.info(
            f"Subscription {subscription_id} moved from {current.status.value} to "
            f"{to_status.value} after {event.meta.event_name}"
        )
        return _Dispatched(WebhookOutcome.APPLIED, current.id, current.organization_id)

    # Helpers

    def _create_context_logger(
        self, event: schemas.WebhookPayload, event_id: str
    ) -> ContextualLogger:
        """Create contextual logger with organization context."""
        return logger.with_context(
            auth_method="lemonsqueezy_webhook",
            event_type=event.meta.event_name,
            event_id=event_id,
            external_subscription_id=event.data.id,
            organization_id=self._organization_id(event, required=False),
        )

    async def _get_subscription(self, external_subscription_id: str) -> schemas.Subscription:
        db_obj = await crud.subscription.get_by_external_id(
            self.db, external_subscription_id=external_subscription_id
        )
        if db_obj is None:
            raise NotFoundException(f"Subscription {external_subscription_id} not found")
        return schemas.Subscription.model_validate(db_obj, from_attributes=True)

    @staticmethod
    def _seat_fields(
        current: schemas.Subscription, quantity: int, event_at: datetime, log: ContextualLogger
    ) -> dict[str, Any]:
        """Seat columns for the provider quantity of a quantity-based or legacy row.

        A pending change is committed with the provider when it is scheduled,
        so the provider reports the pending quantity before it is due. Until
        then the current seats stay; from its effective date on it is promoted.
        """
        if current.pending_seats is None:
            return {"current_seats": quantity}
        if quantity == current.pending_seats and event_at < current.pending_effective_at:
            return {}
        if quantity != current.pending_seats:
            log.warning(
                f"Provider quantity {quantity} replaces the pending change to "
                f"{current.pending_seats} seats"
            )
        return {"current_seats": quantity, "pending_seats": None, "pending_effective_at": None}

    @staticmethod
    def _is_stale_status_event(current: schemas.Subscription, event_at: datetime) -> bool:
        """Status-only events are ordered against other provider events only.

        Seat writes by administrators do not make a later cancellation or
        payment event stale.
        """
        return current.provider_event_at is not None and event_at < current.provider_event_at

    def _classify(self, variant_id: Optional[str], log: ContextualLogger) -> BillingType:
        if variant_id is not None and variant_id == self._optional_str(self.yearly_variant_id):
            return BillingType.QUANTITY_BASED
        if variant_id is not None and variant_id == self._optional_str(self.monthly_variant_id):
            return BillingType.USAGE_BASED
        log.warning(f"Unrecognized product variant {variant_id!r}; treating subscription as legacy")
        return BillingType.LEGACY

    @staticmethod
    def _resolve_billing_type(
        current: BillingType, classified: BillingType, log: ContextualLogger
    ) -> BillingType:
        """Billing type is fixed once known; only legacy rows may be reclassified."""
        if current == BillingType.LEGACY:
            if classified != BillingType.LEGACY:
                log.info(f"Reclassified legacy subscription as {classified.value}")
            return classified
        if classified not in (BillingType.LEGACY, current):
            log.warning(
                f"Event variant suggests {classified.value} but subscription is "
                f"{current.value}; keeping {current.value}"
            )
        return current

    @staticmethod
    def _seat_price(billing_type: BillingType):
        if billing_type == BillingType.QUANTITY_BASED:
            return settings.YEARLY_PRICE_PER_SEAT
        if billing_type == BillingType.USAGE_BASED:
            return settings.MONTHLY_PRICE_PER_SEAT
        return 0

    @staticmethod
    def _parse(payload: dict[str, Any]) -> schemas.WebhookPayload:
        try:
            return schemas.WebhookPayload.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(f"Malformed webhook payload: {e.error_count()} error(s)") from e

    @classmethod
    def _event_id(cls, event: schemas.WebhookPayload) -> str:
        """Provider event id, or a deterministic substitute built from the event content."""
        if event.meta.event_id:
            return str(event.meta.event_id)
        attributes = event.data.attributes
        stamp = attributes.get("updated_at") or attributes.get("created_at") or ""
        return f"{event.meta.event_name}:{event.data.type}:{event.data.id}:{stamp}"

    @classmethod
    def _event_timestamp(cls, event: schemas.WebhookPayload) -> datetime:
        attributes = event.data.attributes
        return (
            cls._timestamp(attributes, "updated_at")
            or cls._timestamp(attributes, "created_at")
            or utc_now_naive()
        )

    @staticmethod
    def _timestamp(attributes: dict[str, Any], key: str) -> Optional[datetime]:
        value = attributes.get(key)
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"Invalid timestamp in {key}: {value!r}")
        try:
            return parse_provider_timestamp(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid timestamp in {key}: {attributes.get(key)!r}") from e

    @staticmethod
    def _status(attributes: dict[str, Any]) -> SubscriptionStatus:
        try:
            return SubscriptionStatus(attributes.get("status"))
        except ValueError as e:
            status = attributes.get("status")
            raise ValidationError(f"Unknown subscription status {status!r}") from e

    @staticmethod
    def _organization_id(event: schemas.WebhookPayload, *, required: bool) -> Optional[UUID]:
        raw = (event.meta.custom_data or {}).get("organization_id")
        if raw:
            try:
                return UUID(str(raw))
            except ValueError as e:
                if not required:
                    return None
                raise InvalidStateError(f"Invalid organization_id in custom data: {raw!r}") from e
        if required:
            raise InvalidStateError("Event carries no organization_id in custom data")
        return None

    @staticmethod
    def _optional_str(value: Any) -> Optional[str]:
        return None if value is None or value == "" else str(value)
