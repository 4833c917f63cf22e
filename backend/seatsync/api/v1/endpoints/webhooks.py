"""Webhook endpoint of the billing provider."""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync import schemas
from seatsync.api import deps
from seatsync.api.router import TrailingSlashRouter
from seatsync.core.exceptions import NotFoundException, WebhookDispatchError
from seatsync.core.logging import ContextualLogger
from seatsync.core.shared_models import WebhookDeliveryStatus
from seatsync.integrations.lemonsqueezy_client import LemonSqueezyClient
from seatsync.platform.billing.webhook_handler import BillingWebhookProcessor, WebhookResult

router = TrailingSlashRouter()

SUPPORTED_PROVIDERS = frozenset({BillingWebhookProcessor.provider})


def webhook_ack(result: WebhookResult) -> schemas.WebhookAck:
    return schemas.WebhookAck(
        status=result.status,
        event_id=result.event_id,
        event_type=result.event_type,
        outcome=result.outcome.value if result.outcome else None,
        detail=result.detail,
    )


@router.post("/{provider}", response_model=schemas.WebhookAck)
async def receive_webhook(
    provider: str,
    request: Request,
    x_signature: Optional[str] = Header(None, alias="X-Signature"),
    db: AsyncSession = Depends(deps.get_db),
    client: Optional[LemonSqueezyClient] = Depends(deps.get_billing_client),
    log: ContextualLogger = Depends(deps.get_logger),
) -> schemas.WebhookAck:
    """Receive a billing provider webhook.

    The raw body is verified against the ``X-Signature`` header before anything
    is parsed or stored. Once an event is recorded the endpoint answers 200,
    including when applying it failed: the failure stays on the ledger entry
    and the retry cron job picks it up.

    Args:
        provider: Provider slug from the URL
        request: Raw HTTP request
        x_signature: HMAC-SHA256 hex digest of the body
        db: Database session
        client: Provider client, for the initial usage of new usage-based subscriptions
        log: Request logger

    Returns:
        Acknowledgement with the delivery status

    Raises:
        NotFoundException: For providers without a webhook integration
        WebhookSignatureError: If the signature does not verify (401)
        ValidationError: If the body is not a webhook payload (400)
    """
    if provider not in SUPPORTED_PROVIDERS:
        raise NotFoundException(f"No webhook integration for provider '{provider}'")

    payload = await request.body()
    processor = BillingWebhookProcessor(db, client)
    try:
        result = await processor.process(payload, x_signature)
    except WebhookDispatchError as e:
        log.error(f"Recorded {e.event_type} event {e.event_id} could not be applied: {e.detail}")
        return schemas.WebhookAck(
            status=WebhookDeliveryStatus.FAILED,
            event_id=e.event_id,
            event_type=e.event_type,
            detail=e.detail,
        )
    return webhook_ack(result)
