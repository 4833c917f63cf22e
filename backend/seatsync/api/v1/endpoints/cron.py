"""Scheduler-triggered jobs.

Every endpoint requires ``Authorization: Bearer <CRON_SECRET>`` and accepts
both GET and POST so any scheduler can call it.
"""

from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync import schemas
from seatsync.api import deps
from seatsync.api.router import TrailingSlashRouter
from seatsync.api.v1.endpoints.webhooks import webhook_ack
from seatsync.core.exceptions import ProviderUnavailableError
from seatsync.core.logging import ContextualLogger
from seatsync.core.shared_models import WebhookDeliveryStatus
from seatsync.integrations.lemonsqueezy_client import SERVICE_NAME, LemonSqueezyClient
from seatsync.platform.billing.pending_changes import PendingChangeApplier
from seatsync.platform.billing.reconciliation import SubscriptionReconciler
from seatsync.platform.billing.webhook_handler import BillingWebhookProcessor

router = TrailingSlashRouter(dependencies=[Depends(deps.require_cron_secret)])


def _require_client(client: Optional[LemonSqueezyClient]) -> None:
    if client is None:
        raise ProviderUnavailableError(
            service_name=SERVICE_NAME, message="Billing provider client is not configured"
        )


@router.api_route(
    "/apply-pending-subscription-changes",
    methods=["GET", "POST"],
    response_model=schemas.PendingChangeRunResponse,
)
async def apply_pending_subscription_changes(
    db: AsyncSession = Depends(deps.get_db),
    client: Optional[LemonSqueezyClient] = Depends(deps.get_billing_client),
    applier: PendingChangeApplier = Depends(deps.get_pending_change_applier),
    log: ContextualLogger = Depends(deps.get_logger),
) -> schemas.PendingChangeRunResponse:
    """Apply scheduled seat changes whose effective date has passed.

    Returns:
        Counts and per-subscription results of the run
    """
    _require_client(client)
    summary = await applier.apply_due_pending_changes(db, log=log)

    failed = len(summary.failures)
    if summary.processed == 0:
        message = "No pending subscription changes"
    else:
        message = f"Applied {summary.applied} of {summary.processed} pending subscription changes"
    return schemas.PendingChangeRunResponse(
        success=failed == 0,
        processed=summary.processed,
        failed=failed,
        message=message,
        results=[
            schemas.PendingChangeRunResult(
                subscription_id=result.subscription_id,
                applied=result.applied,
                previous_seats=result.previous_seats,
                new_seats=result.new_seats,
                error=result.error,
            )
            for result in summary.results
        ],
    )


@router.api_route(
    "/reconcile-subscriptions",
    methods=["GET", "POST"],
    response_model=schemas.ReconciliationRunResponse,
)
async def reconcile_subscriptions(
    db: AsyncSession = Depends(deps.get_db),
    client: Optional[LemonSqueezyClient] = Depends(deps.get_billing_client),
    reconciler: SubscriptionReconciler = Depends(deps.get_reconciler),
    log: ContextualLogger = Depends(deps.get_logger),
) -> schemas.ReconciliationRunResponse:
    """Compare stored seat counts with what the provider bills. Read-only.

    Returns:
        Match, mismatch and failure counts with per-subscription results
    """
    _require_client(client)
    summary = await reconciler.reconcile(db, log=log)

    mismatches = len(summary.mismatches)
    failed = len(summary.failures)
    return schemas.ReconciliationRunResponse(
        success=mismatches == 0 and failed == 0,
        checked=summary.checked,
        matches=summary.matches,
        mismatches=mismatches,
        failed=failed,
        message=(
            f"Checked {summary.checked} subscriptions: {summary.matches} match, "
            f"{mismatches} mismatch, {failed} failed"
        ),
        results=[
            schemas.ReconciliationRunResult(
                subscription_id=result.subscription_id,
                organization_id=result.organization_id,
                billing_type=result.billing_type,
                store_seats=result.store_seats,
                expected_seats=result.expected_seats,
                provider_seats=result.provider_seats,
                matches=result.matches,
                error=result.error,
            )
            for result in summary.results
        ],
    )


@router.api_route(
    "/retry-webhook-events",
    methods=["GET", "POST"],
    response_model=schemas.WebhookRetryRunResponse,
)
async def retry_webhook_events(
    limit: int = 100,
    db: AsyncSession = Depends(deps.get_db),
    client: Optional[LemonSqueezyClient] = Depends(deps.get_billing_client),
    log: ContextualLogger = Depends(deps.get_logger),
) -> schemas.WebhookRetryRunResponse:
    """Re-apply recorded webhook events whose processing failed.

    Returns:
        Per-event acknowledgements of the retry
    """
    results = await BillingWebhookProcessor(db, client).retry_failed(limit=limit)
    failed = sum(1 for result in results if result.status == WebhookDeliveryStatus.FAILED)
    log.info(f"Retried {len(results)} failed webhook event(s), {failed} still failing")

    if not results:
        message = "No failed webhook events"
    else:
        message = f"Retried {len(results)} webhook events, {failed} still failing"
    return schemas.WebhookRetryRunResponse(
        success=failed == 0,
        processed=len(results),
        failed=failed,
        message=message,
        results=[webhook_ack(result) for result in results],
    )
