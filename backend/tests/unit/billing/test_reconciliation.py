"""Unit tests for the subscription reconciler."""

import uuid

import pytest

from seatsync.core.exceptions import ProviderUnavailableError
from seatsync.core.shared_models import BillingType, SubscriptionStatus
from seatsync.integrations.lemonsqueezy_client import SERVICE_NAME
from seatsync.platform.billing.reconciliation import SubscriptionReconciler
from seatsync.platform.billing.seat_manager import SeatManager


@pytest.fixture
def reconciler(mock_billing_client):
    """Reconciler using the mocked provider client."""
    return SubscriptionReconciler(SeatManager(mock_billing_client))


async def test_reports_matches_mismatches_and_failures(
    reconciler, db_session, make_subscription, mock_billing_client
):
    """Each live subscription is compared; provider errors are reported per row."""
    matching = await make_subscription(
        organization=uuid.uuid4(), current_seats=5, external_subscription_item_id="item_match"
    )
    drifted = await make_subscription(
        organization=uuid.uuid4(), current_seats=7, external_subscription_item_id="item_drift"
    )
    unreachable = await make_subscription(
        organization=uuid.uuid4(), current_seats=3, external_subscription_item_id="item_down"
    )
    usage = await make_subscription(
        organization=uuid.uuid4(),
        billing_type=BillingType.USAGE_BASED,
        current_seats=11,
        external_subscription_item_id="item_usage",
    )
    await make_subscription(organization=uuid.uuid4(), status=SubscriptionStatus.EXPIRED)
    await make_subscription(organization=uuid.uuid4(), external_subscription_item_id=None)

    quantities = {"item_match": 5, "item_drift": 6}

    async def get_item(item_id):
        if item_id == "item_down":
            raise ProviderUnavailableError(SERVICE_NAME, "timed out")
        return {"id": item_id, "attributes": {"quantity": quantities[item_id]}}

    mock_billing_client.get_subscription_item.side_effect = get_item
    mock_billing_client.get_current_usage.return_value = {"quantity": 11}

    summary = await reconciler.reconcile(db_session)

    assert summary.checked == 4
    assert summary.matches == 2
    by_id = {result.subscription_id: result for result in summary.results}
    assert by_id[matching.id].matches is True
    assert by_id[usage.id].matches is True
    assert [result.subscription_id for result in summary.mismatches] == [drifted.id]
    assert by_id[drifted.id].provider_seats == 6
    assert [result.subscription_id for result in summary.failures] == [unreachable.id]
    assert by_id[unreachable.id].matches is None
    assert "timed out" in by_id[unreachable.id].error


async def test_reconcile_never_writes(
    reconciler, db_session, make_subscription, mock_billing_client
):
    """A mismatch is reported, not corrected."""
    subscription = await make_subscription(current_seats=7)
    mock_billing_client.get_subscription_item.return_value = {"attributes": {"quantity": 9}}

    summary = await reconciler.reconcile(db_session)

    assert len(summary.mismatches) == 1
    stored = await SeatManager(mock_billing_client).get_subscription(db_session, subscription.id)
    assert stored.current_seats == 7
    assert stored.version == subscription.version
    mock_billing_client.update_subscription_quantity.assert_not_awaited()


async def test_scheduled_change_held_by_provider_matches(
    reconciler, db_session, make_subscription, mock_billing_client
):
    """A scheduled quantity the provider already holds is not drift."""
    subscription = await make_subscription(current_seats=5)
    await SeatManager(mock_billing_client).schedule_seat_change(db_session, subscription.id, 3)
    mock_billing_client.get_subscription_item.return_value = {"attributes": {"quantity": 3}}

    summary = await reconciler.reconcile(db_session)

    result = summary.results[0]
    assert (result.store_seats, result.expected_seats, result.provider_seats) == (5, 3, 3)
    assert result.matches is True
    assert summary.mismatches == []
