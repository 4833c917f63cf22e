"""Unit tests for the pending-change applier."""

import uuid
from datetime import timedelta

import pytest

from seatsync import crud
from seatsync.core.datetime_utils import utc_now_naive
from seatsync.core.exceptions import ProviderRejectedError
from seatsync.core.shared_models import BillingType
from seatsync.integrations.lemonsqueezy_client import SERVICE_NAME
from seatsync.platform.billing.pending_changes import PendingChangeApplier
from seatsync.platform.billing.seat_manager import SeatManager


@pytest.fixture
def applier(mock_billing_client):
    """Applier using the mocked provider client."""
    return PendingChangeApplier(SeatManager(mock_billing_client))


@pytest.fixture
def make_due_change(db_session, make_subscription):
    """Create a subscription whose pending change fell due ``minutes_ago`` minutes ago."""

    async def _make(item_id: str, current_seats: int, pending_seats: int, minutes_ago: int, **kw):
        subscription = await make_subscription(
            organization=uuid.uuid4(),
            current_seats=current_seats,
            external_subscription_item_id=item_id,
            **kw,
        )
        await crud.subscription.compare_and_set(
            db_session,
            id=subscription.id,
            expected_version=subscription.version,
            obj_in={
                "pending_seats": pending_seats,
                "pending_effective_at": utc_now_naive() - timedelta(minutes=minutes_ago),
            },
        )
        return subscription

    return _make


class TestPendingChangeApplier:
    """Tests for PendingChangeApplier."""

    async def test_nothing_due(self, applier, db_session, make_subscription):
        """Subscriptions without due changes are left alone."""
        await make_subscription()

        summary = await applier.apply_due_pending_changes(db_session)

        assert summary.processed == 0
        assert summary.results == []

    async def test_scheduled_quantity_reaches_provider_before_renewal(
        self, applier, db_session, make_subscription, mock_billing_client
    ):
        """The provider bills the new count at renewal; the store switches once it is due."""
        subscription = await make_subscription(current_seats=5)
        scheduled = await SeatManager(mock_billing_client).schedule_seat_change(
            db_session, subscription.id, 3
        )

        mock_billing_client.update_subscription_quantity.assert_awaited_once_with(
            "item_1", 3, prorate=False, invoice_immediately=False
        )

        before = await applier.apply_due_pending_changes(
            db_session, now=scheduled.renews_at - timedelta(hours=1)
        )
        assert before.processed == 0
        stored = await crud.subscription.get(db_session, subscription.id)
        assert (stored.current_seats, stored.pending_seats) == (5, 3)

        after = await applier.apply_due_pending_changes(
            db_session, now=scheduled.renews_at + timedelta(minutes=1)
        )
        assert after.applied == 1
        stored = await crud.subscription.get(db_session, subscription.id)
        assert (stored.current_seats, stored.pending_seats) == (3, None)
        assert mock_billing_client.update_subscription_quantity.await_count == 1

    async def test_failure_does_not_stop_the_run(
        self, applier, db_session, make_due_change, mock_billing_client
    ):
        """The second of three due changes fails; the first and third still apply."""
        first = await make_due_change("item_a", 5, 3, minutes_ago=30)
        second = await make_due_change(
            "item_b", 8, 6, minutes_ago=20, billing_type=BillingType.USAGE_BASED
        )
        third = await make_due_change(
            "item_c", 10, 12, minutes_ago=10, billing_type=BillingType.USAGE_BASED
        )

        async def reject_item_b(item_id, quantity, **kwargs):
            if item_id == "item_b":
                raise ProviderRejectedError(SERVICE_NAME, 422, [{"detail": "Item is locked"}])
            return {"type": "usage-records", "id": item_id}

        mock_billing_client.create_usage_record.side_effect = reject_item_b

        summary = await applier.apply_due_pending_changes(db_session)

        assert summary.processed == 3
        assert summary.applied == 2
        assert [result.subscription_id for result in summary.results] == [
            first.id,
            second.id,
            third.id,
        ]
        assert [result.applied for result in summary.results] == [True, False, True]
        assert "Item is locked" in summary.failures[0].error

        stored_first = await crud.subscription.get(db_session, first.id)
        stored_second = await crud.subscription.get(db_session, second.id)
        stored_third = await crud.subscription.get(db_session, third.id)
        assert (stored_first.current_seats, stored_first.pending_seats) == (3, None)
        assert (stored_second.current_seats, stored_second.pending_seats) == (8, 6)
        assert (stored_third.current_seats, stored_third.pending_seats) == (12, None)

        mock_billing_client.update_subscription_quantity.assert_not_awaited()
        assert [call.args for call in mock_billing_client.create_usage_record.call_args_list] == [
            ("item_b", 6),
            ("item_c", 12),
        ]

    async def test_failed_change_is_retried_next_run(
        self, applier, db_session, make_due_change, mock_billing_client
    ):
        """A change that failed stays pending and is applied by a later run."""
        subscription = await make_due_change(
            "item_a", 10, 8, minutes_ago=5, billing_type=BillingType.USAGE_BASED
        )
        mock_billing_client.create_usage_record.side_effect = ProviderRejectedError(
            SERVICE_NAME, 409, []
        )

        first_run = await applier.apply_due_pending_changes(db_session)
        mock_billing_client.create_usage_record.side_effect = None
        second_run = await applier.apply_due_pending_changes(db_session)

        assert len(first_run.failures) == 1
        assert second_run.applied == 1
        stored = await crud.subscription.get(db_session, subscription.id)
        assert stored.current_seats == 8
