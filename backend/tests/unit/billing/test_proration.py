"""Unit tests for proration of quantity-based seat changes."""

from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from seatsync.core.exceptions import InvalidStateError, NotApplicableError
from seatsync.core.shared_models import BillingType
from seatsync.platform.billing.proration import (
    calculate_proration,
    derive_period_start,
    minor_unit,
    quantize_amount,
)

PERIOD_START = datetime(2025, 1, 1)
PERIOD_END = PERIOD_START + timedelta(days=30)


def _subscription(**overrides):
    values = {
        "billing_type": BillingType.QUANTITY_BASED.value,
        "current_seats": 8,
        "period_start": PERIOD_START,
        "renews_at": PERIOD_END,
        "per_seat_price": Decimal("10.00"),
        "currency": "PLN",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestCalculateProration:
    """Tests for calculate_proration."""

    def test_half_period_increase(self):
        """Adding 2 seats halfway through a 30 day period charges half of their price."""
        details = calculate_proration(
            _subscription(), new_quantity=10, now=PERIOD_START + timedelta(days=15)
        )

        assert details.seats_added == 2
        assert details.days_remaining == 15
        assert details.total_days == 30
        assert details.amount == Decimal("10.00")
        assert details.currency == "PLN"
        assert "2 additional seats" in details.message

    def test_unchanged_quantity_costs_nothing(self):
        """Previewing the current seat count charges nothing."""
        details = calculate_proration(
            _subscription(), new_quantity=8, now=PERIOD_START + timedelta(days=15)
        )

        assert details.seats_added == 0
        assert details.amount == Decimal("0.00")

    def test_decrease_is_never_negative(self):
        """Removing seats reports the negative delta but never a credit."""
        details = calculate_proration(
            _subscription(), new_quantity=5, now=PERIOD_START + timedelta(days=10)
        )

        assert details.seats_added == -3
        assert details.amount == Decimal("0.00")
        assert "no credit" in details.message

    def test_partial_days_round_up(self):
        """A partially elapsed day still counts as remaining."""
        now = PERIOD_START + timedelta(days=14, hours=12)

        details = calculate_proration(_subscription(), new_quantity=9, now=now)

        assert details.days_remaining == 16
        # 1 * 10.00 * 16 / 30 = 5.333.. rounds to 5.33
        assert details.amount == Decimal("5.33")

    def test_half_cent_rounds_up(self):
        """Amounts are rounded half up to the minor unit."""
        subscription = _subscription(per_seat_price=Decimal("0.05"), currency="USD")

        details = calculate_proration(
            subscription, new_quantity=9, now=PERIOD_START + timedelta(days=15)
        )

        # 0.05 * 15 / 30 = 0.025
        assert details.amount == Decimal("0.03")

    def test_period_over_charges_nothing(self):
        """After the renewal date no days remain and nothing is charged."""
        details = calculate_proration(
            _subscription(), new_quantity=12, now=PERIOD_END + timedelta(hours=1)
        )

        assert details.days_remaining == 0
        assert details.amount == Decimal("0.00")

    def test_days_remaining_capped_at_period_length(self):
        """A reference time before the period start is treated as the full period."""
        details = calculate_proration(
            _subscription(), new_quantity=9, now=PERIOD_START - timedelta(days=3)
        )

        assert details.days_remaining == 30
        assert details.amount == Decimal("10.00")

    def test_zero_decimal_currency(self):
        """JPY amounts have no fractional part."""
        subscription = _subscription(per_seat_price=Decimal("1000"), currency="jpy")

        details = calculate_proration(
            subscription, new_quantity=9, now=PERIOD_START + timedelta(days=20)
        )

        # 1000 * 10 / 30 = 333.33..
        assert details.amount == Decimal("333")
        assert details.currency == "JPY"

    def test_usage_based_is_not_applicable(self):
        """Usage-based subscriptions have no proration."""
        with pytest.raises(NotApplicableError) as exc_info:
            calculate_proration(
                _subscription(billing_type=BillingType.USAGE_BASED.value), new_quantity=10
            )

        assert exc_info.value.billing_type == "usage_based"

    def test_missing_period_is_invalid_state(self):
        """Without period boundaries nothing can be prorated."""
        with pytest.raises(InvalidStateError):
            calculate_proration(_subscription(period_start=None), new_quantity=10)


class TestCurrencyHelpers:
    """Tests for currency rounding helpers."""

    @pytest.mark.parametrize(
        "currency, expected",
        [("USD", Decimal("0.01")), ("jpy", Decimal("1")), ("KWD", Decimal("0.001"))],
    )
    def test_minor_unit(self, currency, expected):
        """Minor units follow ISO 4217 exponents."""
        assert minor_unit(currency) == expected

    def test_quantize_amount(self):
        """Quantizing uses half up rounding."""
        assert quantize_amount(Decimal("2.345"), "EUR") == Decimal("2.35")


class TestDerivePeriodStart:
    """Tests for derive_period_start."""

    def test_yearly_and_monthly_periods(self):
        """Quantity-based plans renew yearly, usage-based plans monthly."""
        renews_at = datetime(2025, 3, 31, 8, 0)

        assert derive_period_start(BillingType.QUANTITY_BASED, renews_at) == datetime(
            2024, 3, 31, 8, 0
        )
        assert derive_period_start(BillingType.USAGE_BASED, renews_at) == datetime(
            2025, 2, 28, 8, 0
        )

    def test_legacy_has_no_period(self):
        """Legacy plans have no known period."""
        assert derive_period_start(BillingType.LEGACY, datetime(2025, 1, 1)) is None
        assert derive_period_start(BillingType.QUANTITY_BASED, None) is None
