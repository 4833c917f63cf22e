"""Pure proration logic for quantity-based seat changes.

Nothing in this module touches the database or the provider, so a preview
computed here can never mutate state.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol

from dateutil.relativedelta import relativedelta

from seatsync.core.datetime_utils import utc_now_naive
from seatsync.core.exceptions import InvalidStateError, NotApplicableError
from seatsync.core.shared_models import BillingType

ZERO_DECIMAL_CURRENCIES = frozenset(
    {"BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG", "RWF", "UGX", "VND", "VUV"}
    | {"XAF", "XOF", "XPF"}
)
THREE_DECIMAL_CURRENCIES = frozenset({"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"})

_ONE_DAY = timedelta(days=1)


class ProratableSubscription(Protocol):
    """The subscription fields proration reads. ORM rows and schemas both fit."""

    billing_type: str
    current_seats: int
    period_start: Optional[datetime]
    renews_at: Optional[datetime]
    per_seat_price: Decimal
    currency: str


@dataclass(frozen=True)
class ProrationDetails:
    """Prorated charge for moving a subscription to a new seat count."""

    amount: Decimal
    days_remaining: int
    total_days: int
    seats_added: int
    per_seat_price: Decimal
    currency: str
    message: str


def minor_unit(currency: str) -> Decimal:
    """Smallest amount representable in the currency, e.g. 0.01 for USD and 1 for JPY."""
    code = currency.upper()
    if code in ZERO_DECIMAL_CURRENCIES:
        return Decimal("1")
    if code in THREE_DECIMAL_CURRENCIES:
        return Decimal("0.001")
    return Decimal("0.01")


def quantize_amount(amount: Decimal, currency: str) -> Decimal:
    """Round half up to the currency's minor unit."""
    return amount.quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def period_length(billing_type: BillingType) -> Optional[relativedelta]:
    """Billing period of a billing type. Legacy plans have no known period."""
    if billing_type == BillingType.QUANTITY_BASED:
        return relativedelta(years=1)
    if billing_type == BillingType.USAGE_BASED:
        return relativedelta(months=1)
    return None


def derive_period_start(
    billing_type: BillingType, renews_at: Optional[datetime]
) -> Optional[datetime]:
    """Start of the billing period that ends at ``renews_at``."""
    length = period_length(billing_type)
    if renews_at is None or length is None:
        return None
    return renews_at - length


def _ceil_days(delta: timedelta) -> int:
    return math.ceil(delta / _ONE_DAY)


def _describe(seats_added: int, days_remaining: int, amount: Decimal, currency: str) -> str:
    if seats_added == 0:
        return "Seat count is unchanged; nothing to charge"
    if seats_added < 0:
        removed = -seats_added
        return (
            f"Removing {removed} seat{'s' if removed != 1 else ''} takes effect immediately; "
            "no charge and no credit is issued for the rest of the billing period"
        )
    if days_remaining == 0:
        return "The billing period is ending; new seats are billed from the next renewal"
    return (
        f"{seats_added} additional seat{'s' if seats_added != 1 else ''} for the remaining "
        f"{days_remaining} day{'s' if days_remaining != 1 else ''} of the billing period: "
        f"{amount} {currency}"
    )


def calculate_proration(
    subscription: ProratableSubscription,
    new_quantity: int,
    now: Optional[datetime] = None,
) -> ProrationDetails:
    """Compute the prorated charge for changing a quantity-based subscription's seats.

    ``amount = seats_added * per_seat_price * days_remaining / total_days``,
    where both day counts are rounded up to whole days and the result is
    rounded half up to the currency's minor unit. Decreases are never charged
    and never produce a negative amount.

    Args:
        subscription: The subscription as currently stored
        new_quantity: Requested seat count
        now: Reference time, naive UTC; defaults to the current time

    Returns:
        ProrationDetails

    Raises:
        NotApplicableError: If the subscription is not quantity-based
        InvalidStateError: If the billing period boundaries are unknown
    """
    billing_type = BillingType(subscription.billing_type)
    if billing_type != BillingType.QUANTITY_BASED:
        raise NotApplicableError(
            billing_type.value, "Proration only applies to quantity-based subscriptions"
        )
    if subscription.period_start is None or subscription.renews_at is None:
        raise InvalidStateError("Billing period boundaries of the subscription are unknown")

    now = now or utc_now_naive()
    per_seat_price = Decimal(subscription.per_seat_price)
    currency = subscription.currency.upper()

    total_days = max(_ceil_days(subscription.renews_at - subscription.period_start), 1)
    days_remaining = min(max(_ceil_days(subscription.renews_at - now), 0), total_days)
    seats_added = new_quantity - subscription.current_seats

    if seats_added > 0 and days_remaining > 0:
        raw = Decimal(seats_added) * per_seat_price * Decimal(days_remaining) / Decimal(total_days)
        amount = quantize_amount(raw, currency)
    else:
        amount = quantize_amount(Decimal(0), currency)

    return ProrationDetails(
        amount=amount,
        days_remaining=days_remaining,
        total_days=total_days,
        seats_added=seats_added,
        per_seat_price=per_seat_price,
        currency=currency,
        message=_describe(seats_added, days_remaining, amount, currency),
    )
