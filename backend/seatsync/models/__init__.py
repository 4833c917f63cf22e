"""Models for the application."""

from ._base import Base
from .billing_event import BillingEvent
from .subscription import Subscription

# flake8: noqa: F401
