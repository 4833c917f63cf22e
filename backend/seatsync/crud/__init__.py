"""CRUD operations for the application."""

from .crud_billing_event import billing_event
from .crud_subscription import subscription

# flake8: noqa: F401
