"""Refund lifecycle engine for multi-tenant hospitality bookings."""

__version__ = "0.1.0"
