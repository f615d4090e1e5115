from . import refunds

__all__ = ["refunds"]
