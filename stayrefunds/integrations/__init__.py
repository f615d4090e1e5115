from .paystack_client import PaymentGatewayError, PaystackClient

__all__ = ["PaymentGatewayError", "PaystackClient"]
