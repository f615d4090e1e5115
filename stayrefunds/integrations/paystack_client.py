"""Minimal Paystack API client for refund settlement."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, cast

import httpx
from pydantic import SecretStr

logger = logging.getLogger(__name__)


class PaymentGatewayError(RuntimeError):
    """Raised when Paystack cannot be reached or answers with an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_body = error_body


class PaystackClient:
    """Thin client for the Paystack REST API."""

    def __init__(
        self,
        *,
        secret_key: str | SecretStr,
        base_url: str = "https://api.paystack.co",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        secret_value = (
            secret_key.get_secret_value() if isinstance(secret_key, SecretStr) else secret_key
        )
        if not secret_value:
            raise ValueError("Paystack secret key must be provided")

        self._secret_key = secret_value
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def create_refund(
        self,
        *,
        transaction: str,
        amount: int,
        currency: str,
        customer_note: str | None = None,
        merchant_note: str | None = None,
    ) -> Dict[str, Any]:
        """
        Ask Paystack to refund (part of) a settled transaction.

        ``amount`` is in minor units (kobo/cents). The raw envelope
        ``{"status": bool, "message": str, "data": {...}}`` is returned so the
        caller can tell a declined refund apart from an accepted one.
        """
        if not transaction:
            raise ValueError("transaction reference must be provided")

        body: Dict[str, Any] = {
            "transaction": transaction,
            "amount": amount,
            "currency": currency,
            "customer_note": customer_note,
            "merchant_note": merchant_note,
        }
        body = {key: value for key, value in body.items() if value is not None}
        return self.request("POST", "/refund", json_body=body)

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Perform a raw Paystack API request and return the parsed JSON payload."""

        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self._secret_key}",
                "Accept": "application/json",
            },
        ) as client:
            try:
                response = client.request(method, url, json=json_body)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                error_payload: Any | None = None
                message = f"Paystack API responded with status {status}"
                try:
                    error_payload = exc.response.json()
                    if isinstance(error_payload, dict) and error_payload.get("message"):
                        message = str(error_payload["message"])
                except json.JSONDecodeError:
                    error_payload = exc.response.text

                logger.error(
                    "Paystack API error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    exc.response.text[:500],
                )
                raise PaymentGatewayError(
                    message, status_code=status, error_body=error_payload
                ) from exc
            except httpx.RequestError as exc:
                logger.error("Paystack request failure for %s %s: %s", method, path, str(exc))
                raise PaymentGatewayError("Failed to reach Paystack API") from exc

        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from Paystack for %s %s: %s", method, path, response.text)
            raise PaymentGatewayError("Received malformed JSON from Paystack") from exc

        if not isinstance(payload, dict):
            raise PaymentGatewayError("Unexpected response shape from Paystack")
        return cast(Dict[str, Any], payload)
