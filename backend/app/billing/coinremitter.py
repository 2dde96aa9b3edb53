"""Async Coinremitter API client — crypto invoices for subscriptions and token packs.

Coinremitter carries our correlation data back to us in two free-form invoice
fields: ``custom_data1`` holds the user id and ``custom_data2`` holds either a
billing cycle (``monthly``) or a token package marker (``tokens-pack-550``).
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from app.billing.catalog import (
    BILLING_CYCLE_MONTHS,
    get_subscription_price,
    get_token_package,
    is_token_package,
)
from app.billing.exceptions import PaymentProviderError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coinremitter.com/v1"
INVOICE_EXPIRY_MINUTES = "1440"
TOKEN_MARKER_PREFIX = "tokens-"

# Invoice status codes
STATUS_PENDING = 0
STATUS_PAID = 1
STATUS_UNDER_PAID = 2
STATUS_OVER_PAID = 3
STATUS_EXPIRED = 4
STATUS_CANCELLED = 5


def _status_code(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def is_payment_complete(status_code: Any) -> bool:
    return _status_code(status_code) in (STATUS_PAID, STATUS_OVER_PAID)


def is_payment_pending(status_code: Any) -> bool:
    return _status_code(status_code) in (STATUS_PENDING, STATUS_UNDER_PAID)


def is_payment_failed(status_code: Any) -> bool:
    return _status_code(status_code) in (STATUS_EXPIRED, STATUS_CANCELLED)


def package_marker(package_id: str) -> str:
    """Encode a package id for ``custom_data2``: ``pack_550`` -> ``tokens-pack-550``."""
    return TOKEN_MARKER_PREFIX + package_id.replace("_", "-")


def is_token_purchase(payload: dict) -> bool:
    return str(payload.get("custom_data2") or "").startswith(TOKEN_MARKER_PREFIX)


def parse_subscription_data(payload: dict) -> dict[str, str] | None:
    """Extract ``{user_id, billing_cycle}`` from a webhook payload, or None."""
    user_id = payload.get("custom_data1")
    billing_cycle = payload.get("custom_data2")
    if not user_id or not billing_cycle:
        return None
    if billing_cycle not in BILLING_CYCLE_MONTHS:
        return None
    return {"user_id": str(user_id), "billing_cycle": str(billing_cycle)}


def parse_token_purchase_data(payload: dict) -> dict[str, str] | None:
    """Extract ``{user_id, package_id}`` from a token purchase webhook payload, or None."""
    user_id = payload.get("custom_data1")
    marker = str(payload.get("custom_data2") or "")
    if not user_id or not marker.startswith(TOKEN_MARKER_PREFIX):
        return None
    package_id = marker[len(TOKEN_MARKER_PREFIX) :].replace("-", "_")
    if not is_token_package(package_id):
        return None
    return {"user_id": str(user_id), "package_id": package_id}


class CoinremitterClient:
    """Thin async wrapper over the Coinremitter invoice API."""

    def __init__(
        self,
        api_key: str,
        api_password: str,
        app_url: str,
        test_mode: bool = False,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_password = api_password
        self.app_url = app_url.rstrip("/")
        self.test_mode = test_mode
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_password)

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "x-api-password": self.api_password,
            "Content-Type": "application/json",
        }

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def _post(self, path: str, body: dict[str, str]) -> dict:
        """POST to the API and return the ``data`` object of a successful response."""
        try:
            async with self._client() as client:
                response = await client.post(f"{self.base_url}{path}", json=body, headers=self._headers())
        except httpx.HTTPError as exc:
            raise PaymentProviderError(f"Coinremitter request failed: {exc}") from exc

        if response.is_error:
            logger.error("Coinremitter %s failed with status %s: %s", path, response.status_code, response.text)
            raise PaymentProviderError(
                f"Coinremitter API error: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError:
            raise PaymentProviderError(
                "Coinremitter API returned invalid JSON response",
                status_code=response.status_code,
                body=response.text,
            ) from None

        if not payload.get("success"):
            message = payload.get("error") or payload.get("msg") or "Unknown error"
            raise PaymentProviderError(f"Coinremitter API error: {message}", body=response.text)

        return payload.get("data") or {}

    def _invoice_body(self, amount: str, description: str, success_url: str, fail_url: str) -> dict[str, str]:
        body = {
            "amount": amount,
            "expiry_time_in_minutes": INVOICE_EXPIRY_MINUTES,
            "notify_url": f"{self.app_url}/api/webhooks/coinremitter",
            "success_url": success_url,
            "fail_url": fail_url,
            "description": description + (" (TEST)" if self.test_mode else ""),
        }
        # The test coin is not fiat-priced
        if not self.test_mode:
            body["fiat_currency"] = "USD"
        return body

    async def create_invoice(self, user_id: str, billing_cycle: str, email: str | None = None) -> dict:
        """Create a subscription invoice. Returns the provider invoice (``invoice_id``, ``url``, ...)."""
        price = get_subscription_price(billing_cycle, self.test_mode)
        body = self._invoice_body(
            amount=str(price.amount),
            description=f"XChatLife {billing_cycle} Subscription",
            success_url=f"{self.app_url}/dashboard?subscription=success",
            fail_url=f"{self.app_url}/dashboard?subscription=cancelled",
        )
        body["custom_data1"] = user_id
        body["custom_data2"] = billing_cycle
        if email:
            body["email"] = email

        logger.info("Creating Coinremitter %s invoice for user %s", billing_cycle, user_id)
        invoice = await self._post("/invoice/create", body)
        logger.info("Created Coinremitter invoice %s for user %s", invoice.get("invoice_id"), user_id)
        return invoice

    async def create_token_purchase_invoice(self, user_id: str, package_id: str, email: str | None = None) -> dict:
        """Create a one-time invoice for a token package."""
        package = get_token_package(package_id, self.test_mode)
        body = self._invoice_body(
            amount=str(package.price),
            description=f"XChatLife {package.tokens} Tokens",
            success_url=f"{self.app_url}/buy-tokens?purchase=success",
            fail_url=f"{self.app_url}/buy-tokens?purchase=cancelled",
        )
        body["custom_data1"] = user_id
        body["custom_data2"] = package_marker(package_id)
        if email:
            body["email"] = email

        logger.info("Creating Coinremitter token invoice for user %s, package %s", user_id, package_id)
        return await self._post("/invoice/create", body)

    async def get_invoice(self, invoice_id: str) -> dict | None:
        """Fetch an invoice for webhook verification. Returns None on any failure."""
        try:
            return await self._post("/invoice/get", {"invoice_id": invoice_id})
        except PaymentProviderError:
            logger.exception("Failed to fetch Coinremitter invoice %s", invoice_id)
            return None
