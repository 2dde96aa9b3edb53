"""Async NOWPayments API client — email subscriptions, one-time token payments, IPN.

Subscription endpoints need a short-lived bearer token obtained from
``POST /auth``. The token lives in a :class:`JwtTokenCache` that the caller
owns (the FastAPI app keeps one on ``app.state``), so tests can inject, inspect
and reset it.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import httpx

from app.billing.catalog import get_token_package, is_token_package
from app.billing.exceptions import PaymentProviderError, PaymentProviderNotConfiguredError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.nowpayments.io/v1"

# NOWPayments expires its JWT after 5 minutes; refresh a minute early.
JWT_CACHE_TTL_SECONDS = 4 * 60

TOKEN_ORDER_PREFIX = "tokens_"

PAYMENT_WAITING_STATUSES = frozenset({"waiting", "confirming", "confirmed", "sending"})
PAYMENT_FAILED_STATUSES = frozenset({"failed", "refunded", "expired"})


@dataclass
class JwtTokenCache:
    """Holds one bearer token and when it stops being reusable."""

    ttl_seconds: float = JWT_CACHE_TTL_SECONDS
    clock: Callable[[], float] = time.monotonic
    token: str | None = None
    expires_at: float = 0.0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def get(self) -> str | None:
        """Return the cached token if it is still fresh."""
        if self.token is not None and self.clock() < self.expires_at:
            return self.token
        return None

    def store(self, token: str) -> str:
        self.token = token
        self.expires_at = self.clock() + self.ttl_seconds
        return token

    def clear(self) -> None:
        self.token = None
        self.expires_at = 0.0

    async def get_or_refresh(self, fetch: Callable[[], Awaitable[str]]) -> str:
        """Return a fresh token, calling ``fetch`` at most once per expiry."""
        token = self.get()
        if token is not None:
            return token
        async with self._lock:
            token = self.get()
            if token is not None:
                return token
            return self.store(await fetch())


def _js_compatible(value: Any) -> Any:
    """Render integral floats as ints so JSON matches JavaScript's serializer."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {key: _js_compatible(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_js_compatible(item) for item in value]
    return value


def compute_ipn_signature(payload: dict, secret: str) -> str:
    """HMAC-SHA512 hex digest of the payload serialized with top-level keys sorted."""
    ordered = {key: _js_compatible(payload[key]) for key in sorted(payload)}
    message = json.dumps(ordered, separators=(",", ":"), ensure_ascii=False)
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha512).hexdigest()


def is_payment_complete(status: str | None) -> bool:
    return status == "finished"


def is_payment_pending(status: str | None) -> bool:
    return status in PAYMENT_WAITING_STATUSES


def is_payment_failed(status: str | None) -> bool:
    return status in PAYMENT_FAILED_STATUSES


def is_payment_partially_paid(status: str | None) -> bool:
    return status == "partially_paid"


def is_subscription_active(status: str | None) -> bool:
    return status == "PAID"


def is_subscription_waiting_payment(status: str | None) -> bool:
    return status == "WAITING_PAY"


def is_subscription_expired(status: str | None) -> bool:
    return status == "EXPIRED"


def months_to_interval_days(months: int) -> int:
    """NOWPayments bills plans on a day interval."""
    return months * 30


def build_token_order_id(user_id: str, package_id: str, timestamp_ms: int | None = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{TOKEN_ORDER_PREFIX}{user_id}_{package_id}_{timestamp_ms}"


def is_token_purchase_order(order_id: str | None) -> bool:
    return bool(order_id) and str(order_id).startswith(TOKEN_ORDER_PREFIX)


def parse_token_order_id(order_id: str) -> dict[str, str] | None:
    """Split ``tokens_<user_id>_<package_id>_<epoch_ms>`` into ``{user_id, package_id}``.

    The user id may itself contain underscores; the package id always starts
    with ``pack_``, so the last occurrence of ``pack_`` marks the boundary.
    """
    if not is_token_purchase_order(order_id):
        return None

    parts = order_id.split("_")
    if len(parts) < 4:
        return None
    if not parts[-1].isdigit():
        return None

    remaining = "_".join(parts[1:-1])
    pack_index = remaining.rfind("pack_")
    if pack_index <= 0:
        return None

    user_id = remaining[: pack_index - 1]
    package_id = remaining[pack_index:]
    if not user_id or not is_token_package(package_id):
        return None
    return {"user_id": user_id, "package_id": package_id}


class NowPaymentsClient:
    """Async wrapper over the NOWPayments REST API."""

    def __init__(
        self,
        api_key: str,
        email: str,
        password: str,
        ipn_secret: str,
        app_url: str,
        token_cache: JwtTokenCache,
        test_mode: bool = False,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.email = email
        self.password = password
        self.ipn_secret = ipn_secret
        self.app_url = app_url.rstrip("/")
        self.token_cache = token_cache
        self.test_mode = test_mode
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    def is_configured(self) -> bool:
        return bool(self.api_key and self.email and self.password)

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise PaymentProviderNotConfiguredError("NOWPayments is not configured")

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def _request(self, method: str, path: str, headers: dict[str, str], body: dict | None = None) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, f"{self.base_url}{path}", json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise PaymentProviderError(f"NOWPayments request failed: {exc}") from exc

        if response.is_error:
            logger.error("NOWPayments %s %s failed with status %s: %s", method, path, response.status_code, response.text)
            raise PaymentProviderError(
                f"NOWPayments API error: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            return response.json()
        except ValueError:
            raise PaymentProviderError(
                "NOWPayments API returned invalid JSON response",
                status_code=response.status_code,
                body=response.text,
            ) from None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def _fetch_jwt_token(self) -> str:
        logger.info("Requesting NOWPayments JWT token")
        response = await self._request(
            "POST",
            "/auth",
            headers={"Content-Type": "application/json"},
            body={"email": self.email, "password": self.password},
        )
        token = self._json(response).get("token")
        if not token:
            raise PaymentProviderError("NOWPayments auth response did not include a token", body=response.text)
        return token

    async def get_jwt_token(self) -> str:
        """Bearer token for subscription endpoints, cached via ``token_cache``."""
        self._require_configured()
        return await self.token_cache.get_or_refresh(self._fetch_jwt_token)

    async def _subscription_headers(self) -> dict[str, str]:
        token = await self.get_jwt_token()
        return {
            "Authorization": f"Bearer {token}",
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def create_email_subscription(self, plan_id: int | str, email: str) -> dict:
        """Subscribe an email to a plan; NOWPayments emails the payment link."""
        self._require_configured()
        response = await self._request(
            "POST",
            "/subscriptions",
            headers=await self._subscription_headers(),
            body={"subscription_plan_id": int(plan_id), "email": email},
        )
        return self._json(response).get("result") or {}

    async def get_subscription(self, subscription_id: str) -> dict | None:
        """Fetch a subscription. Returns None when unconfigured or on any failure."""
        if not self.is_configured():
            return None
        try:
            response = await self._request(
                "GET", f"/subscriptions/{subscription_id}", headers=await self._subscription_headers()
            )
            return self._json(response).get("result")
        except PaymentProviderError:
            logger.exception("Failed to fetch NOWPayments subscription %s", subscription_id)
            return None

    async def cancel_subscription(self, subscription_id: str) -> None:
        """Delete a subscription upstream. Raises on failure."""
        self._require_configured()
        await self._request("DELETE", f"/subscriptions/{subscription_id}", headers=await self._subscription_headers())
        logger.info("Cancelled NOWPayments subscription %s", subscription_id)

    # ------------------------------------------------------------------
    # One-time payments
    # ------------------------------------------------------------------

    async def create_token_payment(self, user_id: str, package_id: str) -> dict:
        """Create a one-time payment for a token package and return the payment object."""
        if not self.api_key:
            raise PaymentProviderNotConfiguredError("NOWPayments API key is not configured")

        package = get_token_package(package_id, self.test_mode)
        body = {
            "price_amount": float(package.price),
            "price_currency": "usd",
            "order_id": build_token_order_id(user_id, package_id),
            "order_description": f"XChatLife {package.tokens} Tokens",
            "ipn_callback_url": f"{self.app_url}/api/webhooks/nowpayments",
            "success_url": f"{self.app_url}/buy-tokens?purchase=success",
            "cancel_url": f"{self.app_url}/buy-tokens?purchase=cancelled",
        }
        logger.info("Creating NOWPayments token payment for user %s, package %s", user_id, package_id)
        response = await self._request(
            "POST",
            "/payment",
            headers={"x-api-key": self.api_key, "Content-Type": "application/json"},
            body=body,
        )
        return self._json(response)

    # ------------------------------------------------------------------
    # IPN
    # ------------------------------------------------------------------

    def verify_ipn_signature(self, payload: dict, signature: str | None) -> bool:
        """Check the ``x-nowpayments-sig`` header. Fails closed without a secret."""
        if not self.ipn_secret:
            logger.error("NOWPayments IPN secret not configured; rejecting webhook")
            return False
        if not signature:
            return False
        expected = compute_ipn_signature(payload, self.ipn_secret)
        return hmac.compare_digest(expected, signature.lower())

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def create_plan(self, title: str, interval_days: int, amount: Decimal, currency: str = "usd") -> dict:
        self._require_configured()
        response = await self._request(
            "POST",
            "/subscriptions/plans",
            headers=await self._subscription_headers(),
            body={"title": title, "interval_day": interval_days, "amount": float(amount), "currency": currency},
        )
        return self._json(response).get("result") or {}

    async def update_plan(self, plan_id: int | str, title: str | None = None, amount: Decimal | None = None) -> dict:
        self._require_configured()
        body: dict[str, Any] = {}
        if title:
            body["title"] = title
        if amount:
            body["amount"] = float(amount)
        response = await self._request(
            "PATCH",
            f"/subscriptions/plans/{plan_id}",
            headers=await self._subscription_headers(),
            body=body,
        )
        return self._json(response).get("result") or {}

    async def get_plan(self, plan_id: int | str) -> dict | None:
        if not self.is_configured():
            return None
        try:
            response = await self._request(
                "GET", f"/subscriptions/plans/{plan_id}", headers=await self._subscription_headers()
            )
            return self._json(response).get("result")
        except PaymentProviderError:
            logger.exception("Failed to fetch NOWPayments plan %s", plan_id)
            return None

    async def get_plans(self) -> list[dict]:
        if not self.is_configured():
            return []
        response = await self._request("GET", "/subscriptions/plans", headers=await self._subscription_headers())
        return self._json(response).get("result") or []
