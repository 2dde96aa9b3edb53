"""Payment webhook handlers — reconcile provider callbacks into ledger state.

Each handler takes an already-decoded payload and the caller's ``UnitOfWork``,
applies the resulting state changes, and returns the HTTP response the
provider should see. Handlers never commit; the route owns the transaction.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.billing import coinremitter, nowpayments
from app.billing.coinremitter import CoinremitterClient
from app.database import UnitOfWork
from app.services.financial_service import find_by_external_id
from app.services.subscription_service import (
    activate_subscription,
    find_by_nowpayments_subscription_id,
    get_plan,
    get_subscription,
)
from app.services.token_purchase_service import process_token_purchase

logger = logging.getLogger(__name__)

# Amount fields Coinremitter may deliver as JSON-encoded strings in form posts.
NESTED_AMOUNT_FIELDS = ("total_amount", "paid_amount", "conversion_rate")


@dataclass(frozen=True)
class WebhookResult:
    """Status code and JSON body to return to the provider."""

    status_code: int = 200
    body: dict[str, Any] = field(default_factory=lambda: {"success": True})


def _ok(message: str | None = None) -> WebhookResult:
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    return WebhookResult(200, body)


def _error(status_code: int, message: str) -> WebhookResult:
    return WebhookResult(status_code, {"error": message})


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _to_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def decode_nested_amounts(payload: dict[str, Any]) -> dict[str, Any]:
    """Decode amount objects that arrived as JSON strings; leave anything else as-is."""
    decoded = dict(payload)
    for key in NESTED_AMOUNT_FIELDS:
        value = decoded.get(key)
        if isinstance(value, str):
            try:
                decoded[key] = json.loads(value)
            except ValueError:
                pass
    return decoded


def coinremitter_payment_amount(payload: dict[str, Any]) -> Decimal:
    """USD amount actually paid, falling back to ``usd_amount`` and then zero."""
    paid = payload.get("paid_amount")
    if isinstance(paid, dict):
        amount = _to_decimal(paid.get("USD"))
        if amount is not None:
            return amount
    return _to_decimal(payload.get("usd_amount")) or Decimal("0")


# ---------------------------------------------------------------------------
# Coinremitter
# ---------------------------------------------------------------------------


async def handle_coinremitter_payload(
    uow: UnitOfWork,
    payload: dict[str, Any],
    client: CoinremitterClient,
) -> WebhookResult:
    """Verify a Coinremitter invoice callback against the API and apply it."""
    invoice_id = payload.get("invoice_id")
    if not invoice_id:
        logger.warning("Coinremitter webhook without invoice_id")
        return _error(400, "Missing invoice_id")
    invoice_id = str(invoice_id)

    # Never trust the callback body alone: re-read the invoice from the API.
    verified = await client.get_invoice(invoice_id)
    if verified is None:
        logger.warning("Coinremitter invoice %s could not be verified", invoice_id)
        return _error(401, "Invoice verification failed")

    status_code = verified.get("status_code")
    if str(payload.get("status_code")) != str(status_code):
        logger.warning(
            "Coinremitter status mismatch for invoice %s: webhook=%s api=%s",
            invoice_id,
            payload.get("status_code"),
            status_code,
        )
        return _error(401, "Status mismatch")

    payment_amount = coinremitter_payment_amount(payload)

    if coinremitter.is_token_purchase(payload):
        return await _coinremitter_token_purchase(uow, payload, invoice_id, status_code, payment_amount)
    return await _coinremitter_subscription(uow, payload, invoice_id, status_code, payment_amount)


async def _coinremitter_token_purchase(
    uow: UnitOfWork,
    payload: dict[str, Any],
    invoice_id: str,
    status_code: Any,
    payment_amount: Decimal,
) -> WebhookResult:
    data = coinremitter.parse_token_purchase_data(payload)
    user_id = _to_uuid(data["user_id"]) if data else None
    if data is None or user_id is None:
        logger.warning("Invalid Coinremitter token purchase data for invoice %s", invoice_id)
        return _error(400, "Invalid token purchase data")

    if coinremitter.is_payment_complete(status_code):
        await process_token_purchase(
            uow,
            user_id=user_id,
            package_id=data["package_id"],
            invoice_id=invoice_id,
            payment_amount=payment_amount,
            provider="coinremitter",
        )
    elif coinremitter.is_payment_pending(status_code):
        logger.info("Coinremitter token purchase %s pending", invoice_id)
    elif coinremitter.is_payment_failed(status_code):
        logger.info("Coinremitter token purchase %s failed or expired", invoice_id)

    return _ok()


async def _coinremitter_subscription(
    uow: UnitOfWork,
    payload: dict[str, Any],
    invoice_id: str,
    status_code: Any,
    payment_amount: Decimal,
) -> WebhookResult:
    data = coinremitter.parse_subscription_data(payload)
    user_id = _to_uuid(data["user_id"]) if data else None
    if data is None or user_id is None:
        logger.warning("Invalid Coinremitter subscription data for invoice %s", invoice_id)
        return _error(400, "Invalid webhook data")

    existing = await get_subscription(uow.session, user_id)
    if existing is not None and existing.external_order_id == invoice_id and existing.status == "active":
        logger.info("Coinremitter invoice %s already processed", invoice_id)
        return _ok("Already processed")

    if coinremitter.is_payment_complete(status_code):
        await activate_subscription(
            uow,
            user_id=user_id,
            billing_cycle=data["billing_cycle"],
            invoice_id=invoice_id,
            payment_amount=payment_amount,
            provider="coinremitter",
        )
    elif coinremitter.is_payment_pending(status_code):
        if existing is not None:
            existing.status = "pending"
            await uow.flush()
        logger.info("Coinremitter subscription invoice %s pending", invoice_id)
    elif coinremitter.is_payment_failed(status_code):
        if existing is not None and existing.external_order_id == invoice_id:
            existing.status = "expired"
            await uow.flush()
        logger.info("Coinremitter subscription invoice %s failed or expired", invoice_id)

    return _ok()


# ---------------------------------------------------------------------------
# NOWPayments
# ---------------------------------------------------------------------------


async def handle_nowpayments_payload(uow: UnitOfWork, payload: dict[str, Any]) -> WebhookResult:
    """Route a signature-verified IPN to the token or subscription handler."""
    order_id = payload.get("order_id")
    if nowpayments.is_token_purchase_order(order_id):
        return await _nowpayments_token_purchase(uow, payload)
    if payload.get("subscription_id"):
        return await _nowpayments_subscription(uow, payload)

    logger.info("NOWPayments IPN for payment %s acknowledged without action", payload.get("payment_id"))
    return _ok("Acknowledged")


async def _already_processed(db: AsyncSession, payment_id: str) -> bool:
    return await find_by_external_id(db, payment_id) is not None


async def _nowpayments_subscription(uow: UnitOfWork, payload: dict[str, Any]) -> WebhookResult:
    subscription_id = str(payload["subscription_id"])
    subscription = await find_by_nowpayments_subscription_id(uow.session, subscription_id)
    if subscription is None:
        logger.error("NOWPayments subscription %s not found", subscription_id)
        return _error(404, "Subscription not found")

    payment_status = payload.get("payment_status")
    payment_id = str(payload.get("payment_id"))
    payment_amount = _to_decimal(payload.get("price_amount")) or Decimal("0")

    if await _already_processed(uow.session, payment_id):
        logger.info("NOWPayments payment %s already processed", payment_id)
        return _ok("Already processed")

    if nowpayments.is_payment_complete(payment_status):
        plan = await get_plan(uow.session, subscription.plan_id) if subscription.plan_id else None
        await activate_subscription(
            uow,
            user_id=subscription.user_id,
            billing_cycle=subscription.billing_cycle,
            invoice_id=payment_id,
            payment_amount=payment_amount,
            provider="nowpayments",
            nowpayments_subscription_id=subscription_id,
            plan_id=subscription.plan_id,
            tokens_granted=plan.tokens_granted if plan is not None else None,
        )
    elif nowpayments.is_payment_pending(payment_status):
        if subscription.status != "pending":
            subscription.status = "pending"
            await uow.flush()
        logger.info("NOWPayments payment %s pending for subscription %s", payment_id, subscription_id)
    elif nowpayments.is_payment_failed(payment_status):
        if subscription.status == "pending":
            subscription.status = "expired"
            await uow.flush()
        logger.info("NOWPayments payment %s %s for subscription %s", payment_id, payment_status, subscription_id)
    elif nowpayments.is_payment_partially_paid(payment_status):
        logger.info("NOWPayments partial payment %s for subscription %s", payment_id, subscription_id)
    else:
        logger.info("Unhandled NOWPayments payment status %r for %s", payment_status, payment_id)

    return _ok()


async def _nowpayments_token_purchase(uow: UnitOfWork, payload: dict[str, Any]) -> WebhookResult:
    order_id = str(payload.get("order_id") or "")
    parsed = nowpayments.parse_token_order_id(order_id)
    user_id = _to_uuid(parsed["user_id"]) if parsed else None
    if parsed is None or user_id is None:
        logger.warning("Invalid NOWPayments token order_id %r", order_id)
        return _error(400, "Invalid order_id")

    payment_status = payload.get("payment_status")
    payment_id = str(payload.get("payment_id"))
    payment_amount = _to_decimal(payload.get("price_amount")) or Decimal("0")

    if await _already_processed(uow.session, payment_id):
        logger.info("NOWPayments token payment %s already processed", payment_id)
        return _ok("Already processed")

    if nowpayments.is_payment_complete(payment_status):
        await process_token_purchase(
            uow,
            user_id=user_id,
            package_id=parsed["package_id"],
            invoice_id=payment_id,
            payment_amount=payment_amount,
            provider="nowpayments",
        )
    elif nowpayments.is_payment_pending(payment_status):
        logger.info("NOWPayments token payment %s pending", payment_id)
    elif nowpayments.is_payment_failed(payment_status):
        logger.info("NOWPayments token payment %s %s", payment_id, payment_status)
    else:
        logger.info("Unhandled NOWPayments token payment status %r for %s", payment_status, payment_id)

    return _ok()
