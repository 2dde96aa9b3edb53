"""Payment webhook endpoints — Coinremitter and NOWPayments callbacks."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.coinremitter import CoinremitterClient
from app.billing.dependencies import get_coinremitter_client, get_nowpayments_client
from app.billing.nowpayments import NowPaymentsClient
from app.billing.webhooks import (
    WebhookResult,
    decode_nested_amounts,
    handle_coinremitter_payload,
    handle_nowpayments_payload,
)
from app.database import UnitOfWork, get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

_PONG = {"success": True, "message": "pong"}


def _respond(result: WebhookResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body)


async def _run(uow: UnitOfWork, provider: str, handler, *args) -> JSONResponse:
    """Run a handler in the request transaction; commit on success, 500 on failure."""
    try:
        result = await handler(uow, *args)
        await uow.commit()
    except Exception:
        await uow.rollback()
        logger.exception("Error processing %s webhook", provider)
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})
    logger.info("%s webhook handled with status %s", provider, result.status_code)
    return _respond(result)


# ---------------------------------------------------------------------------
# Coinremitter
# ---------------------------------------------------------------------------


@router.post("/coinremitter")
async def coinremitter_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    client: CoinremitterClient = Depends(get_coinremitter_client),
) -> JSONResponse:
    """Receive a Coinremitter invoice callback (JSON, urlencoded, or multipart)."""
    raw_body = await request.body()
    if not raw_body.strip():
        logger.info("Coinremitter webhook with empty body (verification ping)")
        return JSONResponse(content={"success": True, "message": "Webhook endpoint active"})

    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            payload = json.loads(raw_body)
        except ValueError:
            logger.info("Coinremitter webhook with invalid JSON, treating as ping")
            return JSONResponse(content=_PONG)
        if not isinstance(payload, dict):
            return JSONResponse(content=_PONG)
    else:
        try:
            form = await request.form()
        except Exception:
            logger.exception("Failed to parse Coinremitter webhook body")
            return JSONResponse(content={"success": True, "message": "Received"})
        if "ping" in form or not form:
            logger.info("Coinremitter ping received")
            return JSONResponse(content=_PONG)
        payload = {key: value for key, value in form.items() if isinstance(value, str)}

    payload = decode_nested_amounts(payload)
    logger.info(
        "Coinremitter webhook received for invoice %s (status %s)",
        payload.get("invoice_id"),
        payload.get("status"),
    )
    return await _run(UnitOfWork(db), "coinremitter", handle_coinremitter_payload, payload, client)


@router.get("/coinremitter")
async def coinremitter_webhook_status() -> dict[str, str]:
    return {"status": "ok", "message": "Coinremitter webhook endpoint is active"}


# ---------------------------------------------------------------------------
# NOWPayments
# ---------------------------------------------------------------------------


@router.post("/nowpayments")
async def nowpayments_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    client: NowPaymentsClient = Depends(get_nowpayments_client),
) -> JSONResponse:
    """Receive a NOWPayments IPN. The HMAC signature is checked before anything else."""
    signature = request.headers.get("x-nowpayments-sig")
    if not signature:
        logger.warning("NOWPayments webhook without signature header")
        return JSONResponse(status_code=401, content={"error": "Missing signature"})

    try:
        payload = json.loads(await request.body())
    except ValueError:
        logger.warning("NOWPayments webhook with invalid JSON body")
        return JSONResponse(status_code=400, content={"error": "Invalid JSON"})
    if not isinstance(payload, dict):
        return JSONResponse(status_code=400, content={"error": "Invalid JSON"})

    if not client.verify_ipn_signature(payload, signature):
        logger.warning("NOWPayments webhook signature verification failed")
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    logger.info(
        "NOWPayments IPN received for payment %s (status %s)",
        payload.get("payment_id"),
        payload.get("payment_status"),
    )
    return await _run(UnitOfWork(db), "nowpayments", handle_nowpayments_payload, payload)


@router.get("/nowpayments")
async def nowpayments_webhook_status() -> dict[str, str]:
    return {"status": "ok", "provider": "nowpayments"}
