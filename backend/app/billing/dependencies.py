"""FastAPI dependencies that build payment provider clients from settings.

Routes depend on these instead of constructing clients inline so tests can
swap in clients backed by ``httpx.MockTransport`` via
``app.dependency_overrides``.
"""

from fastapi import Request

from app.billing.coinremitter import CoinremitterClient
from app.billing.nowpayments import JwtTokenCache, NowPaymentsClient
from app.config import settings


def get_coinremitter_client() -> CoinremitterClient:
    """Return a Coinremitter client configured from settings."""
    return CoinremitterClient(
        api_key=settings.coinremitter_api_key,
        api_password=settings.coinremitter_api_password,
        app_url=settings.app_url,
        test_mode=settings.payments_test_mode,
        base_url=settings.coinremitter_base_url,
        timeout=settings.payment_http_timeout_seconds,
    )


def get_jwt_token_cache(request: Request) -> JwtTokenCache:
    """Return the app-scoped NOWPayments token cache, creating it on first use."""
    cache = getattr(request.app.state, "nowpayments_token_cache", None)
    if cache is None:
        cache = JwtTokenCache()
        request.app.state.nowpayments_token_cache = cache
    return cache


def get_nowpayments_client(request: Request) -> NowPaymentsClient:
    """Return a NOWPayments client sharing the app's JWT cache."""
    return NowPaymentsClient(
        api_key=settings.nowpayments_api_key,
        email=settings.nowpayments_email,
        password=settings.nowpayments_password,
        ipn_secret=settings.nowpayments_ipn_secret,
        app_url=settings.app_url,
        token_cache=get_jwt_token_cache(request),
        test_mode=settings.payments_test_mode,
        base_url=settings.nowpayments_base_url,
        timeout=settings.payment_http_timeout_seconds,
    )
