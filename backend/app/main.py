"""XChatLife — FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.auth import router as auth_router
from app.api.v1.billing import router as billing_router
from app.api.v1.character_options import router as character_options_router
from app.api.v1.characters import router as characters_router
from app.api.v1.financial_categories import router as financial_categories_router
from app.api.v1.financial_transactions import router as financial_transactions_router
from app.api.v1.roles import router as roles_router
from app.api.v1.tickets import admin_router as tickets_admin_router
from app.api.v1.tickets import router as tickets_router
from app.api.v1.tokens import router as tokens_router
from app.api.v1.webhooks import router as webhooks_router
from app.billing.nowpayments import JwtTokenCache
from app.config import settings

# Configure root logger so all app.* loggers output to stderr.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup: one NOWPayments JWT cache shared by every request
    app.state.nowpayments_token_cache = JwtTokenCache()
    yield
    # Shutdown: dispose engine connections
    from app.database import engine

    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Character chat platform backend: token ledger, crypto billing, support desk, and admin tools.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(auth_router)
app.include_router(tokens_router)
app.include_router(billing_router)
app.include_router(tickets_router)
app.include_router(tickets_admin_router)
app.include_router(financial_transactions_router)
app.include_router(financial_categories_router)
app.include_router(roles_router)
app.include_router(characters_router)
app.include_router(character_options_router)
app.include_router(webhooks_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
