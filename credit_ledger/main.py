import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from credit_ledger.accounts.router import router as accounts_router
from credit_ledger.admin.router import router as admin_router
from credit_ledger.config import settings
from credit_ledger.core.exceptions import AppError
from credit_ledger.core.logging import configure_logging
from credit_ledger.db.session import engine
from credit_ledger.payments.router import router as payments_router
from credit_ledger.registration.router import router as registration_router
from credit_ledger.usage.router import router as usage_router
from credit_ledger.vouchers.router import router as vouchers_router

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging(settings.log_level)
    logger.info("Credit ledger %s starting", VERSION)
    yield
    await engine.dispose()


app = FastAPI(
    title="Credit Ledger",
    version=VERSION,
    description="Credit balances, payment reconciliation and usage billing for subtitle translation.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# ── Account holders ───────────────────────────────────────────────────────────
app.include_router(accounts_router)
app.include_router(registration_router)
app.include_router(vouchers_router)
app.include_router(usage_router)

# ── Payment rails ─────────────────────────────────────────────────────────────
app.include_router(payments_router)

# ── Back office ───────────────────────────────────────────────────────────────
app.include_router(admin_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": VERSION}
