import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.errors import SettlementError, VoucherError
from app.core.logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Shoestore Checkout API",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SettlementError)
def settlement_error_handler(request: Request, exc: SettlementError):
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc.code} {exc.message}")
    code = exc.kind.value if isinstance(exc, VoucherError) else exc.code
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": code},
    )


# Import routers after app creation to avoid circular imports
from app.api import (
    checkout,
    payments,
    vouchers,
    promotions,
    products,
    orders,
)

# Routers - all already have /api prefix
app.include_router(checkout.router)
app.include_router(payments.router)
app.include_router(vouchers.router)
app.include_router(promotions.router)
app.include_router(products.router)
app.include_router(orders.router)


@app.get("/")
def root():
    return {"status": "ok", "service": "shoestore-checkout"}


@app.get("/api/health")
def health_check():
    return {
        "status": "healthy",
        "env": settings.ENV
    }
