"""REST API module for the marketplace.

This module provides HTTP endpoints for:
- Creating, searching and editing listings
- Buying listings and driving transactions through payment, shipping and delivery
- Follows, posts, comments and feeds
- Payment methods and service health
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings_conf
from errors import MarketplaceError
from .dependencies import get_transaction_manager

logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {
    400: 'VALIDATION_ERROR',
    401: 'UNAUTHORIZED',
    403: 'FORBIDDEN',
    404: 'NOT_FOUND',
    405: 'METHOD_NOT_ALLOWED',
    409: 'INVALID_STATE',
}


# Background task for transaction expiration
async def expire_transactions_task(interval: int):
    """Cancel unpaid transactions once their payment window has passed."""
    manager = get_transaction_manager()
    while True:
        try:
            await asyncio.sleep(interval)
            expired_count = await manager.expire_stale_transactions()
            if expired_count > 0:
                logger.info(f"Expired {expired_count} unpaid transactions")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in transaction expiration task: {e}")


# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Initializing API...")
    # The database is initialized in __main__.py

    interval = settings_conf['expiration_check_interval_seconds']
    expiration_task = asyncio.create_task(expire_transactions_task(interval))
    logger.info(
        f"Started transaction expiration task (expires after "
        f"{settings_conf['pending_payment_expiration_minutes']} minutes)"
    )

    yield

    logger.info("Shutting down API...")
    expiration_task.cancel()
    try:
        await expiration_task
    except asyncio.CancelledError:
        pass


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={'error': {'code': code, 'message': message}}
    )


# Create FastAPI app
app = FastAPI(
    title="Wardrobe Marketplace API",
    description="REST API for the fashion marketplace and its social feed",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = '.'.join(str(part) for part in error.get('loc', ()) if part != 'body')
        problems.append(f"{location}: {error.get('msg')}" if location else error.get('msg', ''))
    return error_response(400, 'VALIDATION_ERROR', '; '.join(problems) or 'Invalid request')


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = HTTP_ERROR_CODES.get(exc.status_code, 'INTERNAL_ERROR' if exc.status_code >= 500 else 'ERROR')
    return error_response(exc.status_code, code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return error_response(500, 'INTERNAL_ERROR', 'Internal server error')


# Import and include all routers
from .listings import router as listings_router
from .transactions import router as transactions_router
from .social import router as social_router
from .payments import router as payments_router
from .system import router as system_router

app.include_router(listings_router)
app.include_router(transactions_router)
app.include_router(social_router)
app.include_router(payments_router)
app.include_router(system_router)
