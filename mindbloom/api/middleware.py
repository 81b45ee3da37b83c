"""API middleware for rate limiting, CORS and error mapping"""
import logging
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from mindbloom.config import CORS_ORIGINS
from mindbloom.exceptions import (
    TRANSIENT_ERRORS,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    DuplicateKeyError,
    MindBloomError,
    RecordNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)

# Checked in order; first match wins
ERROR_STATUS_CODES = (
    (ValidationError, 422),
    (ConflictError, 409),
    (DuplicateKeyError, 409),
    (RecordNotFoundError, 404),
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (TRANSIENT_ERRORS, 503),
)


def status_code_for(exc: MindBloomError) -> int:
    for error_types, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_types):
            return status_code
    return 500


def setup_cors(app):
    """Configure CORS middleware"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.info(f"CORS configured for origins: {CORS_ORIGINS}")


def setup_rate_limiting(app):
    """Configure rate limiting"""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info("Rate limiting configured")


def setup_error_handlers(app):
    """Map the MindBloom exception hierarchy onto HTTP status codes"""

    @app.exception_handler(MindBloomError)
    async def mindbloom_error_handler(request: Request, exc: MindBloomError):
        status_code = status_code_for(exc)
        if status_code == 500:
            logger.error(f"Unhandled application error on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)}
        )
