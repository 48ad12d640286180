"""
FastAPI application entry point.

This module sets up the FastAPI application with middleware, error
handlers and the internal gamification routers.
"""
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from routers import settlement, rewards, users
from core.config import settings
from core.database import check_db_connection
from core.logging import setup_logging
from core.exceptions import (
    APIException,
    GamificationError,
    InsufficientFundsError,
    InsufficientRewardError,
    ProfileNotFoundError,
)
import logging
import time

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="GoalGuard Gamification API",
    description="Daily goal settlement, streaks, rewards and the coin ledger",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# Domain error -> HTTP status. Anything else derived from GamificationError is a 400.
DOMAIN_ERROR_STATUS = {
    ProfileNotFoundError: status.HTTP_404_NOT_FOUND,
    InsufficientFundsError: status.HTTP_409_CONFLICT,
    InsufficientRewardError: status.HTTP_409_CONFLICT,
}


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing information."""
    start_time = time.time()

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        logger.info(
            f"Response: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time_ms": round(process_time * 1000, 2),
                }
            }
        )

        response.headers["X-Process-Time"] = str(process_time)
        return response
    except Exception as e:
        logger.error(
            f"Request failed: {request.method} {request.url.path}",
            exc_info=True,
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                }
            }
        )
        raise


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code},
        headers=exc.headers,
    )


@app.exception_handler(GamificationError)
async def gamification_exception_handler(request: Request, exc: GamificationError):
    """Rejected domain operations: reported, never clamped."""
    status_code = next(
        (code for cls, code in DOMAIN_ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    logger.info(
        f"Rejected {request.method} {request.url.path}: {exc}",
        extra={"extra_fields": {"error_code": exc.error_code, "path": request.url.path}},
    )
    content = {"detail": str(exc), "error_code": exc.error_code}
    if isinstance(exc, InsufficientFundsError):
        content["shortfall"] = exc.shortfall
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={
            "extra_fields": {
                "method": request.method,
                "path": request.url.path,
            }
        }
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
async def health():
    """
    Simple health check for load balancers and uptime monitors.

    Returns:
        - 200: Database reachable
        - 503: Database unavailable
    """
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "database": "unavailable",
            }
        )
    return {
        "status": "healthy",
        "timestamp": time.time(),
    }


app.include_router(users.router)
app.include_router(settlement.router)
app.include_router(rewards.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )
