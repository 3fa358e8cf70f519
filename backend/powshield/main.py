from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from powshield.config import settings
from powshield.errors import ShieldError
from powshield.logging_config import setup_logging
from powshield.middleware.logging import LoggingMiddleware
from powshield.middleware.rate_limit import limiter
from powshield.routers import challenges, protected, verification
from powshield.scheduler import shutdown_scheduler, start_scheduler
from powshield.state import build_shield

setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create protocol state and run rotation/sweep jobs for the app's lifetime."""
    shield = build_shield(settings)
    app.state.shield = shield
    scheduler = start_scheduler(shield)
    yield
    shutdown_scheduler(scheduler)


app = FastAPI(
    title="powshield",
    description="Adaptive proof-of-work challenges and risk-scored access tokens",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ShieldError)
async def shield_error_handler(request: Request, exc: ShieldError):
    # Only the opaque code leaves the service
    logger.info(
        "request_rejected",
        path=request.url.path,
        error_type=type(exc).__name__,
        code=exc.code,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.code})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("request_rejected", path=request.url.path, error_type="ClientError", code="MALFORMED")
    return JSONResponse(status_code=400, content={"detail": "MALFORMED"})


# Request logging with correlation IDs
app.add_middleware(LoggingMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers, served both bare and under the versioned prefix
for prefix in ("", "/api/v1"):
    app.include_router(challenges.router, prefix=prefix, tags=["challenges"])
    app.include_router(verification.router, prefix=prefix, tags=["verification"])
    app.include_router(protected.router, prefix=prefix, tags=["protected"])


@app.get("/health")
async def health_check(request: Request):
    return {"status": "healthy", "secret_version": request.app.state.shield.authority.version}
