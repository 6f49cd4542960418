import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Import all models to ensure they're registered with SQLAlchemy Base
# This is needed for relationships between models in different files
from . import (
    models,  # noqa: F401
    models_automation,  # noqa: F401
    models_command,  # noqa: F401
    models_subscription,  # noqa: F401
    models_whatsapp,  # noqa: F401
)
from .cache import Cache
from .config import COMMISSION_CACHE_TTL, FRONTEND_URL
from .database import Base, engine
from .domain.automations.router import router as automations_router
from .domain.billing.router import router as billing_router
from .domain.commands.router import router as commands_router
from .domain.subscriptions.router import plans_router as subscription_plans_router
from .domain.subscriptions.router import router as subscriptions_router
from .domain.whatsapp.router import router as whatsapp_router
from .rate_limiter import RateLimiter, connect_redis_or_none
from .routes.functions import router as functions_router
from .routes.status_automation import router as status_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

FUNCTIONS_PREFIX = "/functions/"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    redis_client = connect_redis_or_none()
    app.state.redis = redis_client
    app.state.cache = Cache(redis_client, default_ttl=COMMISSION_CACHE_TTL)
    app.state.rate_limiter = RateLimiter(redis_client)

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Barbershop API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert 422 validation errors from HTTPBearer to 401 authentication errors
    when the issue is with the Authorization header
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={
                    "detail": "Not authenticated. Please provide a valid Bearer token in the Authorization header."
                },
            )

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    if request.url.path.startswith(FUNCTIONS_PREFIX):
        return JSONResponse(status_code=422, content={"success": False, "error": "Invalid request body"})
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Function endpoints answer {"success": false, "error": ...}; REST routes keep {"detail": ...}"""
    headers = getattr(exc, "headers", None)
    if request.url.path.startswith(FUNCTIONS_PREFIX):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=headers,
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


# CORS Configuration
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", f"{FRONTEND_URL},http://localhost:3000").split(",")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Routes
app.include_router(billing_router)
app.include_router(subscriptions_router)
app.include_router(subscription_plans_router)
app.include_router(commands_router)
app.include_router(automations_router)
app.include_router(whatsapp_router)
app.include_router(status_router)
app.include_router(functions_router)


@app.get("/")
def root():
    return {"message": "Barbershop API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/health/redis")
async def redis_health_check(request: Request):
    """Check Redis connectivity for monitoring"""
    redis_client = getattr(request.app.state, "redis", None)
    if redis_client is None:
        return {"status": "disabled", "redis": {"connected": False}}
    try:
        start_time = time.time()
        redis_client.ping()
        response_time = (time.time() - start_time) * 1000  # Convert to milliseconds
        info = redis_client.info()
        return {
            "status": "healthy",
            "redis": {
                "connected": True,
                "response_time_ms": round(response_time, 2),
                "version": info.get("redis_version", "unknown"),
                "used_memory_human": info.get("used_memory_human", "unknown"),
            },
        }
    except Exception as e:
        return {"status": "unhealthy", "redis": {"connected": False, "error": str(e)}}
