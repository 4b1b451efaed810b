"""Main FastAPI application"""
import logging
import logging.config
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import DESCENDING
from pymongo.errors import PyMongoError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from config import settings
from models.expense import field_errors
from routes import auth_router, router as api_router
from services.expenses_service import ExpenseGateway
from utils.limits import limiter

# --- Unified Logging Configuration with Rich ---
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(name)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "class": "rich.logging.RichHandler",
            "formatter": "default",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_time": True,
            "show_path": False,
            "log_time_format": "%Y-%m-%d %H:%M:%S",
            "markup": False,
        },
    },
    "loggers": {
        "uvicorn": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.error": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "": {  # Root logger for our application
            "handlers": ["default"],
            "level": settings.log_level,
            "propagate": False,
        },
    },
}

logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)

EXPENSES_PATH = "/api/expenses"
PUBLIC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "public")

if not settings.mongodb_uri:
    logger.error("MONGODB_URI environment variable not set! Database connection will fail.")

# Application state to hold the database client and the gateway built on it
app_state = {}


class LimitBodySizeMiddleware(BaseHTTPMiddleware):
    """Rejects oversized expense writes before the body is read."""

    async def dispatch(self, request: Request, call_next):
        if request.method in ("POST", "PUT") and request.url.path.startswith(EXPENSES_PATH):
            content_length_header = request.headers.get("content-length")
            if content_length_header:
                try:
                    content_length = int(content_length_header)
                except ValueError:
                    logger.warning("Request rejected: Invalid Content-Length header.")
                    return Response("Invalid Content-Length header.", status_code=400)
                if content_length > settings.max_body_size:
                    logger.warning(f"Request rejected: body size {content_length} exceeds limit {settings.max_body_size}.")
                    return Response(f"Maximum request size ({settings.max_body_size} bytes) exceeded.", status_code=413)

        return await call_next(request)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Connect to MongoDB
    logger.info("Connecting to MongoDB...")
    try:
        app_state["db_client"] = AsyncIOMotorClient(settings.mongodb_uri)
        db = app_state["db_client"][settings.db_name]
        collection = db.get_collection(settings.expenses_collection)
        await app_state["db_client"].admin.command("ping")
        await collection.create_index([("userId", 1), ("date", DESCENDING), ("createdAt", DESCENDING)])
        app_state["expense_gateway"] = ExpenseGateway(collection)
        logger.info(f"Successfully connected to MongoDB database: {settings.db_name}")
    except PyMongoError as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        app_state["expense_gateway"] = None

    yield  # Application runs here

    # Shutdown: Close MongoDB connection
    if app_state.get("db_client"):
        logger.info("Closing MongoDB connection...")
        app_state["db_client"].close()
        logger.info("MongoDB connection closed.")


app = FastAPI(
    title="Expense Tracker API",
    description="Record personal expenses and follow monthly and daily totals.",
    version="0.1.0",
    lifespan=lifespan,
)

# --- Rate Limiter State and Handler ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Field-scoped messages, shown next to the offending form input."""
    errors = field_errors(exc.errors())
    logger.info(f"Validation failed for {request.method} {request.url.path}: {errors}")
    return JSONResponse(status_code=422, content={"errors": errors})


# --- Middleware (Order Matters) ---
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LimitBodySizeMiddleware)

# --- Routes ---
app.include_router(api_router, prefix="/api", tags=["api"])
app.include_router(auth_router, tags=["auth"])

# Mount static files directory (MUST be after the routers)
app.mount("/", StaticFiles(directory=PUBLIC_DIR, html=True), name="static")


@app.middleware("http")
async def add_app_config_to_request(request: Request, call_next):
    """Adds the expense gateway and settings to the request state."""
    request.state.expense_gateway = app_state.get("expense_gateway")
    request.state.settings = settings
    return await call_next(request)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
