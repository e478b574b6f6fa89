import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import structlog
from prometheus_fastapi_instrumentator import Instrumentator

from dayplan.api import auth, nlp, places, plans, users
from dayplan.core.ratelimit import limiter
from dayplan.core.settings import settings
from dayplan.db.session import database_health_check, db_manager
from dayplan.middleware.logging import RequestLoggingMiddleware

VERSION = "1.0.0"

_KEY_PARAM = re.compile(r'([?&]key=)[^&\s]+')
_GOOGLE_KEY = re.compile(r'AIza[0-9A-Za-z\-_]{35}')
_ANTHROPIC_KEY = re.compile(r'sk-ant-[0-9A-Za-z\-_]+')


# Redaction processor to scrub API keys from any string values in the event dict
def redact_api_keys(logger, method_name, event_dict):
    def scrub(v):
        if isinstance(v, str):
            v = _KEY_PARAM.sub(r'\1REDACTED', v)
            v = _GOOGLE_KEY.sub('REDACTED', v)
            return _ANTHROPIC_KEY.sub('REDACTED', v)
        if isinstance(v, list):
            return [scrub(x) for x in v]
        if isinstance(v, dict):
            return {k: scrub(vv) for k, vv in v.items()}
        return v

    for k, v in list(event_dict.items()):
        event_dict[k] = scrub(v)
    return event_dict


# Configure structured logging with JSON output; keys are scrubbed before rendering
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_api_keys,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Standard library logging feeds the console and, if configured, a file
handlers = [logging.StreamHandler()]
if settings.LOG_FILE:
    handlers.append(logging.FileHandler(settings.LOG_FILE))

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(message)s',  # structlog handles formatting
    handlers=handlers,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("application_starting", version=VERSION)
    try:
        await db_manager.initialize()
        if settings.DB_CREATE_TABLES:
            await db_manager.init_db()
    except Exception:
        logger.exception("database_initialization_failed")
        raise

    yield

    logger.info("application_stopping")
    try:
        await db_manager.close()
    except Exception as e:
        logger.error("database_cleanup_failed", error=str(e))


app = FastAPI(
    title="Day Plan API",
    description="Turns free-text daily plans into time-zoned, place-enriched schedules",
    version=VERSION,
    lifespan=lifespan
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize Prometheus metrics instrumentation
Instrumentator().instrument(app).expose(app, endpoint="/metrics")


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


@app.get("/")
def root():
    return {"status": "API active", "version": VERSION}


@app.get("/health")
async def health_check_detailed():
    """Detailed health check endpoint"""
    database = await database_health_check()
    db_status = database.get("status", "unknown")
    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "version": VERSION,
        "components": {
            "database": db_status,
            "language_model": "configured" if settings.ANTHROPIC_API_KEY else "missing_api_key",
            "maps": "configured" if settings.GOOGLE_MAPS_API_KEY else "missing_api_key",
            "api": "healthy",
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


prefix = "/api/v1"

app.include_router(auth.router, prefix=prefix)
app.include_router(users.router, prefix=prefix)
app.include_router(plans.router, prefix=prefix)
app.include_router(nlp.router, prefix=prefix)
app.include_router(places.router, prefix=prefix)
