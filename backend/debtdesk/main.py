import logging
import time
import traceback
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from debtdesk.config import settings
from debtdesk.database import async_session, engine
from debtdesk.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.log_format)

from debtdesk.api.audit import router as audit_router  # noqa: E402
from debtdesk.api.cases import router as cases_router  # noqa: E402
from debtdesk.api.delegations import router as delegations_router  # noqa: E402
from debtdesk.api.metrics import router as metrics_router  # noqa: E402
from debtdesk.api.permissions import router as permissions_router  # noqa: E402
from debtdesk.api.reports import router as reports_router  # noqa: E402
from debtdesk.api.ws import router as ws_router  # noqa: E402
from debtdesk.clock import SystemClock  # noqa: E402
from debtdesk.errors import DomainError  # noqa: E402
from debtdesk.services.expiry_sweeper import ExpirySweeper  # noqa: E402
from debtdesk.services.notifications import ConnectionManager, NotificationDispatcher  # noqa: E402

logger = logging.getLogger("debtdesk")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: verify DB connection
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))

    sweeper = None
    if settings.delegation_sweep_enabled:
        sweeper = ExpirySweeper(
            session_factory=app.state.session_factory,
            clock=app.state.clock,
            dispatcher=app.state.dispatcher,
        )
        sweeper.start()
    yield
    # Shutdown
    if sweeper is not None:
        await sweeper.stop()
    await app.state.connections.close_all()
    await engine.dispose()


app = FastAPI(
    title="DebtDesk Delegation Service",
    description="Case delegation and effective-access resolution for debt case tracking",
    version="0.1.0",
    lifespan=lifespan,
)

# Process-wide handles, passed to consumers through app.state.
app.state.clock = SystemClock()
app.state.session_factory = async_session
app.state.connections = ConnectionManager()
app.state.dispatcher = NotificationDispatcher(app.state.connections)

# ── CORS (tightened) ─────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

# ── Security headers middleware ──────────────────────────────────────────────
from debtdesk.middleware.security_headers import SecurityHeadersMiddleware  # noqa: E402

app.add_middleware(SecurityHeadersMiddleware)

# ── Rate limiting middleware ─────────────────────────────────────────────────
from debtdesk.middleware.rate_limit import RateLimitMiddleware  # noqa: E402

app.add_middleware(RateLimitMiddleware)

# ── Request context middleware (request ID + timing) ─────────────────────────
from debtdesk.middleware.request_context import RequestContextMiddleware  # noqa: E402

app.add_middleware(RequestContextMiddleware)

# ── Prometheus metrics middleware ────────────────────────────────────────────
from debtdesk.middleware.metrics import PrometheusMiddleware  # noqa: E402

app.add_middleware(PrometheusMiddleware)


def _error_response(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level, "%s on %s %s: %s",
        type(exc).__name__, request.method, request.url.path, exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("Invalid request on %s %s", request.method, request.url.path)
    details = [
        {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return _error_response(400, "VALIDATION_ERROR", "Validation failed", details)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    if settings.environment == "development":
        return _error_response(
            500, "INTERNAL_ERROR", f"{type(exc).__name__}: {exc}", tb.splitlines()[-5:],
        )
    return _error_response(500, "INTERNAL_ERROR", "Internal Server Error")


# Register API routers
app.include_router(delegations_router)
app.include_router(permissions_router)
app.include_router(reports_router)
app.include_router(cases_router)
app.include_router(audit_router)
app.include_router(ws_router)
app.include_router(metrics_router)


# ── Health check ─────────────────────────────────────────────────────────────

_health_cache: dict = {}
_health_cache_ts: float = 0.0
HEALTH_CACHE_TTL = 10.0  # seconds


@app.get("/api/health")
async def health_check():
    global _health_cache, _health_cache_ts

    now = time.time()
    if _health_cache and (now - _health_cache_ts) < HEALTH_CACHE_TTL:
        return _health_cache

    components: dict = {}

    # Database
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        components["database"] = {"status": "connected"}
    except Exception as exc:
        components["database"] = {"status": "disconnected", "error": str(exc)}

    # Redis (rate limiter only; the service runs without it)
    try:
        r = aioredis.from_url(settings.redis_url, decode_responses=True, socket_connect_timeout=2)
        await r.ping()
        await r.aclose()
        components["redis"] = {"status": "connected"}
    except Exception as exc:
        components["redis"] = {"status": "disconnected", "error": str(exc)}

    components["notifications"] = {
        "status": "ready",
        "open_connections": app.state.connections.connection_count(),
    }

    db_ok = components["database"]["status"] == "connected"
    redis_ok = components["redis"]["status"] == "connected"

    if db_ok and redis_ok:
        overall = "healthy"
    elif not db_ok:
        overall = "unhealthy"
    else:
        overall = "degraded"

    result = {
        "status": overall,
        "environment": settings.environment,
        "components": components,
    }

    _health_cache = result
    _health_cache_ts = now
    return result
