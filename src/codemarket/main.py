from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy.exc import DBAPIError

from codemarket.config import settings
from codemarket.api.admin import router as admin_router
from codemarket.api.auth import router as auth_router
from codemarket.api.credits import router as credits_router
from codemarket.api.orders import router as orders_router
from codemarket.api.projects import router as projects_router
from codemarket.api.role_upgrades import router as role_upgrades_router
from codemarket.errors import CodemarketError, InternalError
from codemarket.middleware.rate_limit import RateLimitMiddleware
from codemarket.services.credit_events import RedisBalancePublisher, credit_events

# Configure structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        (
            structlog.dev.ConsoleRenderer()
            if settings.APP_ENV == "development"
            else structlog.processors.JSONRenderer()
        ),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("starting_up", env=settings.APP_ENV)
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await redis.ping()
        log.info("redis_connected", url=settings.REDIS_URL)
    except Exception as e:
        log.warning("redis_connection_failed", error=str(e))
    app.state.redis = redis
    unsubscribe = credit_events.subscribe(
        RedisBalancePublisher(redis, settings.CREDIT_EVENTS_CHANNEL)
    )

    yield

    # Shutdown
    log.info("shutting_down")
    unsubscribe()
    await redis.close()


app = FastAPI(
    title="Codemarket Credits",
    lifespan=lifespan,
)

# CORS middleware for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "development" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RateLimitMiddleware)


# ---------------------------------------------------------------------------
# Error envelope: {"error": {"code": ..., "message": ...}}
# ---------------------------------------------------------------------------

def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


@app.exception_handler(CodemarketError)
async def codemarket_error_handler(request: Request, exc: CodemarketError):
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, code=exc.code, message=exc.message)
    return _error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid value')}" if location else "Invalid request"
    return _error_response(422, "VALIDATION_ERROR", message)


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    log.error("database_error", path=request.url.path, error=str(exc.orig))
    return _error_response(500, InternalError.code, InternalError.default_message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("unhandled_error", path=request.url.path)
    return _error_response(500, InternalError.code, InternalError.default_message)


app.include_router(auth_router)
app.include_router(credits_router)
app.include_router(orders_router)
app.include_router(projects_router)
app.include_router(role_upgrades_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
