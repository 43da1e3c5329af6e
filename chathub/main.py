from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from chathub.config import settings
from chathub.core.logging_config import setup_logging, get_logger
from chathub.core.rate_limit import limiter
from chathub.core.cache import cache
from chathub.db.mongodb import init_db, close_db
from chathub.dependencies import build_container, current_container, set_container
from chathub.middleware.access_log import AccessLogMiddleware, RequestContextMiddleware
from chathub.routes import chatrooms, messages, ops, websocket

# Setup structured logging BEFORE any other imports that might log
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(
        "application_startup",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        storage_backend=settings.STORAGE_BACKEND,
        directory_backend=settings.DIRECTORY_BACKEND,
    )

    if settings.STORAGE_BACKEND == "mongodb":
        try:
            await init_db()
            logger.info("database_initialized", database=settings.DATABASE_NAME)
        except Exception as e:
            logger.error(
                "database_initialization_failed",
                error=str(e),
                database=settings.DATABASE_NAME,
                exc_info=True,
            )
            raise

    # Optional, graceful degradation if Redis unavailable
    await cache.initialize()

    # A container installed beforehand (tests, embedding) is used as is
    container = current_container()
    owns_container = container is None
    if owns_container:
        container = build_container(settings)
        set_container(container)

    yield

    logger.info("application_shutdown")

    await container.hub.shutdown_all()
    await container.hub.wait_for_background()

    if owns_container:
        await container.directory.close()
        set_container(None)

    await cache.close()
    await close_db()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.API_VERSION,
    description="""
**Real-time chat backend: personal and group chatrooms, message lifecycle and live fan-out.**

## Key Features
- **Deterministic chatrooms**: one room per pair of users (`5_9`) and per group (`group_17`), created on first use
- **Message lifecycle**: SENT -> DELIVERED -> READ, edits, replies, forwards, soft deletes
- **WebSocket fan-out**: one connection multiplexes any number of chatrooms (`chat/{chatroomId}` topics)
- **Structured Logging**: JSON logging with correlation IDs for request tracing

## Architecture
- **Database**: MongoDB with Beanie ODM (or in-memory for development)
- **Directory**: external users, groups, attachments and presence, cached in Redis
- **Authentication**: HS256 JWT bearer tokens issued by the identity provider
- **Observability**: Prometheus metrics at `/metrics`, structured logs
    """,
    docs_url="/docs" if settings.ENABLE_DOCS else None,
    redoc_url="/redoc" if settings.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if settings.ENABLE_DOCS else None,
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_group_untemplated=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, endpoint="/metrics")

# ========== Middleware Stack ==========
# Middleware execute in REVERSE order of registration:
# 1. RequestContextMiddleware (user id from bearer token)
# 2. AccessLogMiddleware (correlation id, access log)
# 3. CORSMiddleware
# 4. Route handler

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)
app.add_middleware(AccessLogMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(ops.router, tags=["operations"])
app.include_router(chatrooms.router, prefix=settings.API_PREFIX, tags=["chatrooms"])
app.include_router(messages.router, prefix=settings.API_PREFIX, tags=["messages"])
app.include_router(websocket.router, prefix=settings.API_PREFIX, tags=["websocket"])


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    openapi_schema["components"] = openapi_schema.get("components", {})
    openapi_schema["components"]["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "HS256 access token with the user id in `sub`. Format: `Bearer <token>`."
        }
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "chathub.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=False,  # AccessLogMiddleware writes the access log
    )
