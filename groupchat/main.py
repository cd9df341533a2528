from contextlib import asynccontextmanager
from typing import Optional, Tuple

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from groupchat.config import settings
from groupchat.core.logging_config import setup_logging, get_logger
from groupchat.core.rate_limit import limiter
from groupchat.core.cache import cache
from groupchat.db.memory_store import MemoryGroupStore
from groupchat.db.mongo_store import MongoGroupStore
from groupchat.db.mongodb import init_db, close_db
from groupchat.db.store import GroupStore
from groupchat.dependencies import set_store
from groupchat.middleware.access_log import AccessLogMiddleware, RequestContextMiddleware
from groupchat.routes import groups, messages, ops, stream, users
from groupchat.services.group_feed import feed

# Before anything else logs
setup_logging()
logger = get_logger(__name__)

DESCRIPTION = """
Group messaging with live snapshots.

Callers assert their identity with the `X-User-ID` header; when present it must
match the acting user id in the request. Streams are served over WebSocket at
`/api/groups/{group_id}/stream?user_id=...`.
"""


async def _open_store() -> Tuple[GroupStore, Optional[AsyncIOMotorClient]]:
    if settings.STORE_BACKEND == "memory":
        logger.warning("memory_store_enabled", detail="data is lost on restart")
        return MemoryGroupStore(), None

    try:
        client = await init_db()
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e), exc_info=True)
        raise
    logger.info("database_initialized", database=settings.DATABASE_NAME)
    return MongoGroupStore(), client


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "application_startup",
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        store_backend=settings.STORE_BACKEND,
    )

    store, client = await _open_store()
    set_store(store)
    await cache.initialize()

    yield

    logger.info("application_shutdown", live_groups=len(feed.subscriptions))
    feed.shutdown_all()
    await cache.close()
    await store.close()
    await close_db(client)
    set_store(None)


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.API_VERSION,
    description=DESCRIPTION,
    docs_url="/docs" if settings.ENABLE_DOCS else None,
    redoc_url="/redoc" if settings.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if settings.ENABLE_DOCS else None,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

Instrumentator(
    should_group_status_codes=True,
    should_group_untemplated=True,
    excluded_handlers=["/metrics", "/health"],
).instrument(app).expose(app, endpoint="/metrics")

# Last added runs first: request context, then access log, then CORS
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
for router_module, tag in ((groups, "groups"), (messages, "messages"), (users, "users"), (stream, "stream")):
    app.include_router(router_module.router, prefix=settings.API_PREFIX, tags=[tag])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "groupchat.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=False,
    )
