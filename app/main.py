"""
FastAPI Application Entry Point
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

from app.api.dm.ws import router as dm_ws_router
from app.api.router import api_router
from app.core.config import settings
from app.core.errors import (
    AppError,
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.core.logging import RequestIDMiddleware, RequestLoggingMiddleware, get_logger, setup_logging
from app.core.sessions import InMemorySessionStore, RedisSessionStore, default_policy
from app.infra.db import close_db_connection
from app.infra.redis import close_redis_pool, init_redis_pool
from app.infra.storage import S3MediaStore
from app.services.connection_manager import ConnectionManager
from app.worker.housekeeping import housekeeping_loop

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    if settings.session_backend == "redis":
        redis = await init_redis_pool()
        app.state.session_store = RedisSessionStore(redis, default_policy())

    housekeeping = None
    if settings.housekeeping_enabled:
        housekeeping = asyncio.create_task(housekeeping_loop())
    logger.info("app.started", env=settings.env, session_backend=settings.session_backend)

    yield

    # Shutdown
    if housekeeping is not None:
        housekeeping.cancel()
        try:
            await housekeeping
        except asyncio.CancelledError:
            pass
    await close_redis_pool()
    await close_db_connection()


tags_metadata = [
    {
        "name": "auth",
        "description": "Sign-up, login and logout.",
    },
    {
        "name": "dm",
        "description": "Direct messages with request, allow, dismiss and block.",
    },
    {
        "name": "posts",
        "description": "Trend posts, user posts and their reactions.",
    },
    {
        "name": "dm-ws",
        "description": "Real-time DM delivery using WebSocket.",
    },
    {
        "name": "health",
        "description": "System health check.",
    },
]


def create_app() -> FastAPI:
    app = FastAPI(
        title="TrendoTalk Backend",
        description="""
TrendoTalk API powers a trend-centred social feed.

## Features
* **Trends & Posts**: Admin-curated trend posts plus user posts with likes, dislikes and votes.
* **Vibes**: Ephemeral media that disappears after 24 hours.
* **Direct Messages**: First contact goes through a request the recipient can allow, dismiss or block.
* **Social Graph**: Follows and friend requests.
""",
        version="0.1.0",
        openapi_tags=tags_metadata,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        swagger_ui_parameters={
            "persistAuthorization": True,
            "displayRequestDuration": True
        },
        lifespan=lifespan,
    )

    # Collaborators; the redis session store replaces the in-memory one at startup
    app.state.session_store = InMemorySessionStore(default_policy())
    app.state.media_store = S3MediaStore()
    app.state.connection_manager = ConnectionManager()

    # Middleware
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", tags=["health"], include_in_schema=False)
    async def root():
        return {
            "message": "Welcome to TrendoTalk Backend API",
            "docs": "/docs",
            "status": "operational"
        }

    # WebSocket Router (Bypass api_prefix, mounted directly)
    app.include_router(dm_ws_router)

    # Routes
    app.include_router(api_router, prefix=settings.api_prefix)

    # Exception Handlers
    app.add_exception_handler(AppError, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    return app


app = create_app()
