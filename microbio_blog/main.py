import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from microbio_blog.core.cache import ResponseCache, ResponseCacheMiddleware
from microbio_blog.core.config import get_settings
from microbio_blog.core.errors import AppError
from microbio_blog.core.logging import setup_logging
from microbio_blog.db.mongodb import close_mongo_connection, connect_to_mongo, get_database
from microbio_blog.models.common import ErrorResponse
from microbio_blog.routes import categories, comments, posts
from microbio_blog.services.events import EventBus
from microbio_blog.services.handlers import register_handlers
from microbio_blog.services.media import CloudinaryMediaStorage

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, error=None, headers=None) -> JSONResponse:
    body = ErrorResponse(message=message, error=error).model_dump()
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message, exc.error)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err["loc"][1:]) or str(err["loc"][0]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return _error(status.HTTP_400_BAD_REQUEST, "Validation failed", errors)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await connect_to_mongo()
    register_handlers(app.state.event_bus, get_database())
    yield
    await app.state.event_bus.drain()
    await close_mongo_connection()


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(title=settings.PROJECT_NAME, version="1.0.0", lifespan=lifespan)

    app.state.event_bus = EventBus()
    app.state.media_storage = CloudinaryMediaStorage.from_settings(settings)
    app.state.response_cache = None
    if not app.state.media_storage.configured:
        logger.warning("Cloudinary credentials missing; inline image uploads will fail")

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    if settings.CACHE_ENABLED:
        app.state.response_cache = ResponseCache(settings.CACHE_TTL_SECONDS)
        app.add_middleware(ResponseCacheMiddleware, cache=app.state.response_cache, prefix=settings.API_PREFIX)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(posts.router, prefix=f"{settings.API_PREFIX}/posts", tags=["Posts"])
    app.include_router(comments.router, prefix=f"{settings.API_PREFIX}/comments", tags=["Comments"])
    app.include_router(categories.router, prefix=f"{settings.API_PREFIX}/categories", tags=["Categories"])

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    return app


app = create_app()
