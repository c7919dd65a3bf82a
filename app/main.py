import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import Settings, get_settings
from app.core.errors import register_error_handlers
from app.core.logging_config import configure_logging
from app.routers import auth, files
from app.services.content_store import ContentStore
from app.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        content_store = ContentStore(settings.upload_path, settings.max_file_size, settings.max_files)
        content_store.ensure_directory()
        metadata = MetadataStore(settings.database_url)
        metadata.start()

        app.state.settings = settings
        app.state.content_store = content_store
        app.state.metadata = metadata
        logger.info("Server started (env=%s, uploads=%s)", settings.app_env, settings.upload_path)
        try:
            yield
        finally:
            metadata.close()
            logger.info("Server stopped")

    app = FastAPI(title="File Host", lifespan=lifespan)
    register_error_handlers(app)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(
            "%s %s from %s (%s)",
            request.method,
            request.url.path,
            request.client.host if request.client else "-",
            request.headers.get("user-agent", "-"),
        )
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            logger.warning("404 - Route not found: %s %s", request.method, request.url.path)
            return JSONResponse(status_code=404, content={"detail": "Route not found", "code": "route_not_found"})
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": "http_error"})

    # include our routers
    app.include_router(auth.router)
    app.include_router(files.router)

    @app.get("/")
    def home():
        return {"message": "File host API", "status": "running"}

    @app.get("/api/health")
    def health():
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


app = create_app()
