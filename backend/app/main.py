"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core import otel
from app.core.config import Settings, get_settings
from app.core.errors import ConnectorError, connector_error_handler
from app.core.logging import setup_logging
from app.core.middleware import access_log_middleware, setup_cors_middleware
from app.db.redis import get_redis_client
from app.db.session import check_db_connection, engine, get_db, init_db

# Import routers
from app.api import auth, instagram, oauth, webhook

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    settings = get_settings()
    setup_logging(settings)

    if otel.initialize_otel(settings):
        otel.instrument_httpx()
        otel.instrument_sqlalchemy(engine)
        logger.info(f"OpenTelemetry initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    yield

    logger.info("Shutting down...")


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


def create_app(settings: Settings = None) -> FastAPI:
    """Build the FastAPI application"""
    settings = settings or get_settings()

    app = FastAPI(
        title="Gramlink Backend",
        description="Instagram Business account linking and publishing",
        version="1.0.0",
        lifespan=lifespan
    )

    if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        otel.instrument_fastapi(app)

    setup_cors_middleware(app, settings)
    app.middleware("http")(access_log_middleware)

    app.add_exception_handler(ConnectorError, connector_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(auth.router)
    app.include_router(oauth.router)
    app.include_router(instagram.router)
    app.include_router(webhook.router)

    @app.get("/metrics")
    def metrics_endpoint():
        """Prometheus metrics endpoint"""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    def health_check(db: Session = Depends(get_db)):
        """Health check endpoint (database connectivity)"""
        try:
            check_db_connection(db)
        except SQLAlchemyError as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "unreachable"})
        return {"status": "healthy", "database": "connected"}

    return app


app = create_app()
