"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from bookrec.api.routes import interactions, recommendations
from bookrec.config import get_settings
from bookrec.core.database import engine, init_db
from bookrec.core.langfuse_client import init_langfuse

settings = get_settings()
logger = logging.getLogger(__name__)


def configure_logging(level: str = settings.log_level) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    langfuse = init_langfuse(settings)
    logger.info("Catalog tables ready (%s cache backend)", settings.cache_backend)
    yield
    if langfuse is not None:
        langfuse.flush()


# Create FastAPI application
app = FastAPI(
    title="Bookrec - Book Recommendation API",
    description="Personalized, collaborative and trending book recommendations",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(recommendations.router, prefix="/api", tags=["recommendations"])
app.include_router(interactions.router, prefix="/api", tags=["interactions"])


@app.get("/")
def read_root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "Bookrec Recommendation API",
        "version": "0.1.0",
    }


@app.get("/health")
def health_check():
    """Detailed health check endpoint."""
    return {
        "status": "healthy",
        "environment": settings.environment,
        "cache_backend": settings.cache_backend,
    }


@app.get("/test/db")
def test_database():
    """Test catalog store connectivity."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            tables = inspect(conn).get_table_names()
    except SQLAlchemyError as e:
        return {"status": "error", "error": str(e)}

    return {"status": "connected", "tables": tables}


@app.get("/test/redis")
def test_redis():
    """Test Redis connectivity."""
    from bookrec.core.redis_client import redis_client

    try:
        # Test basic operations
        redis_client.set("test_key", "test_value", ex=10)
        value = redis_client.get("test_key")
        redis_client.delete("test_key")

        info = redis_client.info("server")
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}

    return {
        "status": "connected",
        "test_write_read": "success" if value == "test_value" else "failed",
        "redis_version": info.get("redis_version"),
        "uptime_seconds": info.get("uptime_in_seconds"),
    }
