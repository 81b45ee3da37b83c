"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI

from mindbloom import __version__
from mindbloom.api.middleware import setup_cors, setup_error_handlers, setup_rate_limiting
from mindbloom.api.routes import router
from mindbloom.config import LOG_LEVEL, USE_IN_MEMORY_STORE, validate_config
from mindbloom.db.connection import db
from mindbloom.services.container import ServiceContainer, init_container, set_container

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO)
)

logger = logging.getLogger(__name__)


async def _build_container() -> ServiceContainer:
    """Container backed by PostgreSQL, or the in-memory store for local runs"""
    if USE_IN_MEMORY_STORE:
        from mindbloom.db.memory_store import InMemoryStore
        return init_container(InMemoryStore().repositories())

    from mindbloom.db.postgres import apply_schema, postgres_repositories
    await db.init_pool()
    logger.info("Database pool initialized")
    await apply_schema(db)
    return init_container(postgres_repositories(db))


def create_api_application(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure FastAPI application

    Args:
        container: Pre-built services (tests). When omitted, the lifespan
            connects to the configured store.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for FastAPI application"""
        # Startup
        logger.info("Starting API server...")
        owns_pool = container is None and not USE_IN_MEMORY_STORE
        if container is None:
            validate_config()
            services = await _build_container()
        else:
            set_container(container)
            services = container

        tracker = services.achievement_tracker
        await tracker.seed_default_badges()
        await tracker.seed_default_templates()

        yield

        # Shutdown
        logger.info("Shutting down API server...")
        if owns_pool:
            await db.close_pool()
            logger.info("Database pool closed")

    app = FastAPI(
        title="MindBloom API",
        description="REST API for the MindBloom wellness tracker",
        version=__version__,
        lifespan=lifespan
    )

    if container is not None:
        # Available before startup as well (e.g. clients that skip the lifespan)
        set_container(container)

    # Setup middleware
    setup_cors(app)
    setup_rate_limiting(app)
    setup_error_handlers(app)

    # Include routes
    app.include_router(router)

    logger.info("FastAPI application created")

    return app
