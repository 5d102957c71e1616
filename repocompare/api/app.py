"""FastAPI application factory for repocompare.

Creates and configures the FastAPI app with CORS and all route
modules registered.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from .. import __version__

logger = logging.getLogger(__name__)


def create_app(engine, db_manager, hub, settings=None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: ComparisonEngine instance
        db_manager: DatabaseManager instance
        hub: ProgressHub shared with the background worker
        settings: Settings instance (optional)

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="repocompare API",
        description="Ranked comparisons of GitHub repositories for free-text needs",
        version=__version__,
    )

    origins = settings.cors_origins if settings is not None else ["http://localhost:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store shared dependencies on app state
    app.state.engine = engine
    app.state.db_manager = db_manager
    app.state.hub = hub
    app.state.settings = settings

    # Register routers
    from .routes.comparisons import router as comparisons_router
    from .routes.repositories import router as repositories_router
    from .routes.progress import router as progress_router
    from .routes.budget import router as budget_router

    app.include_router(comparisons_router, prefix="/api")
    app.include_router(repositories_router, prefix="/api")
    app.include_router(progress_router, prefix="/api")
    app.include_router(budget_router, prefix="/api")

    @app.get("/api/health")
    def health_check():
        try:
            db_ok = db_manager.ping() if db_manager is not None else False
        except SQLAlchemyError as e:
            logger.warning(f"Health check database ping failed: {e}")
            db_ok = False
        return {"status": "ok" if db_ok else "degraded", "service": "repocompare", "database": db_ok}

    logger.info("FastAPI app created with all routes registered")
    return app
