import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from app.api.routes import events, health, integrations, jobs, suggestions, teams
from app.config import get_settings
from app.services.container import Services, build_services

settings = get_settings()

# Configure application logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# Set log level for app modules
logger = logging.getLogger("app")
logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)


def create_app(services: Optional[Services] = None, start_background: bool = True) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        services: Pre-built services (tests pass fakes); built from settings if None
        start_background: Start the worker pool and stored connections on startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services or build_services(settings)
        if start_background:
            await app.state.services.workers.start()
            await app.state.services.connections.initialize_all()
        logger.info(f"{settings.app_name} started")
        yield
        if start_background:
            await app.state.services.connections.shutdown()
            await app.state.services.workers.stop()
        logger.info(f"{settings.app_name} stopped")

    app = FastAPI(
        title=settings.app_name,
        description="Workplace conversations to reviewed knowledge base suggestions",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Include routers
    app.include_router(teams.router, prefix="/api/teams", tags=["Teams"])
    app.include_router(
        suggestions.router, prefix="/api/teams/{team_id}/suggestions", tags=["Suggestions"]
    )
    app.include_router(jobs.router, prefix="/api/teams/{team_id}/jobs", tags=["Jobs"])
    app.include_router(
        integrations.router,
        prefix="/api/teams/{team_id}/integrations",
        tags=["Integrations"],
    )
    app.include_router(health.router, prefix="/api/health", tags=["Health"])
    app.include_router(events.router, prefix="/api", tags=["Events"])

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to Current - conversations to living knowledge base",
            "version": "0.1.0",
            "endpoints": {
                "teams": "/api/teams",
                "suggestions": "/api/teams/{team_id}/suggestions",
                "jobs": "/api/teams/{team_id}/jobs",
                "integrations": "/api/teams/{team_id}/integrations",
                "health": "/api/health/system",
                "events": "/api/events",
                "docs": "/docs",
            },
        }

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": settings.app_name}

    return app


app = create_app()
