from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from contextlib import asynccontextmanager
from prometheus_fastapi_instrumentator import Instrumentator
import uvicorn
import logging
import sys

from carecoord.core.config import settings
from carecoord.db.session import engine
from carecoord.db.base import Base
from carecoord.reminders.api import router as reminders_router
from carecoord.reminders.config import settings as reminder_settings
from carecoord.reminders.tasks import build_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting up CareCoord reminder service...")

    # Check database tables
    try:
        from sqlalchemy import inspect

        existing_tables = inspect(engine).get_table_names()
        required_tables = [table.name for table in Base.metadata.tables.values()]
        missing_tables = [table for table in required_tables if table not in existing_tables]
        if missing_tables:
            logger.warning(f"Missing database tables: {missing_tables}")
            logger.warning("Run `alembic upgrade head` before starting the server")
        else:
            logger.info("All required database tables exist")
    except Exception as e:
        logger.warning(f"Could not check database tables: {e}")

    scheduler = None
    if reminder_settings.SCHEDULER_ENABLED:
        scheduler = build_scheduler()
        await scheduler.start()
    else:
        logger.info("[Scheduler] Disabled by REMINDER_SCHEDULER_ENABLED")
    app.state.scheduler = scheduler

    yield

    logger.info("Shutting down CareCoord reminder service...")
    if scheduler is not None:
        await scheduler.stop()
    logger.info("CareCoord reminder service shutdown complete")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="CareCoord - medication reminder scheduling",
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url=f"{settings.API_V1_STR}/docs",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(
        reminders_router,
        prefix=f"{settings.API_V1_STR}/medication-reminders",
        tags=["medication-reminders"],
    )
    if reminder_settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint that redirects to API documentation"""
        return RedirectResponse(url=f"{settings.API_V1_STR}/docs")

    return app


# Create the FastAPI app instance
app = create_application()


if __name__ == "__main__":
    uvicorn.run(
        "carecoord.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        log_level="info",
    )
