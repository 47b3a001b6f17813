from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api.routes import router as api_router
from .config import settings
from .jobs.scheduler import schedule_jobs, shutdown_scheduler
from .logging import setup_logging

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.scheduler_enabled:
        schedule_jobs()
    yield
    shutdown_scheduler()


app = FastAPI(title="project-cashflow-service", lifespan=lifespan)
app.include_router(api_router)
