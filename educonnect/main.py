from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from .app_logger import get_logger, setup_logging
from .config import settings
from .db import init_db
from .errors import register_exception_handlers
from .routers import (
    academic, auth, chatbot, disciplinary, grade_periods, grades, leave, meetings, report_periods, reports,
    users, violations,
)
from .utils import ok

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("%s started", settings.APP_NAME)
    yield


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    register_exception_handlers(app)

    os.makedirs(settings.MEDIA_ROOT, exist_ok=True)
    app.mount("/media", StaticFiles(directory=settings.MEDIA_ROOT), name="media")

    for module in (
        auth, users, academic, grade_periods, grades, violations, disciplinary,
        leave, meetings, report_periods, reports, chatbot,
    ):
        app.include_router(module.router)

    @app.get("/health", tags=["meta"])
    def health():
        return ok({"app": settings.APP_NAME})

    return app


app = create_app()
