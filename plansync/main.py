import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from plansync.core.config import settings, validate_config
from plansync.core.database import create_all_tables
from plansync.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from plansync.core.logging import configure_logging
from plansync.core.middleware.metrics import MetricsMiddleware
from plansync.core.middleware.request_id import RequestIdMiddleware
from plansync.core.validation import validate_env
from plansync.api import admin_plans, health, metrics, plans

configure_logging(settings.ENV)
validate_env()
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("plansync")
    logger.info("Starting PlanSync...")
    app.state.startup_time = time.time()
    if settings.ENV.lower() != "production":
        # Production schemas are managed by migrations
        create_all_tables()
    try:
        yield
    finally:
        logger.info("Stopping PlanSync...")


app = FastAPI(title="PlanSync", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(plans.router, tags=["plans"])
app.include_router(admin_plans.router, tags=["admin-plans"])
app.include_router(health.root_router, tags=["health"])
app.include_router(metrics.router, tags=["metrics"])
