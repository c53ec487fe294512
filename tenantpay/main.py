import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# Load env from tenantpay/.env before settings are read
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from tenantpay.api import health, metrics, owner, pricing, subscriptions  # noqa: E402
from tenantpay.api.deps import Services, build_services  # noqa: E402
from tenantpay.core.config import settings, validate_config  # noqa: E402
from tenantpay.core.database import create_all_tables, database_enabled  # noqa: E402
from tenantpay.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from tenantpay.core.logging import configure_logging  # noqa: E402
from tenantpay.core.middleware.request_id import RequestIdMiddleware  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("tenantpay")
    logger.info("Starting tenantpay...")
    if database_enabled():
        create_all_tables()
    try:
        yield
    finally:
        await app.state.services.dispatcher.drain()
        logger.info("Stopping tenantpay...")


def create_app(services: Optional[Services] = None) -> FastAPI:
    configure_logging(settings.ENV)
    validate_config(strict=settings.CONFIG_STRICT)

    app = FastAPI(title="tenantpay", lifespan=lifespan)
    app.state.services = services or build_services()

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(subscriptions.router)
    app.include_router(pricing.router)
    app.include_router(owner.router)
    app.include_router(health.router)
    app.include_router(metrics.router)
    return app


app = create_app()
