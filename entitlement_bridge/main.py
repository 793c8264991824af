import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from entitlement_bridge.api import checkout, health, intent, webhooks
from entitlement_bridge.core.config import Settings, load_bridge_config, missing_config
from entitlement_bridge.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from entitlement_bridge.core.logging import LOGGER_NAME, configure_logging
from entitlement_bridge.core.middleware.request_id import RequestIdMiddleware
from entitlement_bridge.core.validation import validate_env

settings = Settings()
configure_logging(settings.ENV)
validate_env(settings_obj=settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger(LOGGER_NAME)
    logger.info("Starting entitlement bridge...")
    app.state.startup_time = time.time()
    missing_config(load_bridge_config(settings), logger)
    try:
        yield
    finally:
        logging.getLogger(LOGGER_NAME).info("Stopping entitlement bridge...")


app = FastAPI(title="Entitlement Bridge", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# Browser callers (intent + checkout) come from the storefront on another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type", "Stripe-Signature", "svix-id", "svix-timestamp", "svix-signature"],
)

app.include_router(intent.router)
app.include_router(webhooks.router)
app.include_router(checkout.router)
app.include_router(health.router)
app.include_router(health.root_router)
