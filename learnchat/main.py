import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from learnchat/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from learnchat.api import admin, balance, conversations, health, metrics, quizzes, usage  # noqa: E402
from learnchat.core.config import settings, validate_config  # noqa: E402
from learnchat.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from learnchat.core.logging import configure_logging  # noqa: E402
from learnchat.core.middleware.metrics import MetricsMiddleware  # noqa: E402
from learnchat.core.middleware.ratelimit import RateLimitMiddleware  # noqa: E402
from learnchat.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from learnchat.core.ratelimit import build_rate_limit_config  # noqa: E402

configure_logging(settings.ENV)
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("learnchat")
    logger.info("Starting learnchat backend...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logging.getLogger("learnchat").info("Stopping learnchat backend...")


app = FastAPI(title="learnchat", lifespan=lifespan)

# Middlewares (last added runs first)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RateLimitMiddleware, config=build_rate_limit_config(settings), redis_url=settings.REDIS_URL)
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(balance.router)
app.include_router(conversations.router)
app.include_router(quizzes.router)
app.include_router(usage.router)
app.include_router(admin.router)
