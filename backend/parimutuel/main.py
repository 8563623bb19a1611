import logging
from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from parimutuel.api.router import api_router
from parimutuel.core.config import get_settings
from parimutuel.core.database import AsyncSessionLocal
from parimutuel.core.logging import setup_logging
from parimutuel.runtime import build_runtime

settings = get_settings()

if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        send_default_pii=False,
    )
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging("api")
    logger.info(
        "Database URL configuration active",
        extra={
            "database_url_source": settings.resolved_database_url_source,
            "database_host": (
                settings.postgres_host if settings.resolved_database_url_source == "postgres_fallback" else None
            ),
            "database_name": (
                settings.postgres_db if settings.resolved_database_url_source == "postgres_fallback" else None
            ),
        },
    )
    redis: Optional[Redis] = None
    try:
        redis = Redis.from_url(settings.redis_url, decode_responses=True)
        await redis.ping()
        app.state.redis = redis
        logger.info("Redis connected")
    except Exception:
        app.state.redis = None
        redis = None
        logger.exception("Redis connection failed")

    runtime = build_runtime(settings, session_factory=AsyncSessionLocal, redis=redis)
    app.state.session_factory = AsyncSessionLocal
    app.state.oracle = runtime.oracle
    app.state.engine = runtime.engine
    app.state.reconciler = runtime.reconciler
    app.state.scheduler = runtime.scheduler

    if settings.scheduler_in_api:
        try:
            await runtime.scheduler.start()
        except Exception:
            logger.exception("Scheduler failed to start; API continues without it")

    yield

    await runtime.scheduler.stop()
    if redis is not None:
        await redis.aclose()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "Origin"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request body",
                "errors": jsonable_errors(exc),
            }
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


app.include_router(api_router, prefix="/api/v1")
