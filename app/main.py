from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.database import init_db
from app.core.exceptions import SchedulingError
from app.core.logging import configure_logging
from app.core.redis import redis_client
from app.repositories.base import PersistencePort
from app.repositories.factory import build_persistence
from app.repositories.seed import seed_demo_data
from app.services.portal import BookingPortal

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info(
        "Starting application",
        environment=settings.ENVIRONMENT,
        persistence=settings.persistence_backend,
    )

    if getattr(app.state, "portal", None) is None:
        if settings.persistence_backend == "sql":
            await init_db()
        persistence = build_persistence()
        if settings.SEED_DEMO_DATA:
            await seed_demo_data(persistence)
        app.state.portal = BookingPortal(
            persistence,
            lock_client=redis_client if redis_client.enabled else None,
        )

    yield

    await redis_client.close()
    logger.info("Application shutdown")


async def scheduling_error_handler(request: Request, exc: SchedulingError):
    if exc.status_code >= 500:
        logger.error(
            "Request failed", path=request.url.path, kind=exc.kind, **exc.context
        )
    else:
        logger.info(
            "Request rejected", path=request.url.path, kind=exc.kind, reason=exc.reason
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(persistence: Optional[PersistencePort] = None, **portal_options) -> FastAPI:
    """Build the API. Passing ``persistence`` skips start-up wiring (tests)."""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.portal = (
        BookingPortal(persistence, **portal_options) if persistence is not None else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SchedulingError, scheduling_error_handler)
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)
    return app


app = create_app()
