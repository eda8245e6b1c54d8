# dowstats/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from dowstats import __version__
from dowstats.config import get_settings
from dowstats.observability.logging import configure_logging
from dowstats.observability.metrics import router as observability_router
from dowstats.observability.middleware import (
    register_request_middleware,
    unhandled_exception_handler,
    validation_exception_handler,
)
from dowstats.plugin import PluginContext, build_context
from dowstats.routers.aggregates import router as aggregates_router
from dowstats.routers.catchup import router as catchup_router
from dowstats.routers.health import router as health_router
from dowstats.routers.ingest import router as ingest_router
from dowstats.scheduler.setup import shutdown_scheduler, start_scheduler

configure_logging(get_settings().LOG_LEVEL)


def create_app(context: Optional[PluginContext] = None) -> FastAPI:
    """
    Build the HTTP host. Pass a ready PluginContext (tests, embedding hosts)
    or let startup wire one from settings; a context built here is also
    closed here.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = context is None
        ctx = context or build_context()
        app.state.context = ctx
        scheduler = start_scheduler(ctx)
        try:
            yield
        finally:
            shutdown_scheduler(scheduler)
            if owned:
                ctx.close()

    app = FastAPI(title="Day-of-week Stats", version=__version__, lifespan=lifespan)
    if context is not None:
        app.state.context = context

    register_request_middleware(app)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router)
    app.include_router(observability_router)
    app.include_router(ingest_router)
    app.include_router(catchup_router)
    app.include_router(aggregates_router)

    return app


app = create_app()
