# dowstats/plugin.py
"""
Host integration surface.

A host hands `install` a registry holding the database engine and the
remote point-service client, and calls `process` once per event with the
event's metric batch. Everything the engine needs lives on the returned
PluginContext; nothing is kept in module globals.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

import structlog
from sqlalchemy.engine import Engine

from dowstats.clients.point_service import PointServiceClient
from dowstats.config import Settings, get_settings
from dowstats.db.session import build_engine, init_db, make_sessionmaker, select_database_url
from dowstats.errors import DispatchError, PluginConfigError
from dowstats.services.aggregate_store import AggregateStore
from dowstats.services.catchup import CatchUpScanner
from dowstats.services.dispatcher import Dispatcher, DispatchResult, MetricLike
from dowstats.services.merger import BatchMerger

logger = structlog.get_logger(__name__)

PLUGIN_NAME = "dow"
PLUGIN_VERSION = "v1.0"
ENV_SQL_DB = "sql.DB"
ENV_POINT_SERVICE_CLIENT = "pb.PointServiceClient"


@dataclass
class PluginContext:
    engine: Engine
    store: AggregateStore
    merger: BatchMerger
    dispatcher: Dispatcher
    scanner: CatchUpScanner
    point_service: Any
    settings: Settings

    @classmethod
    def build(cls, engine: Engine, point_service: Any, settings: Optional[Settings] = None) -> "PluginContext":
        settings = settings or get_settings()
        init_db(engine)
        store = AggregateStore(make_sessionmaker(engine))
        merger = BatchMerger(store)
        dispatcher = Dispatcher(merger, max_workers=settings.DISPATCH_MAX_WORKERS)
        scanner = CatchUpScanner(
            dispatcher,
            directory=point_service,
            source=point_service,
            page_size=settings.CATCHUP_PAGE_SIZE,
        )
        return cls(
            engine=engine,
            store=store,
            merger=merger,
            dispatcher=dispatcher,
            scanner=scanner,
            point_service=point_service,
            settings=settings,
        )

    def close(self) -> None:
        close = getattr(self.point_service, "close", None)
        if callable(close):
            close()
        self.engine.dispose()


def name() -> str:
    return f"{PLUGIN_NAME}@{PLUGIN_VERSION}"


def install(registry: Mapping[str, Any], settings: Optional[Settings] = None) -> PluginContext:
    """Wire the engine from handles the host put in `registry`."""
    logger.info("plugin.installing", plugin=name())

    engine = registry.get(ENV_SQL_DB)
    if engine is None:
        raise PluginConfigError(f"plugin {PLUGIN_NAME} requires a valid {ENV_SQL_DB} value")
    logger.info("plugin.handle_found", key=ENV_SQL_DB)

    point_service = registry.get(ENV_POINT_SERVICE_CLIENT)
    if point_service is None:
        raise PluginConfigError(f"plugin {PLUGIN_NAME} requires a valid {ENV_POINT_SERVICE_CLIENT} value")
    logger.info("plugin.handle_found", key=ENV_POINT_SERVICE_CLIENT)

    return PluginContext.build(engine, point_service, settings)


def build_context(settings: Optional[Settings] = None) -> PluginContext:
    """Standalone wiring from settings, for running as a service."""
    settings = settings or get_settings()
    engine = build_engine(select_database_url(settings))
    client = PointServiceClient(settings.POINT_SERVICE_URL, timeout=settings.POINT_SERVICE_TIMEOUT)
    return install({ENV_SQL_DB: engine, ENV_POINT_SERVICE_CLIENT: client}, settings)


def process(ctx: PluginContext, metrics: Sequence[MetricLike]) -> Optional[DispatchResult]:
    if not metrics:
        logger.info("plugin.no_metrics")
        return None

    start = time.perf_counter()
    try:
        result = ctx.dispatcher.run(metrics)
    except DispatchError as ex:
        logger.error("plugin.process_failed", plugin=name(), error=str(ex))
        raise
    logger.info(
        "plugin.processed",
        plugin=name(),
        metrics=len(metrics),
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return result


__all__ = [
    "ENV_POINT_SERVICE_CLIENT",
    "ENV_SQL_DB",
    "PluginContext",
    "build_context",
    "install",
    "name",
    "process",
]
