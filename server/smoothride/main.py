"""SmoothRide server: main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, storage, cache, road network and API layers.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import IO

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from smoothride.api.admin import router as admin_router
from smoothride.api.monitoring import router as monitoring_router
from smoothride.api.obstacles import router as obstacles_router
from smoothride.api.reports import router as reports_router
from smoothride.api.routes import router as routes_router
from smoothride.api.users import router as users_router
from smoothride.cache.base import CacheStore
from smoothride.cache.memory_cache import MemoryCache
from smoothride.cache.redis_cache import RedisCache
from smoothride.config import AppConfig, load_config
from smoothride.core.clustering import ClusterService
from smoothride.core.confidence import ConfidenceEngine
from smoothride.core.decay import DecayJob
from smoothride.core.errors import (
    DependencyUnavailable,
    InvalidInput,
    NotFound,
    PermissionDenied,
)
from smoothride.core.moderation import ModerationService
from smoothride.core.processor import ReportProcessor
from smoothride.core.routing import RoutePlanner
from smoothride.core.spam import SpamDetector
from smoothride.core.stats import EngineStats
from smoothride.core.trust import TrustEngine
from smoothride.jobs.scheduler import DecayScheduler
from smoothride.roadnet.base import RoadNetwork
from smoothride.roadnet.osrm import OsrmRoadNetwork
from smoothride.storage.memory_storage import MemoryStorage

log = structlog.get_logger()

# Module-level singletons (set during startup)
_config: AppConfig | None = None
_stats: EngineStats | None = None
_storage: MemoryStorage | None = None
_confidence: ConfidenceEngine | None = None
_trust: TrustEngine | None = None
_spam: SpamDetector | None = None
_clusters: ClusterService | None = None
_processor: ReportProcessor | None = None
_moderation: ModerationService | None = None
_scheduler: DecayScheduler | None = None
_planner: RoutePlanner | None = None
_road_network: RoadNetwork | None = None
_log_file: IO[str] | None = None


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def get_stats() -> EngineStats:
    assert _stats is not None, "Server not initialized"
    return _stats


def get_storage() -> MemoryStorage:
    assert _storage is not None, "Server not initialized"
    return _storage


def get_confidence() -> ConfidenceEngine:
    assert _confidence is not None, "Server not initialized"
    return _confidence


def get_trust() -> TrustEngine:
    assert _trust is not None, "Server not initialized"
    return _trust


def get_spam() -> SpamDetector:
    assert _spam is not None, "Server not initialized"
    return _spam


def get_clusters() -> ClusterService:
    assert _clusters is not None, "Server not initialized"
    return _clusters


def get_processor() -> ReportProcessor:
    assert _processor is not None, "Server not initialized"
    return _processor


def get_moderation() -> ModerationService:
    assert _moderation is not None, "Server not initialized"
    return _moderation


def get_scheduler() -> DecayScheduler:
    assert _scheduler is not None, "Server not initialized"
    return _scheduler


def get_planner() -> RoutePlanner:
    assert _planner is not None, "Server not initialized"
    return _planner


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    global _log_file
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    logger_factory = None
    _close_log_file()
    if config.logging.file:
        _log_file = open(config.logging.file, "a")
        logger_factory = structlog.WriteLoggerFactory(file=_log_file)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
        logger_factory=logger_factory or structlog.PrintLoggerFactory(),
    )


def _close_log_file() -> None:
    global _log_file
    if _log_file is not None:
        _log_file.close()
        _log_file = None


def _build_cache(config: AppConfig) -> CacheStore | None:
    backend = config.cache.backend
    if backend == "redis":
        return RedisCache.from_url(config.cache.redis_url)
    if backend == "memory":
        return MemoryCache(max_entries=config.cache.max_entries)
    if backend == "none":
        return None
    raise ValueError(f"unknown cache backend: {backend!r}")


def build_engine(config: AppConfig, cache: CacheStore | None,
                 road_network: RoadNetwork | None = None) -> None:
    """Create every component and install the module-level singletons."""
    global _config, _stats, _storage, _confidence, _trust, _spam
    global _clusters, _processor, _moderation, _scheduler, _planner, _road_network

    if config.storage.backend != "memory":
        raise ValueError(f"unknown storage backend: {config.storage.backend!r}")

    _config = config
    _stats = EngineStats(active_window_seconds=config.limits.active_window_seconds)
    _storage = MemoryStorage()
    _confidence = ConfidenceEngine(_storage)
    _trust = TrustEngine(_storage)
    _spam = SpamDetector(_storage, cache, config.spam)
    _clusters = ClusterService(_storage, cache, _stats,
                               ttl_seconds=config.cache.cluster_ttl_seconds)
    _processor = ReportProcessor(_storage, _confidence, _trust, _spam, _clusters, _stats,
                                 merge_radius_m=config.limits.merge_radius_m)
    _moderation = ModerationService(_storage, _confidence, _clusters)

    job = DecayJob(_storage, _confidence, _clusters,
                   expiration_days=config.decay.expiration_days,
                   page_size=config.decay.page_size)
    _scheduler = DecayScheduler(job,
                                run_hour_utc=config.decay.run_hour_utc,
                                max_attempts=config.decay.max_attempts,
                                backoff_seconds=config.decay.backoff_seconds)
    stats = _stats
    _scheduler.on_complete(lambda result: stats.record_decay_run(result.to_dict()))
    _scheduler.on_failed(lambda _exc: stats.record_decay_failure())

    _road_network = road_network or OsrmRoadNetwork(
        config.routing.osrm_url, timeout_seconds=config.routing.timeout_seconds)
    _planner = RoutePlanner(_road_network, _storage, buffer_m=config.routing.buffer_meters)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    config = load_config()
    _setup_logging(config)

    log.info("server_starting",
             env=config.server.env,
             storage=config.storage.backend,
             cache=config.cache.backend)

    cache = _build_cache(config)
    build_engine(config, cache)

    scheduler_task = None
    if config.decay.enabled:
        scheduler_task = asyncio.create_task(_scheduler.run_forever())

    log.info("server_started",
             host=config.server.host,
             port=config.server.port)

    yield

    # Shutdown
    if scheduler_task is not None:
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass
    if isinstance(_road_network, OsrmRoadNetwork):
        await _road_network.close()
    if isinstance(cache, RedisCache):
        await cache.close()
    log.info("server_stopped")
    _close_log_file()


app = FastAPI(
    title="SmoothRide",
    description="Crowd-sourced road obstacle trust and routing server",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(InvalidInput)
async def _invalid_input(request: Request, exc: InvalidInput) -> JSONResponse:
    return JSONResponse(status_code=422, content={"error": str(exc)})


@app.exception_handler(NotFound)
async def _not_found(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(PermissionDenied)
async def _permission_denied(request: Request, exc: PermissionDenied) -> JSONResponse:
    return JSONResponse(status_code=403, content={"error": str(exc)})


@app.exception_handler(DependencyUnavailable)
async def _dependency_unavailable(request: Request, exc: DependencyUnavailable) -> JSONResponse:
    log.warning("dependency_unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"error": str(exc)})


app.include_router(monitoring_router)
app.include_router(obstacles_router)
app.include_router(reports_router)
app.include_router(users_router)
app.include_router(admin_router)
app.include_router(routes_router)
