"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload

The app exposes health endpoints only.  Feature operations are reached
through the EpidemicService stored on ``app.state.epidemic_service``,
which the host application mounts its own routes around.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import Settings, settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.cache import close_redis
from backend.app.core.health import HealthStatus, run_health_check

# ── Epidemic core ──
from backend.app.alerts.alert_dispatcher import AlertDispatcher
from backend.app.alerts.channels import PushChannel, build_push_channel
from backend.app.geocoding.reverse_geocoder import ReverseGeocoder
from backend.app.services.epidemic_service import EpidemicService
from backend.app.store.base import PointStore
from backend.app.store.memory import InMemoryStore

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def build_service(
    config: Settings,
    *,
    store: Optional[PointStore] = None,
    push: Optional[PushChannel] = None,
    geocoder: Optional[ReverseGeocoder] = None,
) -> EpidemicService:
    """Wire the epidemic core from settings; any collaborator may be injected."""
    push = push or build_push_channel(config)
    dispatcher = AlertDispatcher(
        push,
        store or InMemoryStore(),
        batch_size=config.push_batch_size,
        max_concurrency=config.PUSH_MAX_CONCURRENT_BATCHES,
        language=config.ALERT_LANGUAGE,
        broadcast_topic=config.PUSH_BROADCAST_TOPIC,
        cooldown_seconds=config.ALERT_COOLDOWN_SECONDS,
    )
    return EpidemicService(
        dispatcher.store,
        dispatcher,
        geocoder or ReverseGeocoder.from_settings(config),
        default_grid_size=config.DEFAULT_GRID_SIZE_DEG,
        default_cluster_distance=config.DEFAULT_CLUSTER_DISTANCE_DEG,
        cache_ttl=config.GIS_CACHE_TTL,
    )


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the push channel and service once; release them on shutdown."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    service = build_service(settings)
    app.state.epidemic_service = service
    yield
    logger.info("Shutting down %s", settings.APP_NAME)
    await service.dispatcher.push.close()
    await service.geocoder.close()
    await close_redis()


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Epidemic GIS core: grid density and spatial clustering of "
        "geotagged disease cases, epidemic zone containment with "
        "case-count driven risk, and zone-entry push alerts."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Error handlers ──
register_error_handlers(app)


def _health_targets():
    service = getattr(app.state, "epidemic_service", None)
    if service is None:
        return None, None
    return service.dispatcher.push, service.geocoder


# ── Health endpoints ──

@app.get("/health", tags=["health"])
async def health_check():
    """Deep health check of all subsystems."""
    report = await run_health_check(*_health_targets())
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness check: is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness():
    """Kubernetes readiness check: can we serve traffic?"""
    report = await run_health_check(*_health_targets())
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
