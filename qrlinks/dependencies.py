"""Dependency injection for the QR links API.

``ServiceManager`` builds every long-lived resource once at startup (engine,
session factory, Redis cache, classifier, logo resolver, scan recorder) and
the application keeps it on ``app.state.services``. Each request gets a
lightweight ``RequestContext`` holding its own database session plus access
to those shared resources, and services are built from that context.

Wiring Diagram
==============
::
    lifespan()                          per request
    ──────────                          ───────────
    ServiceManager(settings)            get_service_manager(request)
      .initialize()                           │
        ├─ engine / session factory           ▼
        ├─ ResolutionCache (Redis)      get_db() ──▶ AsyncSession
        ├─ ScanClassifier                     │
        │   ├─ UserAgentParser                ▼
        │   └─ GeoLookup               get_request_context()
        ├─ LogoResolver                       │
        └─ ScanRecorder.start()               ▼
    app.state.services = manager       LinkRegistry / TargetLedger /
                                       ResolutionPipeline / LinkRenderer /
                                       ScanAnalytics .from_context(ctx)
"""

import logging
import time
import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from qrlinks.agents import UserAgentParser
from qrlinks.analytics import ScanAnalytics
from qrlinks.cache import ResolutionCache, build_redis
from qrlinks.classifier import ScanClassifier
from qrlinks.config import Settings, get_settings
from qrlinks.database import build_engine, build_session_factory, close_db, init_db
from qrlinks.exceptions import UnauthorizedError
from qrlinks.geo import GeoLookup
from qrlinks.ledger import TargetLedger
from qrlinks.logos import LogoResolver
from qrlinks.recorder import ScanRecorder
from qrlinks.registry import LinkRegistry
from qrlinks.renderer import LinkRenderer
from qrlinks.resolver import ResolutionPipeline, extract_client_ip

__all__ = [
    "ServiceManager",
    "RequestContext",
    "get_service_manager",
    "get_db",
    "get_request_context",
    "get_current_owner",
    "get_link_registry",
    "get_target_ledger",
    "get_resolution_pipeline",
    "get_link_renderer",
    "get_scan_analytics",
]


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Owner of the shared resources for one application instance.

    Args:
        settings: Configuration; defaults to ``get_settings()``.
        cache_client: Pre-built Redis client, used instead of ``REDIS_URL``.
    """

    def __init__(self, settings: Settings | None = None, cache_client: redis.Redis | None = None) -> None:
        self.settings = settings or get_settings()
        self._cache_client = cache_client
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return

        self.logger = self._setup_logger()
        self.engine: AsyncEngine = build_engine(self.settings)
        self.session_factory: async_sessionmaker[AsyncSession] = build_session_factory(self.engine)
        if self.settings.AUTO_CREATE_TABLES:
            await init_db(self.engine)

        client = self._cache_client or build_redis(self.settings.REDIS_URL)
        self.cache = ResolutionCache(client, self.settings.RESOLUTION_CACHE_TTL_SECONDS)
        self.geo = GeoLookup(self.settings.GEOIP_DATABASE_PATH)
        self.classifier = ScanClassifier(UserAgentParser(), self.geo)
        self.logo_resolver = LogoResolver(self.settings)
        self.scan_recorder = ScanRecorder(
            self.session_factory,
            max_size=self.settings.SCAN_QUEUE_MAX_SIZE,
            batch_size=self.settings.SCAN_WRITE_BATCH_SIZE,
            shutdown_flush_seconds=self.settings.SCAN_SHUTDOWN_FLUSH_SECONDS,
        )
        await self.scan_recorder.start()

        self._initialized = True
        self.logger.info(f"{self.settings.APP_NAME} services initialized ({self.settings.APP_ENV})")

    def _setup_logger(self) -> logging.Logger:
        """Configure the package logger once."""
        logger = logging.getLogger("qrlinks")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def cleanup(self) -> None:
        """Release shared resources at shutdown; the recorder drains first."""
        if not self._initialized:
            return
        await self.scan_recorder.stop()
        await self.cache.close()
        self.geo.close()
        await close_db(self.engine)
        self._initialized = False
        self.logger.info("Services shut down")


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request handle on the session and the shared resources.

    Attributes:
        database: Async database session (the only per-request resource)
        service_manager: Shared resources for this application instance
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def cache(self) -> ResolutionCache:
        return self.service_manager.cache

    @property
    def classifier(self) -> ScanClassifier:
        return self.service_manager.classifier

    @property
    def scan_recorder(self) -> ScanRecorder:
        return self.service_manager.scan_recorder

    @property
    def logo_resolver(self) -> LogoResolver:
        return self.service_manager.logo_resolver

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger carrying this request's identifiers."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_service_manager(request: Request) -> ServiceManager:
    manager = getattr(request.app.state, "services", None)
    if manager is None or not manager.initialized:
        raise RuntimeError("ServiceManager is not initialized; is the lifespan running?")
    return manager


async def get_db(manager: ServiceManager = Depends(get_service_manager)) -> AsyncGenerator[AsyncSession, None]:
    async with manager.session_factory() as session:
        yield session


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    """Build the request context from the session and inbound headers."""
    return RequestContext(
        database=db,
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=extract_client_ip(request, manager.settings.TRUST_FORWARDED_FOR),
    )


def get_current_owner(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> uuid.UUID:
    """Owner id from the gateway-supplied header.

    Raises:
        UnauthorizedError: header missing or not a UUID.
    """
    raw = request.headers.get(manager.settings.OWNER_HEADER, "").strip()
    if not raw:
        raise UnauthorizedError()
    try:
        return uuid.UUID(raw)
    except ValueError as exc:
        raise UnauthorizedError() from exc


def get_link_registry(ctx: RequestContext = Depends(get_request_context)) -> LinkRegistry:
    return LinkRegistry.from_context(ctx)


def get_target_ledger(ctx: RequestContext = Depends(get_request_context)) -> TargetLedger:
    return TargetLedger.from_context(ctx)


def get_resolution_pipeline(ctx: RequestContext = Depends(get_request_context)) -> ResolutionPipeline:
    return ResolutionPipeline.from_context(ctx)


def get_link_renderer(ctx: RequestContext = Depends(get_request_context)) -> LinkRenderer:
    return LinkRenderer.from_context(ctx)


def get_scan_analytics(ctx: RequestContext = Depends(get_request_context)) -> ScanAnalytics:
    return ScanAnalytics.from_context(ctx)
