"""
waiter.main
===========
Entrypoint that stitches everything together:

• config / CORS
• shared objects on `app.state`  (connection registry, liveness monitor,
  restaurant directory, session bootstrap, waiter agent config)
• route registration (v1 API + root WebSocket routes)
"""

from __future__ import annotations

import os

from utils.telemetry_config import setup_tracing

# ---------------- Monitoring ------------------------------------------------
setup_tracing(service_name="waiter-relay")

from utils.ml_logging import get_logger

logger = get_logger("main")

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Tuple

StepCallable = Callable[[], Awaitable[None]]
LifecycleStep = Tuple[str, StepCallable, Optional[StepCallable]]

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from apps.waiter.backend.api.v1.router import v1_router, ws_router
from apps.waiter.backend.config import (
    ALLOWED_ORIGINS,
    DEBUG_MODE,
    ENABLE_DOCS,
    ENVIRONMENT,
    PORT,
    WAITER_AGENT_CONFIG,
)
from apps.waiter.backend.config.app_config import AppConfig, UpstreamConfig
from apps.waiter.backend.src.agents.waiter_agent import load_waiter_agent
from apps.waiter.backend.src.services.restaurant_directory import (
    HttpRestaurantDirectory,
    InMemoryRestaurantDirectory,
    RestaurantDirectory,
)
from apps.waiter.backend.src.services.staff_notifier import StaffNotifier
from apps.waiter.backend.src.sessions.session_bootstrap import SessionBootstrap
from src.aoai.realtime_client import RealtimeUpstreamClient, UpstreamEventHandlers
from src.pools.connection_registry import ConnectionRegistry
from src.pools.liveness_monitor import LivenessMonitor
from src.prompts.prompt_manager import PromptManager

SERVICE_NAME = "Restaurant AI Waiter - Realtime Voice Relay"


def build_upstream_factory(
    upstream_cfg: UpstreamConfig,
) -> Callable[[UpstreamEventHandlers, str], RealtimeUpstreamClient]:
    """Return a factory creating one upstream client per relay session."""

    def factory(handlers: UpstreamEventHandlers, session_id: str) -> RealtimeUpstreamClient:
        return RealtimeUpstreamClient(
            handlers,
            api_key=upstream_cfg.api_key,
            url=upstream_cfg.url,
            model=upstream_cfg.model,
            handshake_timeout=upstream_cfg.handshake_timeout,
            session_id=session_id,
        )

    return factory


def build_restaurant_directory(app_config: AppConfig) -> RestaurantDirectory:
    cfg = app_config.directory
    if cfg.backend == "http":
        logger.info(f"Restaurant directory: HTTP ({cfg.api_base_url})")
        return HttpRestaurantDirectory(cfg.api_base_url, timeout=cfg.timeout_seconds)
    if cfg.seed_file:
        return InMemoryRestaurantDirectory.from_yaml(cfg.seed_file)
    logger.warning("Restaurant directory: in-memory with no seed file; every lookup misses")
    return InMemoryRestaurantDirectory()


# --------------------------------------------------------------------------- #
#  Developer startup dashboard
# --------------------------------------------------------------------------- #
def _build_startup_dashboard(
    app_config: AppConfig,
    startup_results: List[Tuple[str, float]],
) -> str:
    """Construct a concise ASCII dashboard for developers."""

    header = "=" * 68
    upstream_line = (
        f"[ok] {app_config.upstream.model}"
        if app_config.upstream.api_key
        else "[warn] OPENAI_API_KEY missing; start_session will fail"
    )
    endpoints = [
        ("WS", "/ws/realtime", "customer voice relay"),
        ("WS", "/ws", "staff/customer dashboards"),
        ("GET", "/health", "liveness"),
        ("GET", "/api/v1/realtime/status", "relay status"),
        ("POST", "/api/v1/notifications/order-status", "order status push"),
    ]

    lines = [
        "",
        header,
        " Restaurant AI Waiter :: Realtime Relay",
        header,
        f" Environment : {ENVIRONMENT} | Debug: {'ON' if DEBUG_MODE else 'OFF'}",
        f" Upstream    : {upstream_line}",
        f" Directory   : {app_config.directory.backend}",
        f" Heartbeat   : {app_config.connections.heartbeat_interval}s",
        f" Docs        : {'ENABLED' if ENABLE_DOCS else 'DISABLED'}",
        "",
        " Startup Stage Durations (sec):",
    ]
    for stage_name, stage_duration in startup_results:
        lines.append(f"   {stage_name:<13}{stage_duration:.2f}")

    lines.append("")
    lines.append(" Key Endpoints:")
    for method, path, note in endpoints:
        lines.append(f"   {method:<6}{path:<38}{note}")
    lines.append(header)
    return "\n".join(lines)


# --------------------------------------------------------------------------- #
#  Lifecycle Management
# --------------------------------------------------------------------------- #
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown.

    Steps run in order inside their own spans and are shut down in reverse:
    ``core`` (registry + liveness monitor), ``directory`` (restaurant
    directory + session bootstrap), ``agents`` (agent config, prompt manager,
    upstream factory).

    :param app: The FastAPI application instance requiring lifecycle management.
    :raises RuntimeError: If a startup step fails.
    """
    tracer = trace.get_tracer(__name__)

    startup_steps: List[LifecycleStep] = []
    executed_steps: List[LifecycleStep] = []
    startup_results: List[Tuple[str, float]] = []

    def add_step(name: str, start: StepCallable, shutdown: Optional[StepCallable] = None) -> None:
        startup_steps.append((name, start, shutdown))

    async def run_steps(steps: List[LifecycleStep], phase: str) -> None:
        for name, start_fn, shutdown_fn in steps:
            with tracer.start_as_current_span(f"{phase}.{name}") as step_span:
                step_start = time.perf_counter()
                logger.info(f"{phase} stage started", extra={"stage": name})
                try:
                    await start_fn()
                except Exception as exc:
                    step_span.record_exception(exc)
                    step_span.set_status(Status(StatusCode.ERROR, str(exc)))
                    logger.error(f"{phase} stage failed", extra={"stage": name, "error": str(exc)})
                    raise RuntimeError(f"Startup stage '{name}' failed: {exc}") from exc
                step_duration = time.perf_counter() - step_start
                step_span.set_attribute("duration_sec", step_duration)
                rounded = round(step_duration, 2)
                logger.info(f"{phase} stage completed", extra={"stage": name, "duration_sec": rounded})
                executed_steps.append((name, start_fn, shutdown_fn))
                startup_results.append((name, rounded))

    async def run_shutdown(steps: List[LifecycleStep]) -> None:
        for name, _, shutdown_fn in reversed(steps):
            if shutdown_fn is None:
                continue
            with tracer.start_as_current_span(f"shutdown.{name}") as step_span:
                step_start = time.perf_counter()
                logger.info("shutdown stage started", extra={"stage": name})
                try:
                    await shutdown_fn()
                except Exception as exc:
                    step_span.record_exception(exc)
                    step_span.set_status(Status(StatusCode.ERROR, str(exc)))
                    logger.error("shutdown stage failed", extra={"stage": name, "error": str(exc)})
                    continue
                step_duration = time.perf_counter() - step_start
                step_span.set_attribute("duration_sec", step_duration)
                logger.info(
                    "shutdown stage completed",
                    extra={"stage": name, "duration_sec": round(step_duration, 2)},
                )

    app_config = AppConfig()
    app.state.config = app_config
    validation = app_config.validate()
    for warning in validation["warnings"]:
        logger.warning(f"Config: {warning}")
    if not validation["valid"]:
        raise RuntimeError(f"Invalid configuration: {validation['issues']}")

    async def start_core_state() -> None:
        app.state.registry = ConnectionRegistry(
            max_connections=app_config.connections.max_connections,
            enable_connection_limits=app_config.connections.enable_limits,
        )
        app.state.staff_notifier = StaffNotifier(app.state.registry)
        app.state.liveness_monitor = LivenessMonitor(
            app.state.registry,
            interval_seconds=app_config.connections.heartbeat_interval,
        )
        await app.state.liveness_monitor.start()

    async def stop_core_state() -> None:
        await app.state.liveness_monitor.stop()
        await app.state.registry.stop()
        logger.info("connection registry stopped")

    add_step("core", start_core_state, stop_core_state)

    async def start_directory() -> None:
        app.state.directory = build_restaurant_directory(app_config)
        app.state.session_bootstrap = SessionBootstrap(app.state.directory)

    async def stop_directory() -> None:
        await app.state.directory.aclose()

    add_step("directory", start_directory, stop_directory)

    async def start_agents() -> None:
        app.state.agent_config = load_waiter_agent(WAITER_AGENT_CONFIG or None)
        app.state.prompt_manager = PromptManager()
        app.state.upstream_factory = build_upstream_factory(app_config.upstream)

    add_step("agents", start_agents)

    with tracer.start_as_current_span("startup.lifespan") as startup_span:
        startup_span.set_attributes(
            {"service.version": "1.0.0", "startup.stage": "lifecycle"}
        )
        startup_begin = time.perf_counter()
        await run_steps(startup_steps, "startup")
        startup_duration = time.perf_counter() - startup_begin
        startup_span.set_attributes(
            {
                "startup.duration_sec": startup_duration,
                "startup.stage": "complete",
                "startup.success": True,
            }
        )
        logger.info("startup complete", extra={"duration_sec": round(startup_duration, 2)})

    logger.info(_build_startup_dashboard(app_config, startup_results))

    # ---- Run app ----
    yield

    with tracer.start_as_current_span("shutdown.lifespan") as shutdown_span:
        logger.info("shutdown…")
        shutdown_begin = time.perf_counter()
        await run_shutdown(executed_steps)
        shutdown_span.set_attribute("shutdown.duration_sec", time.perf_counter() - shutdown_begin)
        shutdown_span.set_attribute("shutdown.success", True)


# --------------------------------------------------------------------------- #
#  App factory
# --------------------------------------------------------------------------- #
def create_app() -> FastAPI:
    """Create the FastAPI app; docs are served only when ENABLE_DOCS is on."""
    app = FastAPI(
        title="Restaurant AI Waiter Realtime Relay",
        description="Relays customer voice sessions to the upstream realtime voice AI.",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if ENABLE_DOCS else None,
        redoc_url="/redoc" if ENABLE_DOCS else None,
        openapi_url="/openapi.json" if ENABLE_DOCS else None,
    )
    logger.info(
        f"API documentation {'enabled' if ENABLE_DOCS else 'disabled'} for environment: {ENVIRONMENT}"
    )
    return app


def setup_app_middleware_and_routes(app: FastAPI):
    """
    Configure CORS and register the v1 API, the root WebSocket routes and the
    root health/service-info endpoints.

    :param app: The FastAPI application instance to configure.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials="*" not in ALLOWED_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        max_age=86400,
    )

    app.include_router(v1_router)
    app.include_router(ws_router)

    @app.get("/health", tags=["System"])
    async def root_health():
        """Liveness probe used by the hosting platform."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/", tags=["System"])
    async def service_info():
        """Service name and entry points."""
        return {
            "service": SERVICE_NAME,
            "status": "running",
            "environment": ENVIRONMENT,
            "endpoints": {
                "websocket": "/ws/realtime",
                "dashboard": "/ws",
                "health": "/health",
                "status": "/api/v1/realtime/status",
            },
        }


def initialize_app():
    """Initialize app with middleware and routes."""
    app = create_app()
    setup_app_middleware_and_routes(app)
    return app


# Initialize the app
app = initialize_app()


# --------------------------------------------------------------------------- #
#  Main entry point
# --------------------------------------------------------------------------- #
def main():
    """Entry point for the waiter-relay console script."""
    port = int(os.environ.get("PORT", PORT))
    uvicorn.run(
        app,
        host="0.0.0.0",  # nosec: B104
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    main()
