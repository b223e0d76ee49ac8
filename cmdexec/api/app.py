from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cmdexec.api.errors import install_error_handlers
from cmdexec.config.load_config import AppConfig, load_app_config
from cmdexec.runtime.service import ExecutionService
from cmdexec.utils.logging import configure_logging, get_logger

from .routers.executions import router as executions_router
from .routers.health import router as health_router


logger = get_logger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return default


def create_app(config: AppConfig | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN202
        # Config is loaded once; a ConfigError here aborts startup before serving.
        cfg = config or load_app_config()
        if _env_bool("CMDEXEC_CONFIGURE_LOGGING", True):
            configure_logging(cfg.logging.level, cfg.logging.format)

        service = ExecutionService(cfg)
        if _env_bool("CMDEXEC_ENABLE_SWEEPER", True):
            service.start()
        app.state.execution_service = service
        logger.info(
            "service_started",
            programs=list(cfg.programs.allowed),
            timeout_s=cfg.execution.timeout_s,
            cache_time_s=cfg.cache.cache_time_s,
        )
        try:
            yield
        finally:
            service.stop(kill_running=True)
            app.state.execution_service = None
            logger.info("service_stopped")

    app = FastAPI(title="cmdexec API", version="0.1.0", lifespan=lifespan)

    install_error_handlers(app)

    app.include_router(health_router, prefix="/api/v1", tags=["system"])
    app.include_router(executions_router, prefix="/api/v1", tags=["executions"])

    return app


app = create_app()
