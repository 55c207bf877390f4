from __future__ import annotations

from fastapi import FastAPI

from core.pdfa_converter.broadcast import SessionRegistry
from core.pdfa_converter.config import AppConfig, load_config
from core.pdfa_converter.core import ConversionService
from core.pdfa_converter.engine import DocumentEngine
from core.pdfa_converter.jobs import JobManager
from core.pdfa_converter.logging import configure_logging
from core.settings import Settings, get_settings

from .routers import conversions, health
from .routers.health import API_VERSION


def create_app(config: AppConfig | None = None, engine: DocumentEngine | None = None) -> FastAPI:
    settings = get_settings()
    config = config or _prepare_config(settings)
    if not config.runtime.enable_local_api:
        raise RuntimeError("Local API is disabled. Enable it via configuration or environment.")
    configure_logging(settings.log_level)

    app = FastAPI(title="PDF/A Converter", version=API_VERSION)
    app.state.config = config
    registry = SessionRegistry(grace_seconds=config.runtime.retention.session_grace_s)
    service = ConversionService(config, engine)
    app.state.registry = registry
    app.state.service = service
    app.state.job_manager = JobManager(config, service, registry)

    app.include_router(health.router)
    app.include_router(conversions.router)

    @app.on_event("startup")
    async def _startup() -> None:  # pragma: no cover - FastAPI lifecycle
        for directory in (config.runtime.output_dir, config.runtime.upload_dir):
            directory.mkdir(parents=True, exist_ok=True)
        manager: JobManager = app.state.job_manager
        manager.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - FastAPI lifecycle
        manager: JobManager = app.state.job_manager
        await manager.shutdown()

    return app


def _prepare_config(settings: Settings) -> AppConfig:
    config = load_config(settings.config_path)
    if settings.enable_local_api is not None:
        config.runtime.enable_local_api = settings.enable_local_api
    return config


__all__ = ["create_app"]
