"""
Integration service — application entry point.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.cron import router as cron_router
from api.middleware import register_exception_handlers, register_middleware
from api.routes import router as sync_router
from config.settings import config
from connectors.routes import router as connector_router
from core.services import IntegrationServices, build_services

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "sqlalchemy.engine", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(services: Optional[IntegrationServices] = None) -> FastAPI:
    app = FastAPI(
        title="Integration Sync Service",
        version="1.0.0",
        description="OAuth credential lifecycle and scheduled activity sync.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)
    register_exception_handlers(app)

    # Routes
    app.include_router(connector_router, prefix="/api/v1/integrations")
    app.include_router(sync_router, prefix="/api/v1/integrations")
    app.include_router(cron_router, prefix="/api/v1/cron")

    if services is not None:
        app.state.services = services

    @app.on_event("startup")
    async def on_startup():
        if getattr(app.state, "services", None) is None:
            from database.session import async_session_factory

            logger.info("Building integration services…")
            # A malformed master key or provider config aborts startup here
            app.state.services = build_services(async_session_factory, config)
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        services_ = getattr(app.state, "services", None)
        if services_ is not None:
            await services_.tasks.shutdown()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
