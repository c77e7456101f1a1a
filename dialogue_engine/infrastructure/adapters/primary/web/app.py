"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from dialogue_engine.configuration.config import get_settings
from dialogue_engine.configuration.di_container import DIContainer
from dialogue_engine.configuration.logging_config import configure_logging
from dialogue_engine.infrastructure.adapters.primary.web.routers import conversations
from dialogue_engine.infrastructure.adapters.secondary.persistence import initialize_database

logger = logging.getLogger(__name__)


def create_app(container: Optional[DIContainer] = None) -> FastAPI:
    container = container or DIContainer(settings=get_settings())
    settings = container.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        logger.info(f"Starting {settings.app_name}...")
        await initialize_database(container.engine())
        yield
        logger.info(f"Shutting down {settings.app_name}...")
        await container.shutdown()

    app = FastAPI(title="Dialogue Engine API", version="0.1.0", lifespan=lifespan)
    app.state.container = container
    app.include_router(conversations.router)

    @app.get("/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "active_streams": len(container.stream_session_registry().active_sessions()),
            "providers": container.circuit_breakers().get_all_statuses(),
        }

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
