"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from onebox.cli.worker import configure_logging
from onebox.infrastructure import get_settings
from onebox.infrastructure.factory import Services, build_services


def create_app(services: Optional[Services] = None, start_engine: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    When no services are given they are built from settings at startup.
    """
    settings = services.settings if services is not None else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"Environment: {settings.environment}")

        app.state.services = services or build_services(settings)
        if start_engine:
            await app.state.services.engine.start()

        yield

        logger.info("Shutting down...")
        await app.state.services.aclose()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Real-time IMAP synchronization, classification and lead notification",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from onebox.api.routes import router

    app.include_router(router)

    return app


def main() -> None:
    """Serve the API together with the sync engine."""
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
