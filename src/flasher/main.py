"""FastAPI application for the fastboot flasher."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
import uvicorn

from flasher.api.routes import router
from flasher.config import get_settings
from flasher.services.fastboot import FastbootCliDevice
from flasher.services.image_worker import ImageWorker
from flasher.services.orchestrator import FlashOrchestrator
from flasher.utils.logging import setup_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Initialize logger
    - Create required directories (cache, logs)
    - Create the orchestrator and start initialization in the background

    Shutdown:
    - Stop the image worker
    """
    settings = get_settings()
    logger = setup_logger(
        "flasher", settings.log_file, level=getattr(logging, settings.log_level, logging.INFO)
    )
    logger.info("Flasher starting up...")

    for directory in [settings.cache_dir, Path(settings.log_file).parent]:
        Path(directory).mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {directory}")

    device = FastbootCliDevice(
        fastboot_path=settings.fastboot_path,
        command_timeout=settings.command_timeout,
        flash_timeout=settings.flash_timeout,
        poll_interval=settings.connect_poll_interval,
        connect_timeout=settings.connect_timeout,
    )
    image_worker = ImageWorker(
        settings.cache_dir,
        http_timeout=settings.http_timeout,
        chunk_size=settings.chunk_size,
    )
    orchestrator = FlashOrchestrator(device, image_worker, settings=settings)
    app.state.orchestrator = orchestrator

    # Initialize eagerly so the manifest is ready when the user continues
    init_task = asyncio.create_task(orchestrator.initialize())

    logger.info(f"Flasher ready on port {settings.port}")

    yield

    logger.info("Flasher shutting down...")
    if not init_task.done():
        init_task.cancel()
    await orchestrator.close()


app = FastAPI(
    title="Fastboot Flasher",
    description="Flash system images onto a device in fastboot mode",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "flasher", "version": "1.0.0"}


def main():
    """Main entry point for running the server."""
    settings = get_settings()
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
