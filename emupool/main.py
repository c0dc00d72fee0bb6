"""emu-pool HTTP server: exposes emulator acquisition to test workers."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI

from emupool.api.emulators import router as emulators_router
from emupool.config import ServerConfig
from emupool.device.driver import EmulatorDriver
from emupool.device.registry import stale_claim_watchdog

logger = logging.getLogger("emu-pool")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    driver = EmulatorDriver()
    app.state.emulator_driver = driver

    tools = {
        "adb": await driver.adb.is_available(),
    }
    logger.info("Device tools: %s", tools)
    if not tools["adb"]:
        logger.warning(
            "adb not available, acquisition will fail. "
            "Install the Android SDK platform-tools and set ANDROID_SDK_ROOT."
        )

    # Cleanup stale claims from crashed workers
    released = await driver.registry.cleanup_stale_claims()
    if released:
        logger.info("Cleaned up %d stale device claims on startup", len(released))

    # Keep freeing slots of workers that exit without releasing
    watchdog_task = asyncio.create_task(stale_claim_watchdog(driver.registry))

    config: ServerConfig = app.state.config
    logger.info("Server started on http://%s:%d", config.host, config.port)

    yield

    if not watchdog_task.done():
        watchdog_task.cancel()
        try:
            await watchdog_task
        except asyncio.CancelledError:
            pass

    await driver.emitter.drain()
    logger.info("Server stopped")


def create_app(config: ServerConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if config is None:
        config = ServerConfig()

    app = FastAPI(
        title="emu-pool",
        version=VERSION,
        description="Exclusive Android emulator allocation for parallel test workers",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.emulator_driver = None

    app.include_router(emulators_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check with held-device count."""
        driver = app.state.emulator_driver
        return {
            "status": "ok",
            "version": VERSION,
            "busy_devices": len(driver.registry.busy_devices()) if driver else 0,
        }

    return app


def run(config: ServerConfig | None = None, verbose: bool = False) -> None:
    """Configure logging and serve the app in the foreground."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    config = config or ServerConfig()
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level="info")


if __name__ == "__main__":
    run()
