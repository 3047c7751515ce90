"""soilhub: HTTP server.

Exposes:
  GET  /health     liveness and telemetry state
  /admin/...       device registry, commands, provisioning (see admin_api)

The fleet manager (UDP telemetry) is started with the app and stopped on
shutdown. Start with::

    python -m soilhub.server [--config hub.json] [--debug]
    # or
    uvicorn soilhub.server:app --host 0.0.0.0 --port 5100
"""

from __future__ import annotations

import argparse
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from soilhub import __version__
from soilhub.admin_api import router as admin_router
from soilhub.admin_api import set_manager
from soilhub.config import HubConfig
from soilhub.fleet.manager import FleetManager

logger = logging.getLogger(__name__)


def _load_config() -> HubConfig:
    path = os.environ.get("SOILHUB_CONFIG")
    base = HubConfig.load(path) if path else None
    return HubConfig.from_env(base=base)


def create_app(manager: FleetManager | None = None) -> FastAPI:
    """Build the app; a fresh FleetManager is created at startup if none given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        fleet = manager or FleetManager(_load_config())
        if not fleet.start():
            logger.error("Telemetry server not running; admin API is read-only")
        app.state.fleet = fleet
        set_manager(fleet)
        try:
            yield
        finally:
            set_manager(None)
            fleet.stop()

    app = FastAPI(title="soilhub", version=__version__, lifespan=lifespan)
    app.include_router(admin_router)

    @app.get("/health")
    async def health():
        fleet: FleetManager = app.state.fleet
        return {
            "status": "ok",
            "telemetry": fleet.telemetry.running,
            "devices": len(fleet.registry),
        }

    return app


app = create_app()


# ──────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────

def main() -> None:
    import uvicorn

    parser = argparse.ArgumentParser(description="soilhub sensor fleet server")
    parser.add_argument("--config", "-c", default=None, help="Path to hub config JSON")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if args.config:
        os.environ["SOILHUB_CONFIG"] = args.config

    config = _load_config()
    logger.info("Starting soilhub on %s:%d", config.http_host, config.http_port)
    uvicorn.run("soilhub.server:app", host=config.http_host, port=config.http_port, reload=False)


if __name__ == "__main__":
    main()
