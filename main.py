"""
RelationHub Gmail connector service — application entry point.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from config.settings import config
from connectors.registry import get_token_manager
from connectors.routes import router as connectors_router
from connectors.state_store import StateRegistry

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


async def sweep_states_periodically(registry: StateRegistry, interval: float) -> None:
    """Bound the state registry's memory by dropping expired nonces."""
    while True:
        await asyncio.sleep(interval)
        try:
            registry.sweep()
        except Exception:
            logger.exception("OAuth state sweep failed")


def create_app() -> FastAPI:
    app = FastAPI(
        title="RelationHub Gmail Connector",
        version="1.0.0",
        description="Links user accounts to Gmail via OAuth2.",
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

    # Routes
    app.include_router(connectors_router, prefix="/api/v1/connectors")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.on_event("startup")
    async def on_startup():
        from database.session import init_db

        logger.info("Initialising database schema…")
        await init_db()

        manager = get_token_manager()
        app.state.state_sweeper = asyncio.create_task(
            sweep_states_periodically(
                manager.state_registry,
                config.oauth_state_sweep_interval_seconds,
            )
        )
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        sweeper = getattr(app.state, "state_sweeper", None)
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

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
