"""
FastAPI application entrypoint for the federated chat gateway.
"""

from __future__ import annotations

from fastapi import FastAPI

from federated_chat.api.routes import router as api_router
from federated_chat.core.config import get_settings
from federated_chat.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Federated Chat Gateway",
        version="0.1.0",
        description="Identity-aware chat gateway with streamed answers.",
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
