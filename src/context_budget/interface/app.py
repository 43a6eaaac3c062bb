"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from context_budget.interface.dependencies import shutdown, startup
from context_budget.interface.error_handlers import register_error_handlers
from context_budget.interface.routes import router


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup / shutdown of shared resources."""
    await startup()
    yield
    await shutdown()


def create_app() -> FastAPI:
    """Build and wire the FastAPI application."""
    app = FastAPI(
        title="Context Budget Engine",
        version="1.0.0",
        description=(
            "Decides which reference documents (whole, fragmented or "
            "compressed) fit a model's input-token budget for a generation "
            "request, with an auditable record of every decision."
        ),
        lifespan=_lifespan,
    )

    register_error_handlers(app)
    app.include_router(router)

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
