# path: streetview-route-api/app/main.py

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from app.api.routes.routes import router as routes_router
from app.config import Settings, get_settings
from app.services.route_pipeline import RouteSessionRegistry
from app.services.streetview_client import StreetViewClient
from app.utils.logging_utils import configure_logging


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http = httpx.AsyncClient(timeout=settings.http_timeout_s, transport=transport)
        client = StreetViewClient(
            http,
            base_url=settings.streetview_base_url,
            metadata_url=settings.streetview_metadata_url,
        )
        app.state.settings = settings
        app.state.streetview_client = client
        app.state.registry = RouteSessionRegistry(client, prefetch_delay=settings.prefetch_delay_s)
        try:
            yield
        finally:
            await client.aclose()

    app = FastAPI(title="streetview-route-api", lifespan=lifespan)
    app.include_router(routes_router)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
