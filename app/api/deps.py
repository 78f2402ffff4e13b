# path: streetview-route-api/app/api/deps.py

from __future__ import annotations

from fastapi import Request

from app.config import Settings
from app.services.route_pipeline import RouteSessionRegistry
from app.services.streetview_client import StreetViewClient


# Handles are built once in the app lifespan and live on app.state.


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_streetview_client(request: Request) -> StreetViewClient:
    return request.app.state.streetview_client


def get_registry(request: Request) -> RouteSessionRegistry:
    return request.app.state.registry
