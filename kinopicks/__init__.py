"""Launcher package exposing the KinoPicks FastAPI app."""

from __future__ import annotations

from app.main import ServiceContainer, app, build_services, create_app

__all__ = ["ServiceContainer", "app", "build_services", "create_app"]
