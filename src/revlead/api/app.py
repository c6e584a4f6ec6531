"""FastAPI application exposing election health and metrics."""

from __future__ import annotations

from fastapi import FastAPI

from revlead.api import health, metrics
from revlead.config import settings
from revlead.election import LeaderElection


def create_app(election: LeaderElection) -> FastAPI:
    """Build the probe application for one election participant."""
    app = FastAPI(title=settings.app_name, docs_url=None, redoc_url=None)
    app.state.election = election
    app.include_router(health.router)
    app.include_router(metrics.router)
    return app
