"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from chartpair.config import ChartpairSettings, load_settings
from chartpair.models import PairFilter
from chartpair.server.routes.health import router as health_router
from chartpair.server.routes.pairs import router as pairs_router
from chartpair.session import SurveySession, start_session

logger = logging.getLogger(__name__)


def create_app(
    settings: ChartpairSettings | None = None,
    *,
    session: SurveySession | None = None,
    pair_filter: PairFilter | None = None,
    verbose: bool = False,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Loaded settings.  Read from the environment when omitted.
        session: A ready session (tests, embedding).  When omitted, pairs are
            resolved and saved state restored during application startup.
        pair_filter: Narrows the startup scan.
        verbose: When True, terminal handler shows DEBUG-level messages.
    """
    settings = settings or load_settings()

    if session is None:
        from chartpair.logging import setup_logging

        setup_logging(
            state_dir=settings.state_dir, verbose=verbose, mode=settings.deployment_mode
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.session is None:
            app.state.session = await start_session(settings, pair_filter)
        try:
            yield
        finally:
            await app.state.session.gateway.aclose()

    app = FastAPI(title="chartpair", docs_url="/api/docs", redoc_url=None, lifespan=lifespan)

    app.state.settings = settings
    app.state.session = session
    app.state.deployment_mode = settings.deployment_mode

    app.include_router(health_router)
    app.include_router(pairs_router)

    # Serve chart images so the front-end can load them from the same origin
    if settings.asset_dir is not None:
        if settings.asset_dir.is_dir():
            app.mount("/pairs", StaticFiles(directory=settings.asset_dir), name="pairs")
        else:
            logger.warning("asset mount skipped: %s does not exist", settings.asset_dir)

    return app
