"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

from chartpair import __version__

router = APIRouter(prefix="/api")


@router.get("/health")
def health(request: Request) -> dict[str, str]:
    """Return server status, version and asset mode."""
    session = getattr(request.app.state, "session", None)
    mode = getattr(request.app.state, "deployment_mode", "")
    return {
        "status": "ok" if session is not None else "starting",
        "version": __version__,
        "mode": mode,
    }
