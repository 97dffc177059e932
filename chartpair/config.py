"""Application settings loaded from environment variables or .env."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Deployment mode aliases accepted on the CLI and in the environment
_MODE_ALIASES: dict[str, str] = {
    "dev": "probe",
    "local": "probe",
    "probing": "probe",
    "pages": "static",
    "cdn": "static",
    "manifest": "static",
}

_VALID_MODES = ("auto", "probe", "static")


def _nearest_env_file(start: Path | None = None) -> Path | None:
    """The closest .env at or above *start* (default: CWD).

    The walk stops at the first directory holding a ``.chartpair/`` state
    folder, so one survey deployment never picks up another's settings.
    """
    here = (start or Path.cwd()).resolve()
    for directory in (here, *here.parents):
        env_path = directory / ".env"
        if env_path.is_file():
            return env_path
        if (directory / ".chartpair").is_dir():
            return None
    return None


class ChartpairSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHARTPAIR_",
        env_file=_nearest_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Assets
    asset_base_url: str = "http://localhost:8000/pairs"
    deployment_mode: str = "auto"  # "auto", "probe", or "static"
    manifest_path: Path | None = None  # JSON manifest for static mode
    asset_dir: Path | None = None  # local asset tree served by `chartpair serve`
    cache_bust: bool = False

    # Probing
    probe_timeout: float = Field(default=1.0, ge=1.0, le=5.0)
    probe_concurrency: int = Field(default=8, ge=1)
    max_pairs: int = Field(default=20, ge=1)

    # Submission
    submit_url: str = ""
    submit_timeout: float = 10.0

    # Local state
    state_dir: Path = Path(".")


def normalise_mode(mode: str) -> str:
    """Map a deployment mode alias onto one of ``auto``, ``probe``, ``static``."""
    value = mode.strip().lower()
    value = _MODE_ALIASES.get(value, value)
    if value not in _VALID_MODES:
        raise ValueError(
            f"Unknown deployment mode {mode!r}. "
            f"Use one of: {', '.join(_VALID_MODES)}"
        )
    return value


def load_settings(**overrides: object) -> ChartpairSettings:
    """Load settings with optional CLI overrides.

    ``None`` overrides are dropped so unset CLI options fall through to the
    environment.  Deployment mode aliases (dev, pages, cdn ...) are
    normalised.
    """
    overrides = {k: v for k, v in overrides.items() if v is not None}

    if "deployment_mode" in overrides and isinstance(overrides["deployment_mode"], str):
        overrides["deployment_mode"] = normalise_mode(overrides["deployment_mode"])

    settings = ChartpairSettings(**overrides)  # type: ignore[arg-type]

    mode = normalise_mode(settings.deployment_mode)
    if mode != settings.deployment_mode:
        settings = settings.model_copy(update={"deployment_mode": mode})
    return settings
