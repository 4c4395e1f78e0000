"""
Environment-driven configuration for the R bridge.

Settings are read once into an immutable BridgeSettings. Every value read is
logged together with where it came from, so the startup log shows the
effective configuration.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_PRIMARY_REPO = "https://packagemanager.posit.co/cran/latest"
DEFAULT_FALLBACK_REPO = "https://cloud.r-project.org"
# Plotting, relational data, binary encoding, markdown tables.
DEFAULT_BASELINE_PACKAGES = ("ggplot2", "dplyr", "base64enc", "knitr")
DEFAULT_CATALOG_PACKAGES = ("datasets",)


@dataclass(frozen=True)
class BridgeSettings:
    primary_repo: str = DEFAULT_PRIMARY_REPO
    fallback_repo: str = DEFAULT_FALLBACK_REPO
    baseline_packages: Tuple[str, ...] = DEFAULT_BASELINE_PACKAGES
    catalog_packages: Tuple[str, ...] = DEFAULT_CATALOG_PACKAGES
    library_dir: Optional[str] = None
    plot_width: int = 800
    plot_height: int = 600
    plot_resolution: int = 96
    slow_evaluation_seconds: float = 30.0
    retry_on_error: bool = True
    max_regenerations: int = 1


def _read(name: str, default, parse=str):
    raw = os.environ.get(name)
    if raw is None:
        logger.info(f"[CONFIG]   {name} not set (default: {default!r})")
        return default
    try:
        value = parse(raw)
    except ValueError:
        logger.warning(f"[CONFIG]   {name}={raw} (invalid, using default: {default!r})")
        return default
    logger.info(f"[CONFIG]   {name}={raw} -> {value!r}")
    return value


def _parse_list(raw: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> BridgeSettings:
    """Build BridgeSettings from RBRIDGE_* environment variables."""
    logger.info("[CONFIG] Reading R bridge configuration:")
    settings = BridgeSettings(
        primary_repo=_read("RBRIDGE_PRIMARY_REPO", DEFAULT_PRIMARY_REPO),
        fallback_repo=_read("RBRIDGE_FALLBACK_REPO", DEFAULT_FALLBACK_REPO),
        baseline_packages=_read("RBRIDGE_BASELINE_PACKAGES", DEFAULT_BASELINE_PACKAGES, _parse_list),
        catalog_packages=_read("RBRIDGE_CATALOG_PACKAGES", DEFAULT_CATALOG_PACKAGES, _parse_list) or DEFAULT_CATALOG_PACKAGES,
        library_dir=_read("RBRIDGE_LIBRARY_DIR", None) or None,
        plot_width=_read("RBRIDGE_PLOT_WIDTH", 800, int),
        plot_height=_read("RBRIDGE_PLOT_HEIGHT", 600, int),
        plot_resolution=_read("RBRIDGE_PLOT_RES", 96, int),
        slow_evaluation_seconds=_read("RBRIDGE_SLOW_EVAL_SECONDS", 30.0, float),
        retry_on_error=_read("RBRIDGE_RETRY_ON_ERROR", True, _parse_bool),
        max_regenerations=_read("RBRIDGE_MAX_REGENERATIONS", 1, int),
    )
    return settings
