"""
Unit tests for rbridge/config.py
Tests: defaults, environment overrides, invalid values, list parsing
"""

import pytest

from rbridge.config import (
    DEFAULT_BASELINE_PACKAGES,
    DEFAULT_CATALOG_PACKAGES,
    DEFAULT_PRIMARY_REPO,
    BridgeSettings,
    load_settings,
)

_VARS = (
    "RBRIDGE_PRIMARY_REPO", "RBRIDGE_FALLBACK_REPO", "RBRIDGE_BASELINE_PACKAGES",
    "RBRIDGE_CATALOG_PACKAGES", "RBRIDGE_LIBRARY_DIR", "RBRIDGE_PLOT_WIDTH",
    "RBRIDGE_PLOT_HEIGHT", "RBRIDGE_PLOT_RES", "RBRIDGE_SLOW_EVAL_SECONDS",
    "RBRIDGE_RETRY_ON_ERROR", "RBRIDGE_MAX_REGENERATIONS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadSettings:

    def test_defaults(self):
        assert load_settings() == BridgeSettings()

    def test_default_values(self):
        settings = load_settings()
        assert settings.primary_repo == DEFAULT_PRIMARY_REPO
        assert settings.baseline_packages == DEFAULT_BASELINE_PACKAGES
        assert settings.library_dir is None
        assert (settings.plot_width, settings.plot_height, settings.plot_resolution) == (800, 600, 96)

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("RBRIDGE_PRIMARY_REPO", "https://mirror.example/cran")
        monkeypatch.setenv("RBRIDGE_PLOT_WIDTH", "1024")
        monkeypatch.setenv("RBRIDGE_LIBRARY_DIR", "/tmp/rlib")
        monkeypatch.setenv("RBRIDGE_MAX_REGENERATIONS", "3")
        settings = load_settings()
        assert settings.primary_repo == "https://mirror.example/cran"
        assert settings.plot_width == 1024
        assert settings.library_dir == "/tmp/rlib"
        assert settings.max_regenerations == 3

    def test_package_lists(self, monkeypatch):
        monkeypatch.setenv("RBRIDGE_BASELINE_PACKAGES", " ggplot2, ,knitr ")
        monkeypatch.setenv("RBRIDGE_CATALOG_PACKAGES", "datasets,ggplot2")
        settings = load_settings()
        assert settings.baseline_packages == ("ggplot2", "knitr")
        assert settings.catalog_packages == ("datasets", "ggplot2")

    def test_empty_baseline_allowed(self, monkeypatch):
        monkeypatch.setenv("RBRIDGE_BASELINE_PACKAGES", "")
        assert load_settings().baseline_packages == ()

    def test_empty_catalog_uses_default(self, monkeypatch):
        monkeypatch.setenv("RBRIDGE_CATALOG_PACKAGES", " , ")
        assert load_settings().catalog_packages == DEFAULT_CATALOG_PACKAGES

    def test_invalid_number_keeps_default(self, monkeypatch):
        monkeypatch.setenv("RBRIDGE_PLOT_HEIGHT", "tall")
        monkeypatch.setenv("RBRIDGE_SLOW_EVAL_SECONDS", "soon")
        settings = load_settings()
        assert settings.plot_height == 600
        assert settings.slow_evaluation_seconds == 30.0

    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("1", True), ("YES", True), ("on", True),
        ("false", False), ("0", False), ("no", False),
    ])
    def test_retry_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("RBRIDGE_RETRY_ON_ERROR", raw)
        assert load_settings().retry_on_error is expected
