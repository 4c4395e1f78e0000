"""
Integration tests against a real embedded R interpreter
Tests: dataset round trips, console and plot capture, error kinds, scope isolation

Skipped when R or rpy2 is not installed.
"""

import pytest

from rbridge.bridge import RBridge
from rbridge.config import BridgeSettings
from rbridge.errors import DatasetNotFoundError, ErrorKind, InitializationError
from rbridge.factory import is_r_available
from rbridge.session import RSession

pytestmark = [
    pytest.mark.r,
    pytest.mark.skipif(not is_r_available(), reason="R and rpy2 are required"),
]


@pytest.fixture(scope="module")
def r_bridge():
    # No repositories: installs fail fast instead of reaching the network.
    settings = BridgeSettings(baseline_packages=(), primary_repo="", fallback_repo="")
    session = RSession(settings)
    try:
        session.ensure_initialized()
    except InitializationError as e:
        pytest.skip(f"R could not be started: {e}")
    return RBridge(session, settings)


class TestDatasets:

    def test_catalog_lists_iris(self, r_bridge):
        entries = r_bridge.list_datasets()
        assert entries[0]["value"] in ("attitude", "iris")
        assert {"value": "iris", "label": "Iris Flower Data"} in entries

    def test_fetch_iris(self, r_bridge):
        result = r_bridge.fetch_dataset("iris")
        assert len(result["rows"]) == 150
        assert result["rows"][0]["Species"] == "setosa"
        assert result["rows"][0]["Sepal_Length"] == 5.1
        assert "150 obs." in result["summary"]

    def test_fetch_unknown(self, r_bridge):
        with pytest.raises(DatasetNotFoundError):
            r_bridge.fetch_dataset("definitely_not_a_dataset")

    def test_inline_round_trip(self, r_bridge):
        uploaded = {"data": [{"x": 1, "label": "a"}, {"x": 2, "label": None}], "name": "inline"}
        payload = r_bridge.execute_r_code('cat(nrow(df), sum(df$x), is.na(df$label[2]), "\\n")',
                                          uploaded_data=uploaded)
        assert payload["success"]
        assert payload["output"].strip() == "2 3 TRUE"


class TestExecution:

    def test_console_output_without_plot(self, r_bridge):
        payload = r_bridge.execute_r_code("print(nrow(df))", dataset_name="mtcars")
        assert payload == {"success": True, "output": "[1] 32\n"}

    def test_visible_values_are_printed(self, r_bridge):
        assert r_bridge.execute_r_code("1 + 1")["output"] == "[1] 2\n"

    def test_plot_captured(self, r_bridge):
        result = r_bridge.run("plot(df$id, df$x)")
        assert result.success
        assert result.plot.startswith(b"\x89PNG")

    def test_missing_package(self, r_bridge):
        result = r_bridge.run("library(notapkg)")
        assert not result.success
        assert result.error.kind is ErrorKind.PACKAGE_MISSING
        assert result.error.package == "notapkg"

    def test_reference_error(self, r_bridge):
        result = r_bridge.run("print(undefined_thing)")
        assert result.error.kind is ErrorKind.REFERENCE
        assert result.error.message.startswith("Error: ")
        assert "Error: Error:" not in result.error.message

    def test_output_before_failure_kept(self, r_bridge):
        result = r_bridge.run('cat("before\\n"); stop("boom")')
        assert result.output_text == "before\n"
        assert result.error.message == "Error: boom"

    @pytest.mark.parametrize("code", [
        "leaked_value <- 42",
        "leaked_value <<- 42",
        'assign("leaked_value", 42, envir = .GlobalEnv)',
    ])
    def test_scopes_are_isolated(self, r_bridge, code):
        r_bridge.run(code)
        assert r_bridge.execute_r_code('print(exists("leaked_value"))')["output"] == "[1] FALSE\n"

    def test_existing_globals_survive_scope_release(self, r_bridge):
        with r_bridge.session.evaluate("kept_global <- 1"):
            pass
        r_bridge.run("kept_global <<- 2")
        assert r_bridge.execute_r_code("print(kept_global)")["output"] == "[1] 2\n"

    def test_handles_released(self, r_bridge):
        before = r_bridge.session.live_handles
        r_bridge.execute_r_code("summary(df)", dataset_name="iris")
        r_bridge.execute_r_code('stop("x")')
        assert r_bridge.session.live_handles == before
