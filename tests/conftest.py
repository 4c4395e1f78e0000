"""
Shared pytest fixtures.

Most tests run against FakeSession, an in-memory stand-in for RSession that
implements the same interface (handles, scopes, console and graphics capture,
bridge helper calls) without starting R. Tests that need the real
interpreter live in test_r_integration.py and skip when R is unavailable.
"""

import contextlib
import re
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from rbridge.bridge import RBridge
from rbridge.config import BridgeSettings
from rbridge.engine import ExecutionEngine
from rbridge.errors import RConditionError
from rbridge.session import CaptureSurface, ConsoleCapture, RHandle

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

PRIMARY = "https://primary.example/cran"
FALLBACK = "https://fallback.example/cran"

BASE_PACKAGES = {"base", "stats", "utils", "graphics", "grDevices", "datasets", "methods"}


class _Null:
    def __repr__(self):
        return "NULL"


NULL = _Null()


@dataclass
class FakeVector:
    kind: str
    values: list


@dataclass
class FakeTable:
    columns: Dict[str, list]
    rownames: Optional[List[str]] = None

    @property
    def nrow(self) -> int:
        return len(next(iter(self.columns.values()), []))

    @property
    def ncol(self) -> int:
        return len(self.columns)


def _datasets() -> Dict[str, FakeTable]:
    return {
        "iris": FakeTable({
            "Sepal.Length": [5.1, 4.9, 4.7],
            "Species": ["setosa", "setosa", "setosa"],
        }),
        "mtcars": FakeTable({"mpg": [21.0, 22.8], "cyl": [6, 4]}, rownames=["Mazda RX4", "Datsun 710"]),
        "airquality": FakeTable({"Ozone": [41, None], "Month": [5, 5]}),
        "empty": FakeTable({"x": []}),
    }


CATALOG_TITLES = {
    "iris": "Edgar Anderson's Iris Data",
    "mtcars": "Motor Trend Car Road Tests",
    "airquality": "New York Air Quality Measurements",
    "empty": "A table without rows",
}

SYNTHETIC = {"id": list(range(1, 11)), "group": ["A", "B"] * 5}

_PACKAGE_USE = re.compile(
    r"(?:library|require|requireNamespace)\s*\(\s*[\"']?([A-Za-z][A-Za-z0-9.]*)|([A-Za-z][A-Za-z0-9.]*)::"
)
_STOP = re.compile(r"stop\(\"([^\"]*)\"\)")
_DRAW = re.compile(r"\b(?:plot|hist|barplot)\(")


class FakeSession:
    """In-memory RSession double.

    Evaluation understands a tiny R subset: loading an uninstalled package
    fails with packageNotFoundError, ``stop("msg")`` fails after printing,
    ``undefined_thing`` fails as an unknown object, and plot/hist/barplot
    draw one page. A custom ``handler(session, source, env)`` replaces this.
    """

    def __init__(self, settings: Optional[BridgeSettings] = None, installed=(),
                 installable: Optional[Dict[str, str]] = None, init_error: Optional[Exception] = None):
        self.settings = settings or BridgeSettings(
            primary_repo=PRIMARY, fallback_repo=FALLBACK, baseline_packages=()
        )
        self.installed = set(BASE_PACKAGES) | set(installed)
        # package -> "primary" | "fallback" | "any": where an install succeeds
        self.installable = dict(installable or {})
        self.install_calls: List[tuple] = []
        self.evaluations: List[tuple] = []
        self.graphics_sizes: List[tuple] = []
        self.datasets = _datasets()
        self.handler = None
        self.init_error = init_error
        self.initialized = False
        self.live_handles = 0
        self._lock = threading.RLock()
        self._console: Optional[ConsoleCapture] = None
        self._surface: Optional[CaptureSurface] = None

    # ── lifecycle ──────────────────────────────────────────────────────────

    def exclusive(self):
        return self._lock

    def ensure_initialized(self):
        if self.init_error is not None:
            raise self.init_error
        self.initialized = True

    def shutdown(self):
        self.initialized = False

    # ── handles ────────────────────────────────────────────────────────────

    def _track(self, value, label="value", on_release=None):
        self.live_handles += 1
        return RHandle(self, value, label, on_release)

    def destroy(self, handle):
        handle._release()
        self.live_handles -= 1

    def is_null(self, handle):
        return handle.value is NULL

    def new_scope(self):
        self.ensure_initialized()
        return self._track({}, "scope", on_release=dict.clear)

    def bind(self, scope, name, value):
        scope.value[name] = value.value if isinstance(value, RHandle) else value

    def vector(self, kind, values):
        return self._track(FakeVector(kind, list(values)), f"{kind} vector")

    def named_list(self, items):
        return self._track({k: (v.value if isinstance(v, RHandle) else v) for k, v in items.items()}, "list")

    def to_python(self, handle):
        value = handle.value
        if value is NULL:
            return None
        if isinstance(value, FakeVector):
            return list(value.values)
        if isinstance(value, FakeTable):
            return {k: list(v) for k, v in value.columns.items()}
        return value

    # ── helper calls ─────────────────────────────────────────────────────────

    def call(self, function, *args, **kwargs):
        self.ensure_initialized()
        args = [a.value if isinstance(a, RHandle) else a for a in args]
        return self._track(getattr(self, f"_r_{function}")(*args), function)

    def invoke(self, function, *args, **kwargs):
        with self.call(function, *args, **kwargs) as handle:
            return self.to_python(handle)

    def _r_is_installed(self, name):
        return [name in self.installed]

    def _r_install_package(self, name, repo):
        self.install_calls.append((name, repo))
        where = self.installable.get(name)
        ok = (
            where == "any"
            or (where == "primary" and repo == self.settings.primary_repo)
            or (where == "fallback" and repo == self.settings.fallback_repo)
        )
        if ok:
            self.installed.add(name)
        return [ok]

    def _r_dataset_catalog(self, packages):
        names = list(self.datasets)
        return {
            "value": names,
            "label": [CATALOG_TITLES[n] for n in names],
            "file": names,
            "package": ["datasets"] * len(names),
        }

    def _r_load_dataset(self, name, packages):
        table = self.datasets.get(name)
        if table is None:
            return NULL
        return FakeTable({k: list(v) for k, v in table.columns.items()}, table.rownames)

    def _r_build_table(self, columns):
        return FakeTable({name: list(vec.values) for name, vec in columns.items()})

    def _r_synthetic_table(self):
        return FakeTable({k: list(v) for k, v in SYNTHETIC.items()})

    def _r_host_columns(self, table):
        names = list(table.columns)
        columns = [list(v) for v in table.columns.values()]
        if table.rownames:
            names.insert(0, "rowname")
            columns.insert(0, list(table.rownames))
        return {"names": names, "columns": columns, "nrow": [table.nrow]}

    def _r_summary_text(self, table):
        return [f"'data.frame':\t{table.nrow} obs. of  {table.ncol} variables"]

    def _r_dim(self, table):
        return [table.nrow, table.ncol]

    # ── evaluation ─────────────────────────────────────────────────────────

    def write(self, text):
        if self._console is not None:
            self._console.write(text)

    def draw(self):
        if self._surface is None:
            return
        page = len(list(self._surface.directory.glob("page-*.png"))) + 1
        (self._surface.directory / f"page-{page:03d}.png").write_bytes(PNG_BYTES)

    def evaluate(self, source, envir=None):
        self.ensure_initialized()
        env = envir.value if envir is not None else {}
        self.evaluations.append((source, env.get("df")))
        if self.handler is not None:
            self.handler(self, source, env)
        else:
            self._default_eval(source, env)
        return self._track(NULL, "evaluation")

    def _default_eval(self, source, env):
        for match in _PACKAGE_USE.finditer(source):
            name = match.group(1) or match.group(2)
            if name not in self.installed:
                raise RConditionError(
                    f"there is no package called ‘{name}’",
                    ("packageNotFoundError", "error", "condition"),
                    name,
                )

        df = env.get("df")
        if df is not None:
            self.write(f"df has {df.nrow} rows\n")
        if _DRAW.search(source):
            self.draw()

        stop = _STOP.search(source)
        if stop:
            raise RConditionError(stop.group(1), ("simpleError", "error", "condition"))
        if "undefined_thing" in source:
            raise RConditionError("object 'undefined_thing' not found", ("simpleError", "error", "condition"))

    @contextlib.contextmanager
    def console(self):
        previous = self._console
        self._console = ConsoleCapture()
        try:
            yield self._console
        finally:
            self._console = previous

    @contextlib.contextmanager
    def graphics_capture(self, width, height, resolution):
        self.graphics_sizes.append((width, height, resolution))
        with tempfile.TemporaryDirectory(prefix="fake-plot-") as tmp:
            surface = CaptureSurface(Path(tmp))
            self._surface = surface
            try:
                yield surface
            finally:
                self._surface = None
                surface.collect()


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def engine(fake_session):
    return ExecutionEngine(fake_session)


@pytest.fixture
def bridge(fake_session):
    return RBridge(fake_session)
